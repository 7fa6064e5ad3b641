from __future__ import annotations

import logging
import re
from urllib.parse import urlparse, urlunparse

import httpx

from ocisign.auth import CredentialProvider
from ocisign.cancel import CancelToken
from ocisign.errors import AuthorizationError, NotFoundError, TransportError
from ocisign.oci.descriptor import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_INDEX,
    OCI_MANIFEST,
    Descriptor,
    digest_of,
)

logger = logging.getLogger(__name__)

DOCKER_HUB = "registry-1.docker.io"
USER_AGENT = "ocisign/1.0"
MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST, OCI_INDEX, DOCKER_MANIFEST, DOCKER_MANIFEST_LIST]
)
AUTH_PARAM_RE = re.compile(r'(?P<key>[\w-]+)\s*=\s*(?:"(?P<quoted>[^"]*)"|(?P<token>[^\s",]+))')


def _clean_url(registry_url: str, insecure: bool = False) -> str:
    if "://" not in registry_url:
        registry_url = f"{'http' if insecure else 'https'}://{registry_url}"
    parts = urlparse(registry_url)
    if parts.netloc in ("docker.io", "index.docker.io"):
        parts = parts._replace(netloc=DOCKER_HUB)
    return urlunparse(parts).rstrip("/")


def _parse_www_auth(www_authenticate: str) -> tuple[str, dict[str, str]]:
    """Parse the WWW-Authenticate header into the scheme and its parameters

    Quoted values may contain commas, e.g. scope="repository:app:pull,push".
    """
    scheme, _, params = www_authenticate.strip().partition(" ")
    result = {
        match["key"]: match["quoted"] if match["quoted"] is not None else match["token"]
        for match in AUTH_PARAM_RE.finditer(params)
    }
    return scheme.lower(), result


def _raise_for_status(response: httpx.Response):
    if response.is_success:
        return
    request = response.request
    message = f"{request.method} {request.url} returned {response.status_code}"
    if response.status_code == 404:
        raise NotFoundError(message)
    if response.status_code in (401, 403):
        raise AuthorizationError(message)
    raise TransportError(message)


class BearerAuth(httpx.Auth):
    """Attaches HTTP Bearer Authentication to the given Request object."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(self, request):
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


class Client:
    """Client for the OCI registry API.

    Every request first checks `cancel_token`, registry failures are raised as
    NotFoundError, AuthorizationError or TransportError.
    """

    def __init__(
        self,
        registry_url: str,
        credential_provider: CredentialProvider | None = None,
        insecure: bool = False,
        transport: httpx.BaseTransport | None = None,
        cancel_token: CancelToken | None = None,
    ):
        self.registry_url = _clean_url(registry_url, insecure=insecure)
        self.registry = urlparse(self.registry_url).netloc
        self.credential_provider = credential_provider
        self.transport = transport
        self.cancel_token = cancel_token or CancelToken()
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def session(self):
        if self._session is None:
            self._session = httpx.Client(
                follow_redirects=True,
                max_redirects=2,
                transport=self.transport,
                headers={"User-Agent": USER_AGENT},
            )
            try:
                self.try_authentication()
            except BaseException:
                self.close()
                raise
        return self._session

    def request(self, method: str, uri: str, **kwargs) -> httpx.Response:
        """Send a request, `uri` is either absolute or relative to the registry"""
        self.cancel_token.raise_if_cancelled()
        url = uri if "://" in uri else f"{self.registry_url}{uri}"
        try:
            return self.session.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    def head(self, uri, **kwargs):
        return self.request("HEAD", uri, **kwargs)

    def get(self, uri, **kwargs):
        return self.request("GET", uri, **kwargs)

    def post(self, uri, **kwargs):
        return self.request("POST", uri, **kwargs)

    def put(self, uri, **kwargs):
        return self.request("PUT", uri, **kwargs)

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def try_authentication(self):
        result = self.get("/v2/")
        if result.status_code == 401:
            scheme, www_authenticate = _parse_www_auth(
                result.headers.get("WWW-Authenticate", "")
            )
            logger.debug("%s %s", scheme, www_authenticate)
            if scheme == "basic":
                credential = self.credential()
                self._session.auth = httpx.BasicAuth(
                    credential.username, credential.password
                )
            elif scheme == "bearer":
                self.authenticate(
                    token_url=www_authenticate["realm"],
                    service=www_authenticate.get("service"),
                    scope=www_authenticate.get("scope"),
                )
            else:
                raise AuthorizationError(
                    f"{self.registry_url} requested unsupported authentication '{scheme}'"
                )
        else:
            _raise_for_status(result)

    def credential(self):
        if self.credential_provider is None:
            raise AuthorizationError(
                f"{self.registry_url} requires authentication, "
                f"no credentials configured."
            )
        return self.credential_provider(self.registry)

    def authenticate(self, token_url, service, scope):
        """Use the token api with basic authentication to get a token

        ref: https://distribution.github.io/distribution/spec/auth/token/
        """
        credential = self.credential()
        params = {"service": service, "client_id": credential.username}
        if scope:
            params["scope"] = scope
        response = self.get(
            token_url,
            params={k: v for k, v in params.items() if v is not None},
            auth=(credential.username, credential.password),
        )
        _raise_for_status(response)
        body = response.json()
        self._session.auth = BearerAuth(body.get("token") or body["access_token"])

    def list(self, name: str) -> dict:
        uri = f"/v2/{name}/tags/list"
        result = self.get(uri)
        _raise_for_status(result)
        return result.json()

    def resolve(self, name: str, reference: str) -> Descriptor:
        """Return the descriptor of a manifest without downloading it"""
        uri = f"/v2/{name}/manifests/{reference}"
        result = self.head(uri, headers={"Accept": MANIFEST_ACCEPT})
        _raise_for_status(result)
        digest = result.headers.get("Docker-Content-Digest")
        if digest is None or "Content-Length" not in result.headers:
            logger.debug("%s did not return a digest, pulling the manifest", uri)
            descriptor = self.pull_manifest(name=name, reference=reference)
            descriptor.data = None
            return descriptor
        return Descriptor(
            mediaType=result.headers["Content-Type"].split(";")[0],
            digest=digest,
            size=int(result.headers["Content-Length"]),
        )

    def pull_manifest(self, name: str, reference: str) -> Descriptor:
        """Pull a manifest, return its descriptor with the raw manifest as data"""
        uri = f"/v2/{name}/manifests/{reference}"
        result = self.get(uri, headers={"Accept": MANIFEST_ACCEPT})
        if result.status_code == 403:
            logger.debug(result.headers)
        _raise_for_status(result)
        data = result.content
        digest = digest_of(data)
        if reference.startswith("sha256:") and reference != digest:
            raise TransportError(
                f"manifest {name}@{reference} has unexpected digest {digest}"
            )
        media_type = result.headers.get("Content-Type", "").split(";")[0]
        if not media_type:
            media_type = result.json().get("mediaType", OCI_MANIFEST)
        return Descriptor(
            mediaType=media_type, digest=digest, size=len(data), data=data
        )

    def pull_blob(self, name, digest) -> bytes:
        uri = f"/v2/{name}/blobs/{digest}"
        result = self.get(uri)
        _raise_for_status(result)
        return result.content

    def blob_exists(self, name: str, digest: str) -> bool:
        response = self.head(f"/v2/{name}/blobs/{digest}")
        if response.status_code == 404:
            return False
        _raise_for_status(response)
        return True

    def mount_blob(self, name: str, digest: str, source: str) -> bool:
        """Try to mount a blob from repository `source` into `name`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#mounting-a-blob-from-another-repository
        """
        response = self.post(
            f"/v2/{name}/blobs/uploads/",
            params={"mount": digest, "from": source},
        )
        _raise_for_status(response)
        if response.status_code == 201:
            logger.info("Mounted blob %s from %s into %s", digest, source, name)
            return True
        return False

    def push_blob(self, name: str, blob: bytes, digest: str):
        """Push a blob for repository `name`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-blobs
        """
        # Check if the blob already exists
        if self.blob_exists(name, digest):
            logger.info("Blob already exists: %s:%s", name, digest)
            return

        # Push the blob using the POST then PUT method
        response = self.post(
            f"/v2/{name}/blobs/uploads/",
            headers={"content-type": "application/octet-stream"},
        )
        _raise_for_status(response)
        if response.status_code != 202:
            raise TransportError(
                f"unexpected status {response.status_code} starting upload of {digest}"
            )
        location = response.headers["location"]
        response = self.put(
            location,
            content=blob,
            headers={"content-type": "application/octet-stream"},
            params={"digest": digest},
        )
        if response.status_code == 404:
            logger.info(response.text)
        _raise_for_status(response)

    def push_manifest(
        self, name: str, data: bytes, media_type: str, reference: str | None = None
    ) -> str:
        """Push a manifest for repository `name` and tag `reference`

        ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pushing-manifests
        """
        digest = digest_of(data)
        if reference is None:
            reference = digest
            response = self.head(f"/v2/{name}/manifests/{reference}")
            if response.status_code == 200:
                logger.info("Manifest already exists: %s@%s", name, reference)
                return digest

        logger.debug("Pushing manifest: %s", data)
        response = self.put(
            f"/v2/{name}/manifests/{reference}",
            content=data,
            headers={"content-type": media_type},
        )
        if not response.is_success and "application/json" in response.headers.get(
            "Content-Type", ""
        ):
            logger.error(response.text)
        _raise_for_status(response)
        return digest
