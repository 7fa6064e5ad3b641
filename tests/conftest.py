import base64
import json
import re
import uuid
from hashlib import sha256
from pathlib import Path

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ocisign.oci.client import Client
from ocisign.oci.descriptor import OCI_CONFIG, OCI_INDEX, OCI_MANIFEST, Descriptor
from ocisign.oci.signature import KeySigner, SignatureEngine

REGISTRY = "registry.example"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"

MANIFEST_RE = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<reference>[^/]+)$")
UPLOADS_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<upload>[^/]*)$")
BLOB_RE = re.compile(r"^/v2/(?P<name>.+)/blobs/(?P<digest>[^/]+)$")
TAGS_RE = re.compile(r"^/v2/(?P<name>.+)/tags/list$")


def digest_of(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


class FakeRegistry:
    """In-memory OCI distribution API, served through httpx.MockTransport

    :param auth: None, "basic" or "bearer"
    """

    def __init__(self, auth: str | None = None, username="AWS", password="secret"):
        self.auth = auth
        self.username = username
        self.password = password
        self.token = "registry-token"
        self.manifests: dict[str, dict[str, tuple[bytes, str]]] = {}
        self.tags: dict[str, list[str]] = {}
        self.blobs: dict[str, dict[str, bytes]] = {}
        self.uploads: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.read_only = False

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # Content helpers

    def add_blob(self, name: str, data: bytes) -> str:
        digest = digest_of(data)
        self.blobs.setdefault(name, {})[digest] = data
        return digest

    def add_manifest(
        self, name: str, data: bytes, media_type: str, tag: str | None = None
    ) -> Descriptor:
        digest = digest_of(data)
        repository = self.manifests.setdefault(name, {})
        repository[digest] = (data, media_type)
        if tag is not None:
            repository[tag] = (data, media_type)
            tags = self.tags.setdefault(name, [])
            if tag not in tags:
                tags.append(tag)
        return Descriptor(mediaType=media_type, digest=digest, size=len(data))

    def add_image(
        self,
        name: str,
        tag: str | None = None,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
        layers: tuple[bytes, ...] = (b"layer-one", b"layer-two"),
        architecture: str = "amd64",
    ) -> Descriptor:
        runtime = {"Env": ["PATH=/usr/local/bin:/usr/bin"], "Entrypoint": None}
        if labels is not None:
            runtime["Labels"] = labels
        config = {
            "architecture": architecture,
            "os": "linux",
            "config": runtime,
            "rootfs": {
                "type": "layers",
                "diff_ids": [digest_of(layer) for layer in layers],
            },
        }
        config_data = json.dumps(config).encode("utf-8")
        manifest = {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": {
                "mediaType": OCI_CONFIG,
                "digest": self.add_blob(name, config_data),
                "size": len(config_data),
            },
            "layers": [
                {
                    "mediaType": LAYER_MEDIA_TYPE,
                    "digest": self.add_blob(name, layer),
                    "size": len(layer),
                }
                for layer in layers
            ],
        }
        if annotations is not None:
            manifest["annotations"] = annotations
        # Indented on purpose, the exact bytes define the digest
        data = json.dumps(manifest, indent=3).encode("utf-8")
        return self.add_manifest(name, data, OCI_MANIFEST, tag=tag)

    def add_index(
        self,
        name: str,
        children: list[tuple[Descriptor, dict | None]],
        tag: str | None = None,
    ) -> Descriptor:
        manifests = []
        for descriptor, platform in children:
            entry = {
                "mediaType": descriptor.mediaType,
                "digest": descriptor.digest,
                "size": descriptor.size,
            }
            if platform is not None:
                entry["platform"] = platform
            manifests.append(entry)
        data = json.dumps(
            {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": manifests}
        ).encode("utf-8")
        return self.add_manifest(name, data, OCI_INDEX, tag=tag)

    def manifest(self, name: str, reference: str) -> bytes:
        return self.manifests[name][reference][0]

    def manifest_json(self, name: str, reference: str) -> dict:
        return json.loads(self.manifest(name, reference))

    def blob(self, name: str, digest: str) -> bytes:
        return self.blobs[name][digest]

    def signature_tags(self, name: str) -> list[str]:
        return [tag for tag in self.tags.get(name, []) if tag.endswith(".sig")]

    def count(self, method: str, path: str | None = None) -> int:
        return sum(
            1
            for r in self.requests
            if r.method == method and (path is None or r.url.path == path)
        )

    # Request handling

    def _authorized(self, request: httpx.Request) -> bool:
        header = request.headers.get("Authorization", "")
        if self.auth == "basic":
            expected = base64.b64encode(
                f"{self.username}:{self.password}".encode()
            ).decode()
            return header == f"Basic {expected}"
        if self.auth == "bearer":
            return header == f"Bearer {self.token}"
        return True

    def _challenge(self) -> httpx.Response:
        if self.auth == "basic":
            value = f'Basic realm="https://{REGISTRY}/",service="ecr.amazonaws.com"'
        else:
            value = (
                f'Bearer realm="https://auth.example/token",'
                f'service="{REGISTRY}",scope="repository:app:pull,push"'
            )
        return httpx.Response(401, headers={"WWW-Authenticate": value})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "auth.example":
            expected = base64.b64encode(
                f"{self.username}:{self.password}".encode()
            ).decode()
            if request.headers.get("Authorization") != f"Basic {expected}":
                return httpx.Response(401)
            return httpx.Response(200, json={"token": self.token})

        if self.auth is not None and not self._authorized(request):
            return self._challenge()
        if path == "/v2/":
            return httpx.Response(200)
        if self.read_only and request.method in ("POST", "PUT"):
            return httpx.Response(500, text="read only")

        if match := TAGS_RE.match(path):
            name = match["name"]
            if name not in self.tags:
                return httpx.Response(404)
            return httpx.Response(200, json={"name": name, "tags": self.tags[name]})
        if match := MANIFEST_RE.match(path):
            return self._manifest(request, match["name"], match["reference"])
        if match := UPLOADS_RE.match(path):
            return self._upload(request, match["name"], match["upload"])
        if match := BLOB_RE.match(path):
            return self._blob(request, match["name"], match["digest"])
        return httpx.Response(404)

    def _manifest(self, request, name, reference) -> httpx.Response:
        if request.method == "PUT":
            media_type = request.headers["content-type"]
            descriptor = self.add_manifest(
                name,
                request.content,
                media_type,
                tag=None if reference.startswith("sha256:") else reference,
            )
            return httpx.Response(
                201, headers={"Docker-Content-Digest": descriptor.digest}
            )
        if reference not in self.manifests.get(name, {}):
            return httpx.Response(404)
        data, media_type = self.manifests[name][reference]
        headers = {
            "Content-Type": media_type,
            "Docker-Content-Digest": digest_of(data),
            "Content-Length": str(len(data)),
        }
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, headers=headers, content=data)

    def _upload(self, request, name, upload) -> httpx.Response:
        if request.method == "POST":
            mount = request.url.params.get("mount")
            source = request.url.params.get("from")
            if mount and mount in self.blobs.get(source, {}):
                self.blobs.setdefault(name, {})[mount] = self.blobs[source][mount]
                return httpx.Response(201)
            upload = uuid.uuid4().hex
            self.uploads[upload] = name
            return httpx.Response(
                202, headers={"Location": f"/v2/{name}/blobs/uploads/{upload}"}
            )
        if request.method == "PUT" and self.uploads.pop(upload, None) == name:
            digest = request.url.params["digest"]
            if digest_of(request.content) != digest:
                return httpx.Response(400, json={"errors": [{"code": "DIGEST_INVALID"}]})
            self.blobs.setdefault(name, {})[digest] = request.content
            return httpx.Response(201)
        return httpx.Response(404)

    def _blob(self, request, name, digest) -> httpx.Response:
        data = self.blobs.get(name, {}).get(digest)
        if data is None:
            return httpx.Response(404)
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Content-Length": str(len(data))})
        return httpx.Response(200, content=data)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def client(registry):
    with Client(registry_url=REGISTRY, transport=registry.transport) as client:
        yield client


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def signer(rsa_key) -> KeySigner:
    return KeySigner(rsa_key)


@pytest.fixture
def engine(signer) -> SignatureEngine:
    return SignatureEngine(signer)


@pytest.fixture
def key_file(tmp_path, rsa_key) -> Path:
    path = tmp_path / "cosign.pem"
    path.write_bytes(
        rsa_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path
