"""Signature artifacts

Signatures of an image live in the same repository under the tag
"sha256-<hex>.sig", as an OCI manifest with one layer per signature. The
layer blob is the signed payload, the base64 signature is a layer annotation.
This is the layout cosign reads and writes.
"""
import enum
import logging
from typing import Callable

from ocisign.errors import (
    InvalidReferenceError,
    NotFoundError,
    PublishError,
    RegistryError,
    SigningError,
)
from ocisign.oci.client import Client
from ocisign.oci.config import EmptyConfig
from ocisign.oci.descriptor import Descriptor
from ocisign.oci.manifest import Manifest
from ocisign.oci.signature import Signature, Signer
from ocisign.reference import Reference

logger = logging.getLogger(__name__)

SIGNATURE_MEDIA_TYPE = "application/vnd.dev.cosign.simplesigning.v1+json"
SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
SIGNATURE_SUFFIX = ".sig"

DupeDetector = Callable[[Signature, Signature], bool]


class PublishOutcome(enum.StrEnum):
    SKIPPED = "skipped"
    PUBLISHED = "published"


def signature_tag(digest: str) -> str:
    """Tag of the signature artifact for `digest`, "sha256:abc" -> "sha256-abc.sig" """
    algorithm, _, value = digest.partition(":")
    return f"{algorithm}-{value}{SIGNATURE_SUFFIX}"


def signature_reference(reference: Reference) -> Reference:
    if reference.digest is None:
        raise InvalidReferenceError(f"{reference} is not a digest reference")
    return reference.with_tag(signature_tag(reference.digest))


def payload_equal(existing: Signature, new: Signature) -> bool:
    """Signatures are equivalent when they sign the same payload bytes"""
    return existing.payload == new.payload


class VerifyingDupeDetector:
    """Equivalent payload and an existing signature that verifies with `verifier`"""

    def __init__(self, verifier: Signer):
        self.verifier = verifier

    def __call__(self, existing: Signature, new: Signature) -> bool:
        if not payload_equal(existing, new):
            return False
        try:
            raw = existing.raw
        except SigningError:
            logger.warning("Ignoring existing signature that is not valid base64")
            return False
        return self.verifier.verify(existing.payload, raw)


class SignaturePublisher:
    """Attach signatures to images, skipping equivalent existing signatures

    :param client: Client for the registry holding the signed images.
    :param dupe_detector: Equality predicate, `None` always publishes.
    """

    def __init__(self, client: Client, dupe_detector: DupeDetector | None = payload_equal):
        self.client = client
        self.dupe_detector = dupe_detector

    def _pull_artifact(self, reference: Reference) -> Manifest | None:
        sig_ref = signature_reference(reference)
        try:
            descriptor = self.client.pull_manifest(
                name=sig_ref.repository, reference=sig_ref.identifier
            )
        except NotFoundError:
            return None
        return Manifest.from_descriptor(descriptor)

    def _signatures(self, name: str, manifest: Manifest | None) -> list[Signature]:
        if manifest is None:
            return []
        signatures = []
        for layer in manifest.layers:
            if layer.mediaType != SIGNATURE_MEDIA_TYPE:
                continue
            annotation = (layer.annotations or {}).get(SIGNATURE_ANNOTATION)
            if annotation is None:
                continue
            signatures.append(
                Signature(
                    payload=self.client.pull_blob(name=name, digest=layer.digest),
                    b64_signature=annotation,
                )
            )
        return signatures

    def existing_signatures(self, reference: Reference) -> list[Signature]:
        """Signatures already attached to the digest `reference`"""
        return self._signatures(reference.repository, self._pull_artifact(reference))

    def publish(self, reference: Reference, signature: Signature) -> PublishOutcome:
        """Attach `signature` to the digest `reference`"""
        manifest = self._pull_artifact(reference)
        if self.dupe_detector is not None:
            for existing in self._signatures(reference.repository, manifest):
                if self.dupe_detector(existing, signature):
                    logger.info("%s is already signed, skipping", reference)
                    return PublishOutcome.SKIPPED

        layer = Descriptor.from_data(
            signature.payload,
            media_type=SIGNATURE_MEDIA_TYPE,
            annotations={SIGNATURE_ANNOTATION: signature.b64_signature},
        )
        layers = manifest.layers if manifest is not None else []
        artifact = Manifest(config=EmptyConfig(), layers=[*layers, layer])
        sig_ref = signature_reference(reference)
        try:
            layer.push(name=sig_ref.repository, client=self.client)
            artifact.config.push(name=sig_ref.repository, client=self.client)
            descriptor = artifact.descriptor
            self.client.push_manifest(
                name=sig_ref.repository,
                data=descriptor.data,
                media_type=descriptor.mediaType,
                reference=sig_ref.identifier,
            )
        except RegistryError as e:
            raise PublishError(f"writing signature {sig_ref}: {e}") from e
        logger.info("Published signature %s for %s", sig_ref, reference)
        return PublishOutcome.PUBLISHED
