import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.padding import PKCS1v15
from pydantic import BaseModel

from ocisign.errors import SigningError
from ocisign.reference import Reference

logger = logging.getLogger(__name__)


class SigningPayload(BaseModel):
    """The document that gets signed

    `image` is the digest reference of the signed manifest, "<repository>@<digest>".
    """

    image: str
    annotations: dict[str, Any] = {}

    @classmethod
    def for_reference(
        cls, reference: Reference, annotations: dict[str, Any] | None = None
    ) -> "SigningPayload":
        if reference.digest is None:
            raise SigningError(f"{reference} is not a digest reference")
        return cls(image=str(reference), annotations=dict(annotations or {}))

    def to_bytes(self) -> bytes:
        """Canonical JSON, sorted keys without whitespace"""
        return json.dumps(
            self.model_dump(), sort_keys=True, separators=(",", ":")
        ).encode("utf-8")


@dataclass(frozen=True, slots=True)
class Signature:
    """A signed payload, the signature is standard base64 text"""

    payload: bytes
    b64_signature: str

    @property
    def raw(self) -> bytes:
        try:
            return base64.b64decode(self.b64_signature, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SigningError(f"signature is not valid base64: {e}") from e

    def signing_payload(self) -> SigningPayload:
        return SigningPayload.model_validate_json(self.payload)


class Signer(Protocol):
    def sign(self, data: bytes) -> bytes: ...

    def verify(self, data: bytes, signature: bytes) -> bool: ...


class KeySigner:
    """Sign with a private key, RSA uses PKCS#1 v1.5, EC uses ECDSA, both SHA-256"""

    def __init__(self, private_key, hash_algorithm: hashes.HashAlgorithm | None = None):
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise SigningError(f"Unsupported key type: {type(private_key).__name__}")
        self.private_key = private_key
        self.hash_algorithm = hash_algorithm or hashes.SHA256()

    @classmethod
    def from_pem(cls, data: bytes, password: bytes | None = None) -> "KeySigner":
        try:
            private_key = serialization.load_pem_private_key(data, password=password)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"loading private key: {e}") from e
        return cls(private_key)

    def public_key_pem(self) -> bytes:
        return self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def sign(self, data: bytes) -> bytes:
        try:
            if isinstance(self.private_key, rsa.RSAPrivateKey):
                return self.private_key.sign(data, PKCS1v15(), self.hash_algorithm)
            return self.private_key.sign(data, ec.ECDSA(self.hash_algorithm))
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"signing payload: {e}") from e

    def verify(self, data: bytes, signature: bytes) -> bool:
        public_key = self.private_key.public_key()
        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature, data, PKCS1v15(), self.hash_algorithm)
            else:
                public_key.verify(signature, data, ec.ECDSA(self.hash_algorithm))
        except InvalidSignature:
            return False
        return True


def load_signer(path: Path, password: str | None = None) -> KeySigner:
    """Load a PEM encoded private key from `path`"""
    try:
        data = path.read_bytes()
    except OSError as e:
        raise SigningError(f"reading private key {path}: {e}") from e
    signer = KeySigner.from_pem(
        data, password=password.encode("utf-8") if password else None
    )
    logger.info("Loaded signing key from %s", path)
    return signer


class SignatureEngine:
    """Build and sign payloads with an injected signer."""

    def __init__(self, signer: Signer):
        self.signer = signer

    def payload(
        self, reference: Reference, annotations: dict[str, Any] | None = None
    ) -> SigningPayload:
        return SigningPayload.for_reference(reference, annotations)

    def sign(
        self, reference: Reference, annotations: dict[str, Any] | None = None
    ) -> Signature:
        data = self.payload(reference, annotations).to_bytes()
        signature = self.signer.sign(data)
        logger.debug("Signed %s", reference)
        return Signature(
            payload=data, b64_signature=base64.b64encode(signature).decode("ascii")
        )
