from __future__ import annotations

from hashlib import sha256
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ocisign.oci.client import Client

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_EMPTY = "application/vnd.oci.empty.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"

IMAGE_MEDIA_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST)
INDEX_MEDIA_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)


def digest_of(data: bytes) -> str:
    return f"sha256:{sha256(data).hexdigest()}"


class Platform(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(populate_by_name=True)

    architecture: str
    os: str
    osVersion: str | None = Field(default=None, alias="os.version")
    osFeatures: list[str] | None = Field(default=None, alias="os.features")
    variant: str | None = None


class Descriptor(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/descriptor.md
    """

    model_config = ConfigDict(extra="allow")

    mediaType: str
    digest: str
    size: int
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    artifactType: str | None = None
    platform: Platform | None = None
    data: bytes | None = Field(exclude=True, default=None)

    @classmethod
    def from_data(cls, data: bytes, media_type: str, **kwargs) -> "Descriptor":
        """Describe `data`, keeping it attached for a later push"""
        return cls(
            mediaType=media_type,
            digest=digest_of(data),
            size=len(data),
            data=data,
            **kwargs,
        )

    def push(self, name: str, client: Client):
        if self.data is None:
            raise ValueError(f"Missing {self.__class__.__name__}.data")
        client.push_blob(name=name, blob=self.data, digest=self.digest)

    def summary(self) -> str:
        """The descriptor as a single JSON line of mediaType, digest and size"""
        return self.model_dump_json(include={"mediaType", "digest", "size"})
