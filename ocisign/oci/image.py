from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property

from ocisign.errors import UnsupportedMediaTypeError
from ocisign.oci.client import Client
from ocisign.oci.config import ImageConfig
from ocisign.oci.descriptor import IMAGE_MEDIA_TYPES, Descriptor
from ocisign.oci.manifest import Manifest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Image:
    """A single-platform image as stored in repository `name`

    `descriptor.data` holds the exact manifest bytes, so an unchanged image keeps
    its digest. Blobs are read lazily through `client`, only a rewritten config
    is held in memory.
    """

    name: str
    descriptor: Descriptor
    client: Client = field(repr=False, compare=False)
    config_data: bytes | None = field(default=None, repr=False)

    def __post_init__(self):
        if self.descriptor.mediaType not in IMAGE_MEDIA_TYPES:
            raise UnsupportedMediaTypeError(
                f"{self.name}@{self.descriptor.digest} is a {self.descriptor.mediaType}, not an image"
            )

    @classmethod
    def pull(cls, name: str, reference: str, client: Client) -> "Image":
        return cls(
            name=name,
            descriptor=client.pull_manifest(name=name, reference=reference),
            client=client,
        )

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    @cached_property
    def manifest(self) -> Manifest:
        return Manifest.from_descriptor(self.descriptor)

    @cached_property
    def raw_config(self) -> bytes:
        if self.config_data is not None:
            return self.config_data
        return self.client.pull_blob(name=self.name, digest=self.manifest.config.digest)

    def config_file(self) -> ImageConfig:
        return ImageConfig.model_validate_json(self.raw_config)

    def _copy_blob(self, descriptor: Descriptor, name: str, client: Client):
        if client.blob_exists(name, descriptor.digest):
            logger.info("Blob already exists: %s:%s", name, descriptor.digest)
            return
        if client.registry == self.client.registry and client.mount_blob(
            name=name, digest=descriptor.digest, source=self.name
        ):
            return
        if descriptor.digest == self.manifest.config.digest:
            blob = self.raw_config
        else:
            blob = self.client.pull_blob(name=self.name, digest=descriptor.digest)
        client.push_blob(name=name, blob=blob, digest=descriptor.digest)

    def write(self, name: str, reference: str, client: Client) -> Descriptor:
        """Write the image to repository `name` under tag `reference`"""
        for layer in self.manifest.layers:
            self._copy_blob(layer, name=name, client=client)
        self._copy_blob(self.manifest.config, name=name, client=client)
        client.push_manifest(
            name=name,
            data=self.descriptor.data,
            media_type=self.descriptor.mediaType,
            reference=reference,
        )
        logger.info("Wrote %s:%s (%s)", name, reference, self.digest)
        return self.descriptor.model_copy(update={"data": None})
