from functools import cached_property

from pydantic import BaseModel, ConfigDict

from ocisign.oci.descriptor import OCI_MANIFEST, Descriptor


class Manifest(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/manifest.md
    """

    model_config = ConfigDict(extra="allow")

    config: Descriptor
    artifactType: str | None = None
    layers: list[Descriptor] = []
    subject: Descriptor | None = None
    annotations: dict[str, str] | None = None

    mediaType: str = OCI_MANIFEST
    schemaVersion: int = 2

    @cached_property
    def descriptor(self) -> Descriptor:
        data = self.model_dump_json(exclude_none=True).encode("utf-8")
        return Descriptor.from_data(data, media_type=self.mediaType)

    @classmethod
    def from_descriptor(cls, descriptor: Descriptor) -> "Manifest":
        if descriptor.data is None:
            raise ValueError(f"Missing {descriptor.__class__.__name__}.data")
        return cls.model_validate_json(descriptor.data)
