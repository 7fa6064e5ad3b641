from functools import cached_property

from pydantic import BaseModel, ConfigDict

from ocisign.oci.descriptor import OCI_INDEX, Descriptor, Platform

DEFAULT_PLATFORM = Platform(architecture="amd64", os="linux")


class Index(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/image-index.md
    """

    model_config = ConfigDict(extra="allow")

    artifactType: str | None = None
    manifests: list[Descriptor] = []
    annotations: dict[str, str] | None = None
    schemaVersion: int = 2
    mediaType: str = OCI_INDEX

    @cached_property
    def descriptor(self) -> Descriptor:
        data = self.model_dump_json(exclude_none=True).encode("utf-8")
        return Descriptor.from_data(data, media_type=self.mediaType)

    @classmethod
    def from_descriptor(cls, descriptor: Descriptor) -> "Index":
        if descriptor.data is None:
            raise ValueError(f"Missing {descriptor.__class__.__name__}.data")
        return cls.model_validate_json(descriptor.data)

    def find_platform(self, platform: Platform = DEFAULT_PLATFORM) -> Descriptor | None:
        """Return the first manifest built for `platform`"""
        for manifest in self.manifests:
            if manifest.platform is None:
                continue
            if (
                manifest.platform.os == platform.os
                and manifest.platform.architecture == platform.architecture
                and (platform.variant is None or manifest.platform.variant == platform.variant)
            ):
                return manifest
        return None
