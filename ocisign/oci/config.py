from typing import Any

from pydantic import BaseModel, ConfigDict

from ocisign.oci.descriptor import OCI_EMPTY, Descriptor


class EmptyConfig(Descriptor):
    mediaType: str = OCI_EMPTY
    digest: str = (
        "sha256:44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a"
    )
    size: int = 2

    def model_post_init(self, __context: Any) -> None:
        self.data = b"{}"


class RuntimeConfig(BaseModel):
    """The `config` section of an image config, only labels are modelled"""

    model_config = ConfigDict(extra="allow")

    Labels: dict[str, str] | None = None


class ImageConfig(BaseModel):
    """
    ref: https://github.com/opencontainers/image-spec/blob/main/config.md

    Fields other than the labels are kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    config: RuntimeConfig | None = None

    @property
    def labels(self) -> dict[str, str]:
        if self.config is None or self.config.Labels is None:
            return {}
        return dict(self.config.Labels)

    def with_labels(self, labels: dict[str, str]) -> "ImageConfig":
        """Return a copy with `labels` merged over the existing labels"""
        data = self.model_dump()
        runtime = data.get("config") or {}
        runtime["Labels"] = self.labels | labels
        data["config"] = runtime
        return ImageConfig.model_validate(data)

    def json_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")
