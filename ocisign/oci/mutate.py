"""Pure image mutations

Both functions merge `mapping` over the existing values, overwriting keys that
already exist. When the merge changes nothing the image is returned unchanged,
keeping its digest.
"""
from dataclasses import replace

from ocisign.oci.descriptor import OCI_CONFIG, Descriptor, digest_of
from ocisign.oci.image import Image
from ocisign.oci.manifest import Manifest


def _with_manifest(image: Image, manifest: Manifest, **kwargs) -> Image:
    data = manifest.model_dump_json(exclude_none=True).encode("utf-8")
    return replace(
        image,
        descriptor=Descriptor.from_data(data, media_type=image.descriptor.mediaType),
        **kwargs,
    )


def annotations(image: Image, mapping: dict[str, str]) -> Image:
    """Merge `mapping` into the manifest annotations"""
    existing = image.manifest.annotations or {}
    merged = existing | mapping
    if merged == existing:
        return image
    manifest = Manifest.model_validate(
        image.manifest.model_dump(exclude_none=True) | {"annotations": merged}
    )
    return _with_manifest(image, manifest)


def config_labels(image: Image, mapping: dict[str, str]) -> Image:
    """Merge `mapping` into the config labels, rewriting the config blob"""
    config = image.config_file()
    if config.labels | mapping == config.labels:
        return image
    data = config.with_labels(mapping).json_bytes()
    config_descriptor = image.manifest.config.model_dump(exclude_none=True) | {
        "mediaType": image.manifest.config.mediaType or OCI_CONFIG,
        "digest": digest_of(data),
        "size": len(data),
    }
    manifest = Manifest.model_validate(
        image.manifest.model_dump(exclude_none=True) | {"config": config_descriptor}
    )
    return _with_manifest(image, manifest, config_data=data)
