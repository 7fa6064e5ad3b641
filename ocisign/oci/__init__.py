"""OCI client library for Python

This module provides a Python API for copying, annotating and signing images
in an OCI registry.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from ocisign.cancel import CancelToken
from ocisign.errors import InvalidReferenceError, UnsupportedMediaTypeError
from ocisign.oci import mutate
from ocisign.oci.client import Client
from ocisign.oci.descriptor import INDEX_MEDIA_TYPES, Descriptor
from ocisign.oci.image import Image
from ocisign.oci.index import DEFAULT_PLATFORM, Index
from ocisign.oci.publish import (
    DupeDetector,
    PublishOutcome,
    SignaturePublisher,
    payload_equal,
)
from ocisign.oci.signature import SignatureEngine
from ocisign.oci.walk import SignedEntity, signed_entity, walk
from ocisign.reference import Reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignContext:
    """Everything a signing pass needs, fixed for the whole run"""

    destination: Reference
    annotations: dict[str, Any]
    engine: SignatureEngine
    publisher: SignaturePublisher
    cancel_token: CancelToken = field(default_factory=CancelToken)


def retrieve_descriptor(reference: Reference, client: Client) -> Descriptor:
    """Resolve `reference` to the descriptor of its manifest"""
    return client.resolve(name=reference.repository, reference=reference.identifier)


def list_tags(reference: Reference, client: Client) -> list[str]:
    """List the tags in the repository of `reference`"""
    return client.list(name=reference.repository).get("tags") or []


def pull_image(reference: Reference, client: Client) -> Image:
    """Pull the image behind `reference`

    An index resolves to its linux/amd64 image, other platforms are not
    selectable.
    """
    descriptor = client.pull_manifest(
        name=reference.repository, reference=reference.identifier
    )
    if descriptor.mediaType in INDEX_MEDIA_TYPES:
        child = Index.from_descriptor(descriptor).find_platform(DEFAULT_PLATFORM)
        if child is None:
            raise UnsupportedMediaTypeError(
                f"{reference} has no {DEFAULT_PLATFORM.os}/{DEFAULT_PLATFORM.architecture} image"
            )
        logger.info("Using %s image %s", DEFAULT_PLATFORM.architecture, child.digest)
        descriptor = client.pull_manifest(
            name=reference.repository, reference=child.digest
        )
    return Image(name=reference.repository, descriptor=descriptor, client=client)


def copy_image(
    source: Reference,
    destination: Reference,
    annotations: dict[str, str],
    source_client: Client,
    destination_client: Client,
) -> Image:
    """Copy `source` to `destination`, merging `annotations` into the manifest
    annotations and the config labels.
    """
    if destination.tag is None:
        raise InvalidReferenceError(f"destination {destination} must be a tag")
    image = pull_image(source, client=source_client)
    image = mutate.config_labels(image, annotations)
    image = mutate.annotations(image, annotations)
    image.write(
        name=destination.repository,
        reference=destination.tag,
        client=destination_client,
    )
    return image


def sign_entity(entity: SignedEntity, context: SignContext) -> PublishOutcome:
    """Sign a single entity and attach the signature"""
    reference = context.destination.with_digest(entity.digest)
    signature = context.engine.sign(reference, context.annotations)
    return context.publisher.publish(reference, signature)


def sign_image(
    source: Reference,
    destination: Reference,
    annotations: dict[str, str],
    engine: SignatureEngine,
    source_client: Client,
    destination_client: Client,
    dupe_detector: DupeDetector | None = payload_equal,
) -> list[tuple[str, PublishOutcome]]:
    """Copy `source` to `destination` and sign everything at `destination`

    :param annotations: Added to the image annotations, config labels and the
        signed payload.
    :param dupe_detector: Skip publishing when an existing signature is
        equivalent, `None` always publishes.
    :return: The digest and outcome of every signed entity.
    """
    logger.info("Signing %s as %s", source, destination)
    copy_image(
        source=source,
        destination=destination,
        annotations=annotations,
        source_client=source_client,
        destination_client=destination_client,
    )
    entity = signed_entity(
        name=destination.repository,
        reference=destination.identifier,
        client=destination_client,
    )
    context = SignContext(
        destination=destination,
        annotations=dict(annotations),
        engine=engine,
        publisher=SignaturePublisher(destination_client, dupe_detector=dupe_detector),
        cancel_token=destination_client.cancel_token,
    )
    return walk(entity, sign_entity, context, cancel_token=context.cancel_token)
