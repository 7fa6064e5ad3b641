"""Signed entities

A signed entity is anything that can carry signatures: an image, or an index
whose children are images or indexes themselves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Iterator, TypeVar

from ocisign.cancel import CancelToken
from ocisign.errors import UnsupportedMediaTypeError
from ocisign.oci.client import Client
from ocisign.oci.descriptor import IMAGE_MEDIA_TYPES, INDEX_MEDIA_TYPES, Descriptor
from ocisign.oci.index import Index

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SignedImage:
    name: str
    descriptor: Descriptor
    client: Client = field(repr=False, compare=False)

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    def children(self) -> Iterator[SignedEntity]:
        return iter(())


@dataclass(frozen=True)
class SignedIndex:
    name: str
    descriptor: Descriptor
    client: Client = field(repr=False, compare=False)

    @property
    def digest(self) -> str:
        return self.descriptor.digest

    @cached_property
    def index(self) -> Index:
        return Index.from_descriptor(self.descriptor)

    def children(self) -> Iterator[SignedEntity]:
        """Fetch the children one at a time, as they are consumed"""
        for child in self.index.manifests:
            if child.mediaType not in IMAGE_MEDIA_TYPES + INDEX_MEDIA_TYPES:
                raise UnsupportedMediaTypeError(
                    f"{self.name}@{child.digest} has unsupported media type {child.mediaType}"
                )
            yield _entity(
                name=self.name,
                descriptor=self.client.pull_manifest(name=self.name, reference=child.digest),
                client=self.client,
            )


SignedEntity = SignedImage | SignedIndex


def _entity(name: str, descriptor: Descriptor, client: Client) -> SignedEntity:
    if descriptor.mediaType in INDEX_MEDIA_TYPES:
        return SignedIndex(name=name, descriptor=descriptor, client=client)
    if descriptor.mediaType in IMAGE_MEDIA_TYPES:
        return SignedImage(name=name, descriptor=descriptor, client=client)
    raise UnsupportedMediaTypeError(
        f"{name}@{descriptor.digest} has unsupported media type {descriptor.mediaType}"
    )


def signed_entity(name: str, reference: str, client: Client) -> SignedEntity:
    """Fetch the entity tagged `reference` in repository `name`"""
    return _entity(
        name=name,
        descriptor=client.pull_manifest(name=name, reference=reference),
        client=client,
    )


def iter_signed_entities(entity: SignedEntity) -> Iterator[SignedEntity]:
    """Depth-first, the entity itself comes before its children"""
    yield entity
    for child in entity.children():
        yield from iter_signed_entities(child)


def walk(
    entity: SignedEntity,
    handler: Callable[[SignedEntity, T], object],
    context: T,
    cancel_token: CancelToken | None = None,
) -> list[tuple[str, object]]:
    """Call `handler(entity, context)` for every signed entity

    Stops at the first exception and re-raises it, entities after the failing
    one are not visited. Returns the (digest, result) pairs in visiting order.
    """
    results = []
    for se in iter_signed_entities(entity):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        logger.debug("Visiting %s@%s", se.name, se.digest)
        results.append((se.digest, handler(se, context)))
    return results
