import re
from dataclasses import dataclass, replace

from ocisign.errors import InvalidReferenceError

DOCKER_HUB = "index.docker.io"
DEFAULT_TAG = "latest"

# Conservative name grammar, separators may not lead, trail or repeat (except "--").
_COMPONENT_PATTERN = r"[A-Za-z0-9]+(?:(?:[-._:@+]|--)[A-Za-z0-9]+)*"
REFERENCE_PATTERN = rf"^{_COMPONENT_PATTERN}(?:/{_COMPONENT_PATTERN})*$"
REFERENCE_RE = re.compile(REFERENCE_PATTERN)

REPOSITORY_RE = re.compile(r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*")
TAG_RE = re.compile(r"[\w][\w.-]{0,127}")
DIGEST_RE = re.compile(r"sha256:[a-f0-9]{64}")


def _is_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True, slots=True)
class Reference:
    """A parsed image reference

    ref: https://github.com/opencontainers/distribution-spec/blob/main/spec.md#pulling-manifests

    Exactly one of `tag` and `digest` is set.
    """

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    def __post_init__(self):
        if (self.tag is None) == (self.digest is None):
            raise InvalidReferenceError("a reference needs either a tag or a digest")

    def __str__(self):
        if self.digest is not None:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag}"

    @property
    def context(self) -> str:
        """registry/repository, without tag or digest"""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The tag or digest, as used in the manifests API"""
        return self.digest if self.digest is not None else self.tag

    def with_digest(self, digest: str) -> "Reference":
        """Reference to `digest` in the same repository"""
        if not DIGEST_RE.fullmatch(digest):
            raise InvalidReferenceError(f"invalid digest: {digest}")
        return replace(self, tag=None, digest=digest)

    def with_tag(self, tag: str) -> "Reference":
        """Reference to `tag` in the same repository"""
        if not TAG_RE.fullmatch(tag):
            raise InvalidReferenceError(f"invalid tag: {tag}")
        return replace(self, tag=tag, digest=None)

    @classmethod
    def parse(cls, value: str) -> "Reference":
        if not REFERENCE_RE.fullmatch(value):
            raise InvalidReferenceError(f"invalid OCI reference name: {value!r}")

        name, digest, tag = value, None, None
        if "@" in name:
            name, digest = name.split("@", 1)
            if not DIGEST_RE.fullmatch(digest):
                raise InvalidReferenceError(f"invalid digest in {value!r}")
        else:
            # A ":" after the last "/" separates the tag, before it a registry port
            base, sep, candidate = name.rpartition(":")
            if sep and "/" not in candidate:
                if not TAG_RE.fullmatch(candidate):
                    raise InvalidReferenceError(f"invalid tag in {value!r}")
                name, tag = base, candidate
            else:
                tag = DEFAULT_TAG

        registry, sep, repository = name.partition("/")
        if not sep or not _is_registry(registry):
            registry, repository = DOCKER_HUB, name
        if registry in ("docker.io", "registry-1.docker.io"):
            registry = DOCKER_HUB
        if registry == DOCKER_HUB and "/" not in repository:
            repository = f"library/{repository}"

        if not REPOSITORY_RE.fullmatch(repository):
            raise InvalidReferenceError(f"invalid repository in {value!r}")
        return cls(registry=registry, repository=repository, tag=tag, digest=digest)


def parse_reference(value: str) -> Reference:
    """Parse an image reference, raising InvalidReferenceError when malformed"""
    return Reference.parse(value)
