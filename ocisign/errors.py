class OCISignError(Exception):
    """Base class for all ocisign errors."""


class InvalidReferenceError(OCISignError):
    """Raised when an image reference does not parse."""


class CredentialError(OCISignError):
    """Raised when registry credentials can not be obtained."""


class RegistryError(OCISignError):
    """Raised when the registry rejects or fails a request."""


class NotFoundError(RegistryError):
    """Raised when the registry does not know the requested content."""


class AuthorizationError(RegistryError):
    """Raised when the registry refuses access."""


class TransportError(RegistryError):
    """Raised for network failures and unexpected registry responses."""


class UnsupportedMediaTypeError(OCISignError):
    """Raised when content has a media type we can not handle."""


class SigningError(OCISignError):
    """Raised when creating a signature fails."""


class PublishError(OCISignError):
    """Raised when writing a signature artifact fails."""


class CancelledError(OCISignError):
    """Raised when an operation is cancelled by the caller."""
