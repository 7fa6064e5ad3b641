"""Copy, annotate and sign container images in an OCI registry."""

__version__ = "0.1.0"
