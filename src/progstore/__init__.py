"""Content-addressed store for compiled Cairo program blobs."""

__version__ = "0.1.0"
