"""Persistent task queue for batched document-store automation."""

__version__ = "0.1.0"
