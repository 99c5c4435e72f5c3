"""Adapter interfaces and default implementations for pluggable engine backends.

Currently provides:
- ISaveStore: where save blobs live (files, memory)
- IMediaBackend: loading and playing media resources (pygame, null)
"""
from __future__ import annotations

from .storage import ISaveStore, FileSaveStore, MemorySaveStore  # noqa: F401
from .media import IMediaBackend, PygameMediaBackend, NullMediaBackend  # noqa: F401
