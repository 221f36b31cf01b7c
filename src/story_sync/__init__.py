"""
Story Sync - offline-first synchronization engine for versioned story collections.

This package provides:
- Catalog discovery with offline fallback
- Archive download, extraction and self-repairing metadata
- Version reconciliation against the remote catalog
- Local reading state (progress, markers, favourites, comments)
"""

__version__ = "0.1.0"

# Make key components available at package level
from story_sync.core import Collection, CollectionKey, Frame, Story
from story_sync.coordinators import RepositoryManager

__all__ = [
    "Collection",
    "CollectionKey",
    "Story",
    "Frame",
    "RepositoryManager",
]
