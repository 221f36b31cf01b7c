"""Coordinators - Orchestration layer over storage and network services."""

from .repository_manager import RepositoryManager

__all__ = ["RepositoryManager"]
