"""
Services that sit at the caller-facing edge of the repositories.

Contains read-side helpers that don't belong in the repository layer
(which is for data access).
"""

from tablestore.services.cached_lookup import CachedUserLookup

__all__ = ["CachedUserLookup"]
