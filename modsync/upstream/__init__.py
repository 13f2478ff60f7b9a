"""Upstream metadata sources for ModSync.

Each source implements the ModMetadataSource ABC and handles:
- Authentication headers for its API
- Fetching one resource by key
- Mapping upstream failures onto the transient/permanent error taxonomy

Available sources:
    CurseForgeClient — CurseForge API v1 (x-api-key)
"""

from modsync.upstream.base import ModMetadataSource
from modsync.upstream.curseforge import CurseForgeClient

__all__ = [
    "ModMetadataSource",
    "CurseForgeClient",
]
