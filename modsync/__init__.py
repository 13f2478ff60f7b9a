"""ModSync: rate-limited background sync of CurseForge mod metadata."""

__version__ = "0.1.0"
