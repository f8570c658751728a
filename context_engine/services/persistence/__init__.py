"""Long-term archival of session contexts."""

from .archive_store import ArchiveStore
from .long_term import LongTermPersistence, compute_fingerprint

__all__ = ["ArchiveStore", "LongTermPersistence", "compute_fingerprint"]
