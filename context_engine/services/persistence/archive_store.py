"""On-disk store for archived contexts.

Layout under the archive root:

    metadata/<id>.json       archive record, keyed by id only
    sessions/<id>.xml        compressed content of session-scoped archives
    projects/<id>.xml        compressed content of project-scoped archives
    .locks/<id>.lock         per-id file lock

<id> is the percent-encoded context id.
"""

import json
from pathlib import Path
from urllib.parse import quote

from pydantic import ValidationError

from ...models.archive import ArchiveRecord
from ...models.session import ContextScope
from ...utils.file_utils import AsyncFileLock, async_read_text, async_remove, async_write_text
from ...utils.logger import get_logger

logger = get_logger(__name__)


def safe_name(context_id: str) -> str:
    """Reversible file-system safe form of a context id.

    Percent-encoding keeps distinct ids on distinct files; plain ids such as
    `build-42` are unchanged.
    """
    # quote never yields a bare "%", so it cannot clash with an encoded id
    return quote(context_id, safe="") or "%"


class ArchiveStore:
    """Key-value store of (content, metadata) pairs per context id."""

    def __init__(self, root: str | Path, lock_timeout: float = 10.0) -> None:
        self.root = Path(root)
        self.lock_timeout = lock_timeout
        self.metadata_dir = self.root / "metadata"
        self.locks_dir = self.root / ".locks"

    def content_path(self, context_id: str, scope: ContextScope) -> Path:
        return self.root / scope.archive_subdir / f"{safe_name(context_id)}.xml"

    def metadata_path(self, context_id: str) -> Path:
        return self.metadata_dir / f"{safe_name(context_id)}.json"

    def lock(self, context_id: str) -> AsyncFileLock:
        """File lock serializing writers of one context id."""
        return AsyncFileLock(
            self.locks_dir / f"{safe_name(context_id)}.lock",
            timeout=self.lock_timeout,
        )

    async def write(self, record: ArchiveRecord, content: str) -> None:
        """Persist content, then metadata, each with an atomic rename."""
        await async_write_text(self.content_path(record.context_id, record.scope), content)
        await async_write_text(
            self.metadata_path(record.context_id),
            record.model_dump_json(indent=2),
        )

    async def read_metadata(self, context_id: str) -> ArchiveRecord | None:
        """Load the archive record of an id, or None when absent."""
        try:
            raw = await async_read_text(self.metadata_path(context_id))
        except FileNotFoundError:
            return None
        return ArchiveRecord.model_validate_json(raw)

    async def read_content(self, context_id: str, scope: ContextScope) -> str:
        """Load compressed content.

        Raises:
            FileNotFoundError: If no content is stored for (id, scope)
        """
        return await async_read_text(self.content_path(context_id, scope))

    async def delete(self, context_id: str, scope: ContextScope) -> int:
        """Delete both artifacts of an archive and return the bytes freed."""
        freed = await async_remove(self.content_path(context_id, scope))
        freed += await async_remove(self.metadata_path(context_id))
        return freed

    async def delete_content(self, context_id: str, scope: ContextScope) -> int:
        return await async_remove(self.content_path(context_id, scope))

    async def list_records(self) -> list[ArchiveRecord]:
        """All readable archive records. Unreadable files are logged and skipped."""
        if not self.metadata_dir.exists():
            return []

        records = []
        for path in sorted(self.metadata_dir.glob("*.json")):
            try:
                raw = await async_read_text(path)
                records.append(ArchiveRecord.model_validate_json(raw))
            except (OSError, ValidationError, json.JSONDecodeError) as e:
                logger.warning(
                    "Skipping unreadable archive metadata",
                    extra={"path": str(path), "error": str(e)},
                )
        return records
