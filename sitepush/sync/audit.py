"""Structured history of upload attempts, one JSON object per line.

The activity log is for people; this file is for ``sitepush status``, which
counts successes and failures per target and shows the latest failure.
Retries of the same file each get their own record with a higher attempt.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

from sitepush.schemas.sync import TaskStatus, TransferRecord

logger = logging.getLogger(__name__)


class TransferAuditLog:
    """Records every finished upload attempt and reads them back.

    Usage::

        audit = TransferAuditLog("/path/to/transfers.jsonl")
        audit.log(record)
        failures = audit.read_entries(status=TaskStatus.FAILED)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log(self, record: TransferRecord) -> None:
        """Store the outcome of one finished attempt."""
        with self._lock, self._path.open("a") as f:
            f.write(record.model_dump_json() + "\n")
        logger.debug(
            "Attempt %d of %s on %s: %s",
            record.attempt,
            record.source_path,
            record.target_name,
            record.status,
        )

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        status: TaskStatus | None = None,
        target_name: str | None = None,
        limit: int | None = None,
    ) -> list[TransferRecord]:
        """Return stored attempts matching every given filter.

        Args:
            since: Keep attempts that finished strictly after this moment.
            status: Keep only successful or only failed attempts.
            target_name: Keep attempts against this target's display name.
            limit: Keep at most this many of the most recent matches.

        Returns:
            Matching TransferRecord objects in the order they finished.
        """
        if not self._path.exists():
            return []

        with self._lock, self._path.open() as f:
            records = [TransferRecord.model_validate_json(raw) for raw in f if raw.strip()]

        matches = [
            r
            for r in records
            if (since is None or r.timestamp > since)
            and (status is None or r.status == status)
            and (target_name is None or r.target_name == target_name)
        ]
        return matches if limit is None else matches[-limit:]
