"""Append-only, timestamped text log of pipeline activity.

One line per significant event: connects, uploads, failures, retries and
observed deletions. Lines are also mirrored to the stdlib logger so they
show up on the console when running in the foreground.
"""

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path

from sitepush.schemas.sync import MessageList, MessageType

logger = logging.getLogger(__name__)

_LEVELS = {
    MessageType.INFO: logging.INFO,
    MessageType.WARNING: logging.WARNING,
    MessageType.ERROR: logging.ERROR,
}


class ActivityLog:
    """Timestamped text log; writes to a file only when a path is set.

    Usage::

        log = ActivityLog("/var/log/sitepush.log")
        log.write("Connected.")
        log.write_messages(task.messages)
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path | None:
        return self._path

    def write(self, msg: str, level: int = logging.INFO) -> str:
        """Format and append one line. Returns the formatted line."""
        line = f"{datetime.now(UTC):%Y.%m.%d %H:%M:%S} UTC - {msg}"
        logger.log(level, "%s", msg)

        if self._path is not None:
            with self._lock, self._path.open("a") as f:
                f.write(line + "\n")

        return line

    def write_messages(self, messages: MessageList) -> list[str]:
        """Write one line per message; non-Info lines carry their severity."""
        return [self.write(str(m), _LEVELS[m.type]) for m in messages]

    def read_lines(self) -> list[str]:
        if self._path is None or not self._path.exists():
            return []
        with self._lock:
            return self._path.read_text().splitlines()
