"""One attempt to push one file to one target."""

import asyncio
import logging
import uuid
from collections.abc import Callable

from sitepush.schemas.sync import Message, MessageList, TaskStatus
from sitepush.sync.transport import Transport

logger = logging.getLogger(__name__)


class TransferTask:
    """A single (file, target) upload attempt with its own message trail.

    Status moves ``pending → running → success | failed`` exactly once. A
    failed task is never restarted; ``retry()`` returns a fresh task with a
    new id for the same source, destination and transport.
    """

    def __init__(
        self,
        transport: Transport,
        path: str,
        target_path: str,
        on_finished: Callable[["TransferTask"], None] | None = None,
        *,
        attempt: int = 1,
    ) -> None:
        self.id = uuid.uuid4()
        self.path = path
        self.target_path = target_path
        self.attempt = attempt
        self.status = TaskStatus.PENDING
        self.messages = MessageList()
        self._transport = transport
        self._on_finished = on_finished

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def target_name(self) -> str:
        return self._transport.name

    def start(self) -> "asyncio.Task[None]":
        """Mark the task running and schedule the upload on the running loop.

        The upload itself runs in a worker thread. The completion callback
        fires on the loop thread once the task reaches a terminal status,
        whatever the outcome.
        """
        if self.status != TaskStatus.PENDING:
            raise RuntimeError(f"Task {self.id} already {self.status}")

        self.status = TaskStatus.RUNNING
        self.messages.clear()
        return asyncio.create_task(self._run(), name=f"upload-{self.id}")

    async def _run(self) -> None:
        try:
            result = await asyncio.to_thread(self._transport.upload, self.path, self.target_path)
        except Exception as exc:
            logger.exception("Unexpected failure uploading %s to %s", self.path, self.target_name)
            result = MessageList(Message.error(f"Error uploading {self.path}", exc))

        self.messages.add(result)
        self.status = TaskStatus.SUCCESS if result.is_success else TaskStatus.FAILED

        if self._on_finished is not None:
            self._on_finished(self)

    def retry(self) -> "TransferTask":
        """Return a new pending task for the same source, destination and transport."""
        return TransferTask(
            self._transport,
            self.path,
            self.target_path,
            self._on_finished,
            attempt=self.attempt + 1,
        )

    def __repr__(self) -> str:
        return (
            f"TransferTask(id={self.id}, path={self.path!r}, "
            f"target={self.target_name!r}, status={self.status})"
        )
