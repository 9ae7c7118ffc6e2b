"""Scheduler draining the change queue into per-target transfer tasks.

Owns one transport per target for the whole process lifetime. The main
loop runs on the asyncio event loop and is the only code that mutates the
active task set: task completion callbacks fire on the loop thread after
the worker thread running the upload has returned.

Failed tasks are retried forever, one pending task per loop iteration,
until the exit sentinel is dropped into the watched root.
"""

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sitepush.errors import ConfigurationError
from sitepush.schemas.settings import Settings, Target
from sitepush.schemas.sync import ChangeEvent, TaskStatus, TransferRecord
from sitepush.sync.activity import ActivityLog
from sitepush.sync.audit import TransferAuditLog
from sitepush.sync.ignore import IgnoreFilter
from sitepush.sync.ledger import ChangeLedger
from sitepush.sync.paths import generate_remote_path, timestamped
from sitepush.sync.task import TransferTask
from sitepush.sync.transport import Transport, create_transport
from sitepush.sync.watcher import ChangeQueue, ChangeWatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Remote:
    target: Target
    transport: Transport


class Scheduler:
    """Fans each change out to every target and keeps retrying failures.

    Usage::

        scheduler = Scheduler(settings, activity_log=ActivityLog(settings.log_path))
        await scheduler.start_all()
        try:
            await scheduler.process()
        finally:
            await scheduler.stop_all()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        activity_log: ActivityLog | None = None,
        ledger: ChangeLedger | None = None,
        audit_log: TransferAuditLog | None = None,
        transport_factory: Callable[[Target], Transport] = create_transport,
        watcher: ChangeWatcher | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not settings.target_list:
            raise ConfigurationError("Settings define no target")
        if not settings.local_path or not os.path.isdir(settings.local_path):
            raise ConfigurationError(f"local_path {settings.local_path} does not exist")

        self._settings = settings
        self._activity = activity_log or ActivityLog()
        self._ledger = ledger
        self._audit_log = audit_log
        self._clock = clock

        self._remotes = [Remote(t, transport_factory(t)) for t in settings.target_list]

        self._queue = watcher.queue if watcher is not None else ChangeQueue()
        self._watcher = watcher or ChangeWatcher(
            settings.local_path,
            self._queue,
            ignore_filter=IgnoreFilter(settings.ignore_patterns),
            exit_request_file=settings.exit_request_file,
        )

        self._active: dict[uuid.UUID, TransferTask] = {}
        self._in_flight: set[asyncio.Task[None]] = set()
        self._listeners: list[Callable[[TransferTask], None]] = []

    @property
    def queue(self) -> ChangeQueue:
        return self._queue

    @property
    def watcher(self) -> ChangeWatcher:
        return self._watcher

    @property
    def remotes(self) -> list[Remote]:
        return list(self._remotes)

    @property
    def active(self) -> dict[uuid.UUID, TransferTask]:
        """Snapshot of not-yet-terminal tasks keyed by task id."""
        return dict(self._active)

    def add_listener(self, listener: Callable[[TransferTask], None]) -> None:
        """Register a callable notified with every finished task."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> None:
        """Connect every transport, then start watching.

        A target that fails to connect stays unusable until its next
        upload reconnects it; other targets are unaffected.
        """
        if self._settings.allow_multithreaded_upload:
            results = await asyncio.gather(
                *(asyncio.to_thread(r.transport.connect) for r in self._remotes)
            )
        else:
            results = []
            for remote in self._remotes:
                results.append(await asyncio.to_thread(remote.transport.connect))

        for result in results:
            self._activity.write_messages(result)

        self._watcher.start()

    async def stop_all(self) -> None:
        """Stop watching, let in-flight uploads finish, disconnect everything.

        Disconnect failures are logged and never propagated.
        """
        self._watcher.stop()
        await self.wait_in_flight()

        for remote in self._remotes:
            result = await asyncio.to_thread(remote.transport.disconnect)
            if not result.is_success:
                self._activity.write_messages(result)

    async def wait_in_flight(self) -> None:
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def process(self) -> None:
        """Run until the exit sentinel is observed."""
        exit_requested = self._watcher.exit_requested

        while not exit_requested.is_set():
            if not await self.process_once():
                await asyncio.sleep(self._settings.poll_interval)

        self._activity.write("Exit requested")
        await self.wait_in_flight()

    async def process_once(self) -> bool:
        """Do one unit of work.

        Returns True when a change was dequeued, so the loop polls again
        right away. Starting a requeued task returns False: retries are
        paced by the poll interval.
        """
        change = self._queue.try_dequeue()
        if change is not None:
            if change.is_upload:
                await self._fan_out(change)
            else:
                self._record_deletion(change)
            return True

        retry = next(
            (t for t in self._active.values() if t.status == TaskStatus.PENDING),
            None,
        )
        if retry is not None:
            self._activity.write(
                f"Retrying {retry.path} on {retry.target_name} (attempt {retry.attempt})"
            )
            await self._dispatch(retry)

        # Unbounded retries: one per poll interval, no backoff
        return False

    def prepare_target_path(self, path: str, target: Target) -> str:
        """Resolve the destination for ``path`` on ``target``.

        The timestamp suffix is taken from the clock here, once per task
        creation; retries reuse the already resolved destination.
        """
        target_path = generate_remote_path(path, self._settings.local_path, target.target_path)
        if target.create_timestamped_copies:
            target_path = timestamped(target_path, self._clock())
        return target_path

    async def _fan_out(self, change: ChangeEvent) -> None:
        tasks = []
        for remote in self._remotes:
            task = TransferTask(
                remote.transport,
                change.path,
                self.prepare_target_path(change.path, remote.target),
                self._on_task_finished,
            )
            self._active[task.id] = task
            tasks.append(task)

        for task in tasks:
            await self._dispatch(task)

    async def _dispatch(self, task: TransferTask) -> None:
        job = task.start()
        if self._settings.allow_multithreaded_upload:
            self._in_flight.add(job)
            job.add_done_callback(self._job_done)
        else:
            await job

    def _job_done(self, job: "asyncio.Task[None]") -> None:
        self._in_flight.discard(job)
        if not job.cancelled() and job.exception() is not None:
            logger.error("Upload job %s crashed", job.get_name(), exc_info=job.exception())

    def _record_deletion(self, change: ChangeEvent) -> None:
        self._activity.write(f"Local delete of: {change.path}")

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _on_task_finished(self, task: TransferTask) -> None:
        if self._active.pop(task.id, None) is None:
            logger.warning("Finished task %s was not in the active set", task.id)

        # The retry is in the active set before any collaborator runs
        if task.status == TaskStatus.FAILED:
            retry = task.retry()
            self._active[retry.id] = retry
            logger.info(
                "Requeued %s for %s as %s (attempt %d)",
                task.path,
                task.target_name,
                retry.id,
                retry.attempt,
            )

        try:
            self._activity.write_messages(task.messages)
        except Exception:
            logger.exception("Could not write activity log for task %s", task.id)

        if task.status == TaskStatus.SUCCESS and self._ledger is not None:
            try:
                self._ledger.add(task.path)
            except Exception:
                logger.exception("Could not record %s in the change ledger", task.path)

        if self._audit_log is not None:
            try:
                self._audit_log.log(self._transfer_record(task))
            except Exception:
                logger.exception("Could not write audit record for task %s", task.id)

        for listener in self._listeners:
            try:
                listener(task)
            except Exception:
                logger.exception("Task listener %r failed", listener)

    @staticmethod
    def _transfer_record(task: TransferTask) -> TransferRecord:
        return TransferRecord(
            timestamp=datetime.now(UTC),
            task_id=task.id,
            target_name=task.target_name,
            source_path=task.path,
            destination=task.target_path,
            status=task.status,
            attempt=task.attempt,
            messages=list(task.messages),
        )
