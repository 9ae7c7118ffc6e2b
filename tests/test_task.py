"""Tests for the transfer task state machine."""

from unittest.mock import MagicMock

import pytest
from conftest import FakeTransport

from sitepush.schemas.settings import CopyMethod, Target
from sitepush.schemas.sync import Message, TaskStatus
from sitepush.sync.task import TransferTask


@pytest.fixture
def transport():
    return FakeTransport(Target(name="www", method=CopyMethod.FTP, target_path="/www/"))


class TestStart:
    async def test_success(self, transport):
        finished = []
        task = TransferTask(transport, "/site/a.css", "/www/a.css", finished.append)
        assert task.status == TaskStatus.PENDING

        await task.start()

        assert task.status == TaskStatus.SUCCESS
        assert task.messages.is_success
        assert finished == [task]
        assert transport.uploads == [("/site/a.css", "/www/a.css")]

    async def test_failure(self, transport):
        transport.fail_uploads = True
        finished = []
        task = TransferTask(transport, "/site/a.css", "/www/a.css", finished.append)

        await task.start()

        assert task.status == TaskStatus.FAILED
        assert not task.messages.is_success
        assert "network is unreachable" in str(task.messages)
        assert finished == [task]

    async def test_running_while_in_flight(self, transport):
        task = TransferTask(transport, "/site/a.css", "/www/a.css")
        job = task.start()
        assert task.status == TaskStatus.RUNNING
        await job
        assert task.status.is_terminal

    async def test_unexpected_transport_exception(self):
        transport = MagicMock()
        transport.name = "broken"
        transport.upload.side_effect = RuntimeError("boom")
        task = TransferTask(transport, "/site/a.css", "/www/a.css")

        await task.start()

        assert task.status == TaskStatus.FAILED
        assert "boom" in str(task.messages)

    async def test_cannot_start_twice(self, transport):
        task = TransferTask(transport, "/site/a.css", "/www/a.css")
        await task.start()
        with pytest.raises(RuntimeError, match="already"):
            task.start()

    async def test_start_clears_messages(self, transport):
        task = TransferTask(transport, "/site/a.css", "/www/a.css")
        task.messages.add(Message.error("stale"))

        await task.start()

        assert task.messages.is_success
        assert "stale" not in str(task.messages)


class TestRetry:
    async def test_retry_is_new_pending_task(self, transport):
        transport.fail_uploads = True
        callback = MagicMock()
        task = TransferTask(transport, "/site/a.css", "/www/a.css_20240101000000", callback)
        await task.start()

        retry = task.retry()

        assert retry.id != task.id
        assert retry.status == TaskStatus.PENDING
        assert retry.path == task.path
        assert retry.target_path == "/www/a.css_20240101000000"
        assert retry.transport is task.transport
        assert retry.attempt == 2
        assert len(retry.messages) == 0
        assert task.status == TaskStatus.FAILED

    async def test_retry_keeps_callback(self, transport):
        callback = MagicMock()
        task = TransferTask(transport, "/site/a.css", "/www/a.css", callback)

        await task.retry().start()

        callback.assert_called_once()
