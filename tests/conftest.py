"""Shared fixtures for sitepush tests."""

import os
import threading

import pytest

from sitepush.schemas.settings import CopyMethod, Settings, Target
from sitepush.schemas.sync import Message, MessageList
from sitepush.sync.transport import Transport


class FakeTransport(Transport):
    """Network-free transport whose uploads succeed or fail on demand."""

    method = CopyMethod.FTP

    def __init__(self, target: Target) -> None:
        super().__init__(target)
        self.connected = False
        self.fail_connect = False
        self.fail_uploads = False
        self.uploads: list[tuple[str, str]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.upload_threads: set[int] = set()

    def _do_connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectionRefusedError("connection refused")
        self.connected = True

    def _do_disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def _is_connected(self) -> bool:
        return self.connected

    def _do_upload(self, path: str, target_path: str) -> MessageList:
        self.upload_threads.add(threading.get_ident())
        self.uploads.append((path, target_path))
        if self.fail_uploads:
            raise OSError("network is unreachable")
        return MessageList(Message.info(f"{path} uploaded to {self.name}:{target_path}"))


@pytest.fixture()
def site(tmp_path):
    """A watched root with one file in it."""
    root = tmp_path / "site"
    (root / "css").mkdir(parents=True)
    (root / "index.html").write_text("<html></html>")
    (root / "css" / "a.css").write_text("body {}")
    return root


@pytest.fixture()
def make_settings(site, tmp_path):
    """Build Settings for the ``site`` root with the given targets."""

    def _make(*targets: Target, **overrides) -> Settings:
        values = dict(
            local_path=str(site),
            target_list=list(targets),
            allow_multithreaded_upload=False,
            poll_interval=0.01,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture()
def backup_target(tmp_path):
    return Target(name="backup", method=CopyMethod.COPY, target_path=str(tmp_path / "backup") + os.sep)


@pytest.fixture()
def ftp_target():
    return Target(
        name="www",
        method=CopyMethod.FTP,
        host="host",
        username="user",
        password="secret",
        target_path="/www/",
    )


@pytest.fixture()
def fake_factory():
    """Transport factory that builds a FakeTransport for non-copy targets."""
    from sitepush.sync.transport import create_transport

    created: dict[str, Transport] = {}

    def _factory(target: Target) -> Transport:
        if target.method == CopyMethod.COPY:
            transport = create_transport(target)
        else:
            transport = FakeTransport(target)
        created[target.display_name] = transport
        return transport

    _factory.created = created
    return _factory
