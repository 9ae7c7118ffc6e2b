"""Tests for the transport contract and the local copy variant."""

import os
import stat

import pytest
from conftest import FakeTransport

from sitepush.schemas.settings import CopyMethod, Target
from sitepush.schemas.sync import MessageType
from sitepush.sync.transport import (
    FtpTransport,
    LocalTransport,
    ScpTransport,
    create_transport,
)


@pytest.fixture
def local(tmp_path):
    return LocalTransport(Target(name="backup", target_path=str(tmp_path / "backup") + os.sep))


@pytest.fixture
def source(tmp_path):
    f = tmp_path / "index.html"
    f.write_text("<html>new</html>")
    return f


class TestFactory:
    @pytest.mark.parametrize(
        ("method", "cls"),
        [(CopyMethod.COPY, LocalTransport), (CopyMethod.FTP, FtpTransport), (CopyMethod.SCP, ScpTransport)],
    )
    def test_maps_method_to_variant(self, method, cls):
        assert isinstance(create_transport(Target(method=method, target_path="/www/")), cls)

    def test_variant_rejects_other_method(self):
        with pytest.raises(ValueError, match="supports ftp only"):
            FtpTransport(Target(method=CopyMethod.SCP, target_path="/www/"))


class TestLocalTransport:
    def test_always_connected(self, local):
        assert local.is_connected()
        assert local.connect().is_success
        assert local.disconnect().is_success
        assert local.is_connected()

    def test_copies_file(self, local, source, tmp_path):
        dest = tmp_path / "backup" / "index.html"
        result = local.upload(str(source), str(dest))

        assert result.is_success
        assert dest.read_text() == "<html>new</html>"
        assert "copied to" in str(result)

    def test_creates_missing_directories(self, local, source, tmp_path):
        dest = tmp_path / "backup" / "a" / "b" / "c" / "index.html"
        assert local.upload(str(source), str(dest)).is_success
        assert dest.exists()

    def test_overwrites_read_only_destination(self, local, source, tmp_path):
        dest = tmp_path / "backup" / "index.html"
        dest.parent.mkdir()
        dest.write_text("old")
        os.chmod(dest, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)

        result = local.upload(str(source), str(dest))

        assert result.is_success
        assert dest.read_text() == "<html>new</html>"
        assert os.stat(dest).st_mode & stat.S_IWUSR

    def test_destination_without_directory_fails(self, local, source):
        result = local.upload(str(source), "index.html")

        assert not result.is_success
        assert "Directory must be specified" in str(result)

    def test_missing_source_is_error_message(self, local, tmp_path):
        result = local.upload(str(tmp_path / "gone.html"), str(tmp_path / "backup" / "gone.html"))

        assert not result.is_success
        assert result.errors[0].type == MessageType.ERROR
        assert "backup" in result.errors[0].content
        assert "gone.html" in result.errors[0].content


class TestReconnectPolicy:
    def _fake(self):
        return FakeTransport(Target(name="www", method=CopyMethod.FTP, target_path="/www/"))

    def test_connect_failure_is_error_message(self):
        t = self._fake()
        t.fail_connect = True

        result = t.connect()

        assert not result.is_success
        assert "Connection to www failed" in str(result)
        assert "connection refused" in str(result)

    def test_upload_reconnects_when_disconnected(self):
        t = self._fake()

        result = t.upload("/site/a.css", "/www/a.css")

        assert result.is_success
        assert t.disconnect_calls == 1
        assert t.connect_calls == 1
        assert "Connected to www" in str(result)

    def test_upload_skips_reconnect_when_connected(self):
        t = self._fake()
        t.connect()

        t.upload("/site/a.css", "/www/a.css")

        assert t.connect_calls == 1
        assert t.disconnect_calls == 0

    def test_reconnect_happens_once_per_call(self):
        t = self._fake()
        t.fail_connect = True

        result = t.upload("/site/a.css", "/www/a.css")

        assert not result.is_success
        assert t.connect_calls == 1
        assert t.uploads == []

    def test_reconnect_failure_names_file_and_target(self):
        t = self._fake()
        t.fail_connect = True

        result = t.upload("/src/index.html", "/www/index.html")

        assert "Connection to www failed" in str(result)
        assert "Error uploading /src/index.html to www:/www/index.html" in str(result)
        assert len(result.errors) == 2

    def test_upload_failure_names_target_and_paths(self):
        t = self._fake()
        t.fail_uploads = True

        result = t.upload("/site/a.css", "/www/a.css")

        assert not result.is_success
        assert "Error uploading /site/a.css to www:/www/a.css" in str(result)

    def test_context_manager_disconnects(self):
        with self._fake() as t:
            t.connect()
        assert not t.connected
