"""Transports that push one file to one target.

Three variants share a single contract:
  - copy: plain local file copy (mounted shares, backups)
  - ftp: stdlib ``ftplib`` control connection with size verification
  - scp: SSH via ``paramiko``; an SFTP channel carries the data, a second
    SSH session runs remediation and post-upload commands

Every public method returns a ``MessageList`` instead of raising. Each
transport serialises connect, disconnect and upload on its own lock, so
two tasks for the same target never race on its connection state.
"""

import ftplib
import logging
import os
import posixpath
import shlex
import shutil
import stat
import threading
from abc import ABC, abstractmethod

import paramiko

from sitepush.errors import TransportError
from sitepush.schemas.settings import CopyMethod, Target
from sitepush.schemas.sync import Message, MessageList

logger = logging.getLogger(__name__)

NETWORK_TIMEOUT = 30.0

# Re-sends after a size mismatch on the remote side
FTP_VERIFY_ATTEMPTS = 3

_NO_SUCH_FILE = "no such file"
_PERMISSION_DENIED = "permission denied"
# Servers that refuse to set mtime after the data landed
_SET_TIMES_QUIRKS = ("set times", "operation not permitted", "permission denied")


class Transport(ABC):
    """Protocol-specific connection for one target.

    Subclasses implement the ``_do_*`` hooks and may raise freely; the
    public methods convert every failure into an Error message that names
    the target and the path involved.
    """

    method: CopyMethod

    def __init__(self, target: Target) -> None:
        if target.method != self.method:
            raise ValueError(
                f"{type(self).__name__} supports {self.method.value} only, got {target.method.value}"
            )
        self._target = target
        self._lock = threading.RLock()

    @property
    def target(self) -> Target:
        return self._target

    @property
    def name(self) -> str:
        return self._target.display_name

    def connect(self) -> MessageList:
        with self._lock:
            try:
                self._do_connect()
            except Exception as exc:
                logger.warning("Connection to %s failed: %s", self.name, exc)
                return MessageList(Message.error(f"Connection to {self.name} failed", exc))
            logger.info("Connected to %s", self.name)
            return MessageList(Message.info(f"Connected to {self.name}"))

    def disconnect(self) -> MessageList:
        with self._lock:
            try:
                self._do_disconnect()
            except Exception as exc:
                logger.warning("Error disconnecting from %s: %s", self.name, exc)
                return MessageList(Message.error(f"Error disconnecting from {self.name}", exc))
            return MessageList(Message.info(f"Disconnected from {self.name}"))

    def is_connected(self) -> bool:
        with self._lock:
            try:
                return self._is_connected()
            except Exception:
                logger.debug("Connection check for %s failed", self.name, exc_info=True)
                return False

    def upload(self, path: str, target_path: str) -> MessageList:
        """Push ``path`` to ``target_path`` on this target.

        Reconnects once (disconnect, then connect) if the connection was
        lost; no further retries happen within one call.
        """
        with self._lock:
            messages = MessageList()

            if not self.is_connected():
                self.disconnect()
                result = self.connect()
                messages.add(result)
                if not result.is_success:
                    messages.add(
                        Message.error(f"Error uploading {path} to {self.name}:{target_path}")
                    )
                    return messages

            try:
                messages.add(self._do_upload(path, target_path))
            except Exception as exc:
                logger.debug("Upload of %s to %s failed", path, self.name, exc_info=True)
                messages.add(self._upload_error(path, target_path, exc))
            return messages

    def close(self) -> None:
        self.disconnect()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _upload_error(self, path: str, target_path: str, exc: BaseException) -> Message:
        return Message.error(f"Error uploading {path} to {self.name}:{target_path}", exc)

    @abstractmethod
    def _do_connect(self) -> None: ...

    @abstractmethod
    def _do_disconnect(self) -> None: ...

    @abstractmethod
    def _is_connected(self) -> bool: ...

    @abstractmethod
    def _do_upload(self, path: str, target_path: str) -> MessageList: ...


class LocalTransport(Transport):
    """Copies files on the local filesystem; always connected."""

    method = CopyMethod.COPY

    def _do_connect(self) -> None:
        pass

    def _do_disconnect(self) -> None:
        pass

    def _is_connected(self) -> bool:
        return True

    def _do_upload(self, path: str, target_path: str) -> MessageList:
        directory = os.path.dirname(target_path)
        if not directory:
            raise ValueError(f"Directory must be specified for target_path={target_path}")

        os.makedirs(directory, exist_ok=True)

        if os.path.isfile(target_path):
            mode = os.stat(target_path).st_mode
            if not mode & stat.S_IWUSR:
                os.chmod(target_path, mode | stat.S_IWUSR)

        shutil.copyfile(path, target_path)
        return MessageList(Message.info(f"{path} copied to {target_path}"))


class FtpTransport(Transport):
    """Uploads over a single FTP control connection."""

    method = CopyMethod.FTP

    def __init__(self, target: Target) -> None:
        super().__init__(target)
        self._client: ftplib.FTP | None = None
        self._known_dirs: set[str] = set()

    def _do_connect(self) -> None:
        client = ftplib.FTP(timeout=NETWORK_TIMEOUT)
        client.connect(self._target.host, self._target.port)
        client.login(self._target.username or "anonymous", self._target.password or "")
        self._client = client
        self._known_dirs.clear()

    def _do_disconnect(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.quit()
        except ftplib.all_errors:
            client.close()

    def _is_connected(self) -> bool:
        if self._client is None or self._client.sock is None:
            return False
        try:
            self._client.voidcmd("NOOP")
        except ftplib.all_errors:
            return False
        return True

    def _ensure_remote_dir(self, directory: str) -> None:
        """Create ``directory`` and its parents, one MKD per missing level."""
        if not directory or directory in self._known_dirs:
            return

        current = "/" if directory.startswith("/") else ""
        for part in directory.strip("/").split("/"):
            current = posixpath.join(current, part) if current else part
            if current in self._known_dirs:
                continue
            try:
                self._client.mkd(current)
            except ftplib.error_perm as exc:
                # 550 is also returned when the directory already exists
                logger.debug("MKD %s on %s: %s", current, self.name, exc)
            self._known_dirs.add(current)

    def _remote_size(self, target_path: str) -> int | None:
        try:
            self._client.voidcmd("TYPE I")
            return self._client.size(target_path)
        except ftplib.error_perm:
            return None

    def _do_upload(self, path: str, target_path: str) -> MessageList:
        self._ensure_remote_dir(posixpath.dirname(target_path))
        local_size = os.path.getsize(path)

        for attempt in range(1, FTP_VERIFY_ATTEMPTS + 1):
            with open(path, "rb") as f:
                self._client.storbinary(f"STOR {target_path}", f)

            remote_size = self._remote_size(target_path)
            if remote_size is None:
                return MessageList(
                    Message.info(f"{path} uploaded to {self.name}:{target_path}"),
                    Message.warning(f"{self.name} does not report file sizes, upload not verified"),
                )
            if remote_size == local_size:
                return MessageList(Message.info(f"{path} uploaded to {self.name}:{target_path}"))

            logger.warning(
                "Verification of %s on %s failed (attempt %d/%d): %d != %d bytes",
                target_path,
                self.name,
                attempt,
                FTP_VERIFY_ATTEMPTS,
                remote_size,
                local_size,
            )

        raise TransportError(self.name, f"verification of {target_path} failed")


class ScpTransport(Transport):
    """Uploads over SSH and optionally runs commands on the target.

    The command session is opened lazily, only when a remediation step or
    a post-upload command needs it, and reused afterwards.
    """

    method = CopyMethod.SCP

    def __init__(self, target: Target) -> None:
        super().__init__(target)
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None
        self._cmd_ssh: paramiko.SSHClient | None = None

    def _open_ssh(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            self._target.host,
            port=self._target.port,
            username=self._target.username,
            password=self._target.password,
            key_filename=self._target.key_filename,
            timeout=NETWORK_TIMEOUT,
        )
        return client

    @staticmethod
    def _is_active(client: paramiko.SSHClient | None) -> bool:
        if client is None:
            return False
        transport = client.get_transport()
        return transport is not None and transport.is_active()

    def _do_connect(self) -> None:
        self._ssh = self._open_ssh()
        self._sftp = self._ssh.open_sftp()

    def _do_disconnect(self) -> None:
        sftp, ssh, cmd_ssh = self._sftp, self._ssh, self._cmd_ssh
        self._sftp = self._ssh = self._cmd_ssh = None
        for resource in (sftp, ssh, cmd_ssh):
            if resource is not None:
                resource.close()

    def _is_connected(self) -> bool:
        return self._sftp is not None and self._is_active(self._ssh)

    def _do_upload(self, path: str, target_path: str) -> MessageList:
        messages = MessageList()

        try:
            return self._put(path, target_path)
        except OSError as exc:
            text = str(exc).lower()
            if _NO_SUCH_FILE in text:
                remediation = self._create_directory(posixpath.dirname(target_path))
            elif _PERMISSION_DENIED in text:
                remediation = self._change_rights(target_path)
            else:
                messages.add(self._upload_error(path, target_path, exc))
                return messages

        logger.info("Retrying upload of %s to %s after remediation", path, self.name)
        messages.add(remediation)
        try:
            messages.add(self._put(path, target_path))
        except Exception as exc:
            messages.add(self._upload_error(path, target_path, exc))
        return messages

    def _put(self, path: str, target_path: str) -> MessageList:
        self._sftp.put(path, target_path)
        messages = MessageList(Message.info(f"{path} uploaded to {self.name}:{target_path}"))

        if self._target.preserve_times:
            messages.add(self._set_times(path, target_path))

        if self._target.commands:
            messages.add(self._run_commands(target_path))

        return messages

    def _set_times(self, path: str, target_path: str) -> MessageList:
        st = os.stat(path)
        try:
            self._sftp.utime(target_path, (st.st_atime, st.st_mtime))
        except OSError as exc:
            text = str(exc).lower()
            if not any(quirk in text for quirk in _SET_TIMES_QUIRKS):
                raise
            logger.debug("Ignore: %s", exc)
        return MessageList()

    def _command_client(self) -> paramiko.SSHClient:
        if not self._is_active(self._cmd_ssh):
            if self._cmd_ssh is not None:
                self._cmd_ssh.close()
            self._cmd_ssh = self._open_ssh()
        return self._cmd_ssh

    def _run(self, command: str) -> Message:
        _, stdout, stderr = self._command_client().exec_command(command, timeout=NETWORK_TIMEOUT)
        exit_status = stdout.channel.recv_exit_status()
        output = stdout.read().decode(errors="replace").strip()
        if exit_status != 0:
            output = output or stderr.read().decode(errors="replace").strip()
        return Message.info(f"{command}: {exit_status} {output}".rstrip())

    def _sudo(self, command: str) -> str:
        # sudo needs a NOPASSWD sudoers entry for mkdir, touch and chmod
        return f"sudo {command}" if self._target.use_sudo_in_cmds else command

    def _run_commands(self, target_path: str) -> MessageList:
        messages = MessageList()
        try:
            for command in self._target.commands:
                if not command.matches(target_path):
                    continue
                messages.add(self._run(command.render(target_path)))
        except Exception as exc:
            messages.add(Message.error(f"Commands failed on {self.name} for {target_path}", exc))
        return messages

    def _create_directory(self, directory: str) -> MessageList:
        return MessageList(self._run(self._sudo(f"mkdir -p {shlex.quote(directory)}")))

    def _change_rights(self, target_path: str) -> MessageList:
        quoted = shlex.quote(target_path)
        return MessageList(
            self._run(self._sudo(f"touch {quoted}")),
            self._run(self._sudo(f"chmod a+rw {quoted}")),
        )


_TRANSPORTS: dict[CopyMethod, type[Transport]] = {
    CopyMethod.COPY: LocalTransport,
    CopyMethod.FTP: FtpTransport,
    CopyMethod.SCP: ScpTransport,
}


def create_transport(target: Target) -> Transport:
    """Build the transport variant matching the target's copy method."""
    try:
        transport_cls = _TRANSPORTS[target.method]
    except KeyError:
        raise ValueError(f"Unknown method {target.method}") from None
    return transport_cls(target)
