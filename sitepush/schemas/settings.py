"""Schemas for the settings document that drives a sitepush process.

The settings file is JSON with snake_case keys. One ``Target`` maps to one
long-lived transport for the whole process lifetime.
"""

import logging
import os
import re
import uuid
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from sitepush.sync.paths import append_local_separator_if_needed, append_separator_if_needed

logger = logging.getLogger(__name__)

DEFAULT_FTP_PORT = 21
DEFAULT_SCP_PORT = 22


class CopyMethod(StrEnum):
    """How files are delivered to a target."""

    COPY = "copy"
    FTP = "ftp"
    SCP = "scp"


class IgnorePatternType(StrEnum):
    """Which portion of a path an ignore pattern is matched against."""

    DIRECTORY = "directory"
    FILE = "file"


def _check_regex(value: str) -> None:
    # re.error is not a ValueError, so pydantic would let it escape
    try:
        re.compile(value)
    except re.error as exc:
        raise ValueError(f"Invalid regex {value!r}: {exc}") from exc


class IgnorePattern(BaseModel):
    pattern_type: IgnorePatternType = IgnorePatternType.DIRECTORY
    regex: str

    @field_validator("regex")
    @classmethod
    def _compiles(cls, value: str) -> str:
        _check_regex(value)
        return value

    @classmethod
    def default_directory(cls) -> "IgnorePattern":
        """Any directory segment starting with a dot."""
        return cls(pattern_type=IgnorePatternType.DIRECTORY, regex=r"[/\\]\.")

    @classmethod
    def default_file(cls) -> "IgnorePattern":
        """Any file name starting with a dot."""
        return cls(pattern_type=IgnorePatternType.FILE, regex=r"^\.")


def default_ignore_patterns() -> list[IgnorePattern]:
    return [IgnorePattern.default_directory(), IgnorePattern.default_file()]


class RemoteCommand(BaseModel):
    """A shell command run on the target after each matching upload.

    ``cmd`` is a template; ``{0}`` or ``{path}`` is replaced with the
    destination path of the uploaded file.
    """

    cmd: str
    matching_file: str | None = Field(
        default=None,
        description="Regex the destination path must match for the command to run",
    )

    @field_validator("matching_file")
    @classmethod
    def _compiles(cls, value: str | None) -> str | None:
        if value is not None:
            _check_regex(value)
        return value

    def matches(self, target_path: str) -> bool:
        if self.matching_file is None:
            return True
        return re.search(self.matching_file, target_path) is not None

    def render(self, target_path: str) -> str:
        return self.cmd.format(target_path, path=target_path)


class Target(BaseModel):
    """One configured destination: transport, credentials, remote root, options."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = ""
    method: CopyMethod = CopyMethod.COPY
    host: str = "localhost"
    port: int = Field(default=0, ge=0, le=65535, description="0 selects the protocol default")
    username: str | None = None
    password: str | None = None
    key_filename: str | None = Field(default=None, description="Private key for scp targets")
    target_path: str = Field(min_length=1, description="Remote root, separator appended")
    create_timestamped_copies: bool = False
    commands: list[RemoteCommand] = Field(default_factory=list)
    use_sudo_in_cmds: bool = False
    preserve_times: bool = False

    @field_validator("target_path")
    @classmethod
    def _with_separator(cls, value: str) -> str:
        return append_separator_if_needed(value)

    @model_validator(mode="after")
    def _fill_defaults(self) -> "Target":
        if self.port == 0:
            if self.method == CopyMethod.FTP:
                self.port = DEFAULT_FTP_PORT
            elif self.method == CopyMethod.SCP:
                self.port = DEFAULT_SCP_PORT
        if self.commands and self.method != CopyMethod.SCP:
            logger.warning(
                "Target %s: commands are only run for scp targets, ignoring %d command(s)",
                self.display_name,
                len(self.commands),
            )
        return self

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.method == CopyMethod.COPY:
            return self.target_path
        return f"{self.method.value}://{self.host}:{self.port}{self.target_path}"


class Settings(BaseModel):
    """Top-level settings document.

    Usage::

        settings = Settings.load("sitepush.json")
        for target in settings.target_list:
            print(target.display_name)
    """

    local_path: str = Field(description="Watched root directory, separator appended")
    target_list: list[Target] = Field(default_factory=list)
    ignore_patterns: list[IgnorePattern] = Field(default_factory=list)
    allow_multithreaded_upload: bool = True
    log_path: str | None = None
    change_list_path: str | None = None
    audit_log_path: str | None = None
    exit_request_file: str = ""
    poll_interval: float = Field(default=1.0, gt=0)

    @field_validator("local_path")
    @classmethod
    def _with_local_separator(cls, value: str) -> str:
        return append_local_separator_if_needed(value) if value else ""

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """Read and validate a settings file.

        Raises:
            OSError: If the file can not be read.
            pydantic.ValidationError: If the document is invalid.
        """
        return cls.model_validate_json(Path(path).read_text())

    def save(self, path: str | Path) -> None:
        Path(path).write_text(self.model_dump_json(indent=2, exclude_none=True) + "\n")


def generate_example_settings(path: str | Path) -> bool:
    """Write an example settings file with one target per copy method.

    Returns:
        True if the file was written, False on any error.
    """
    file = Path(path).resolve()
    home = Path.home()

    try:
        example = Settings(
            local_path=str(home / "Development"),
            log_path=str(file.with_suffix(".log")),
            change_list_path=str(file.with_suffix(".db")),
            audit_log_path=str(file.with_suffix(".jsonl")),
            exit_request_file="sitepush.exit",
            ignore_patterns=default_ignore_patterns(),
            target_list=[
                Target(
                    name="staging",
                    method=CopyMethod.SCP,
                    host="ssh.server.com",
                    port=DEFAULT_SCP_PORT,
                    username="devel",
                    password="devel-pass",
                    target_path="/usr/local/sf/",
                    commands=[
                        RemoteCommand(cmd="chmod 644 {path}", matching_file=r"\.php$"),
                    ],
                ),
                Target(
                    name="production",
                    method=CopyMethod.FTP,
                    host="ftp.server.com",
                    port=DEFAULT_FTP_PORT,
                    username="designer",
                    password="mypass",
                    target_path="/home/www/html/",
                ),
                Target(
                    name="backup",
                    method=CopyMethod.COPY,
                    target_path=str(home / "Backup") + os.sep,
                    create_timestamped_copies=True,
                ),
            ],
        )
        example.save(file)
    except (OSError, ValueError) as exc:
        logger.debug("Could not write example settings to %s: %s", file, exc)
        return False

    return True
