"""Schemas for the change → task → transport pipeline.

Covers change events, task status, the per-operation message trail and
the audit record written for every finished transfer task.
"""

from collections.abc import Iterator
from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(StrEnum):
    """What happened to a file in the watched tree."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangeEvent(BaseModel):
    """A filesystem notification reduced to path and kind."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Absolute path of the changed file")
    kind: ChangeKind

    @property
    def is_upload(self) -> bool:
        return self.kind in (ChangeKind.CREATED, ChangeKind.MODIFIED)


class TaskStatus(StrEnum):
    """Lifecycle of a single transfer attempt."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILED)


class MessageType(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Message(BaseModel):
    """One line of the message trail produced by a task or connection."""

    type: MessageType = MessageType.INFO
    content: str

    @classmethod
    def info(cls, text: str) -> "Message":
        return cls(type=MessageType.INFO, content=text)

    @classmethod
    def warning(cls, text: str) -> "Message":
        return cls(type=MessageType.WARNING, content=text)

    @classmethod
    def error(cls, text: str, exc: BaseException | None = None) -> "Message":
        """Build an Error message, appending the exception text when given."""
        if exc is not None:
            text = f"{text}\n{exc}"
        return cls(type=MessageType.ERROR, content=text)

    def __str__(self) -> str:
        if self.type == MessageType.INFO:
            return self.content
        return f"{self.type.value.capitalize()}: {self.content}"


class MessageList:
    """Ordered batch of messages; successful iff none is an Error.

    Usage::

        ml = MessageList(Message.info("Connected to staging"))
        ml.add(transport.upload(path, target_path))
        if not ml.is_success:
            print(ml)
    """

    def __init__(self, *messages: Message) -> None:
        self.messages: list[Message] = list(messages)

    def add(self, item: "Message | MessageList") -> "MessageList":
        """Append a single message or every message of another list."""
        if isinstance(item, MessageList):
            self.messages.extend(item.messages)
        else:
            self.messages.append(item)
        return self

    def clear(self) -> None:
        self.messages.clear()

    @property
    def is_success(self) -> bool:
        return all(m.type != MessageType.ERROR for m in self.messages)

    @property
    def errors(self) -> list[Message]:
        return [m for m in self.messages if m.type == MessageType.ERROR]

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __str__(self) -> str:
        return "".join(f"{m}\n" for m in self.messages)

    def __repr__(self) -> str:
        return f"MessageList({self.messages!r})"


class TransferRecord(BaseModel):
    """An audit record for one finished transfer task."""

    timestamp: datetime
    task_id: UUID
    target_name: str
    source_path: str = Field(description="Local file that was pushed")
    destination: str = Field(description="Resolved path on the target")
    status: TaskStatus
    attempt: int = Field(default=1, ge=1)
    messages: list[Message] = Field(default_factory=list)
