from __future__ import annotations

import datetime as dt
import secrets
import time
from dataclasses import dataclass, field
from typing import Final

from .errors import ValidationError
from .utils import encode_data_url

MESSAGE_USER: Final = "USER"
MESSAGE_AI: Final = "AI"
MESSAGE_TYPES: Final[tuple[str, ...]] = (MESSAGE_USER, MESSAGE_AI)

CONTENT_TEXT: Final = "TEXT"
CONTENT_IMAGE: Final = "IMAGE"
CONTENT_TYPES: Final[tuple[str, ...]] = (CONTENT_TEXT, CONTENT_IMAGE)

FILE_KINDS: Final[tuple[str, ...]] = ("pdf", "doc", "image", "txt", "link")

IMAGE_GENERATING: Final = "generating"
IMAGE_COMPLETED: Final = "completed"
IMAGE_FAILED: Final = "failed"
IMAGE_STATUSES: Final[tuple[str, ...]] = (IMAGE_GENERATING, IMAGE_COMPLETED, IMAGE_FAILED)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def new_id() -> str:
    # Millisecond prefix keeps ids roughly sortable by creation time.
    return f"{time.time_ns() // 1_000_000}{secrets.token_hex(4)}"


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    type: str
    content_type: str
    content: str
    timestamp: dt.datetime
    is_streaming: bool = False
    quoted_context: str | None = None

    def __post_init__(self) -> None:
        if self.type not in MESSAGE_TYPES:
            raise ValidationError(f"Invalid message type: {self.type!r}")
        if self.content_type not in CONTENT_TYPES:
            raise ValidationError(f"Invalid content type: {self.content_type!r}")
        if self.is_streaming and (self.type != MESSAGE_AI or self.content_type != CONTENT_TEXT):
            raise ValidationError("only AI text messages can be streaming")


@dataclass(frozen=True, slots=True)
class Thread:
    id: str
    title: str
    last_message_at: dt.datetime
    messages: tuple[Message, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for message in self.messages:
            if message.id in seen:
                raise ValidationError(f"Duplicate message id in thread {self.id}: {message.id}")
            seen.add(message.id)


@dataclass(frozen=True, slots=True)
class SpaceFile:
    id: str
    name: str
    kind: str
    added_at: dt.datetime
    size: str | None = None
    mime_type: str | None = None
    data: bytes | None = None
    url: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in FILE_KINDS:
            raise ValidationError(
                f"Invalid file kind '{self.kind}'. Allowed kinds: {', '.join(FILE_KINDS)}"
            )
        if self.kind == "link" and self.data is not None:
            raise ValidationError("link files cannot carry an inline payload")

    @property
    def has_content(self) -> bool:
        return bool(self.data) and self.kind != "link"


@dataclass(frozen=True, slots=True)
class GeneratedImage:
    id: str
    prompt: str
    aspect_ratio: str
    quality: str
    created_at: dt.datetime
    status: str = IMAGE_GENERATING
    data: bytes | None = None
    mime_type: str = "image/png"

    def __post_init__(self) -> None:
        if self.status not in IMAGE_STATUSES:
            raise ValidationError(f"Invalid image status: {self.status!r}")

    @property
    def url(self) -> str:
        """Ready-to-display image reference, empty until the image is resolved."""
        if not self.data:
            return ""
        return encode_data_url(self.data, self.mime_type)


@dataclass(frozen=True, slots=True)
class Note:
    id: str
    content: str
    created_at: dt.datetime


@dataclass(frozen=True, slots=True)
class Space:
    id: str
    title: str
    description: str = ""
    last_active: dt.datetime = field(default_factory=utcnow)
    is_private: bool = False
    instructions: str = ""
    web_search_enabled: bool = True
    files: tuple[SpaceFile, ...] = ()
    threads: tuple[Thread, ...] = ()
    generated_images: tuple[GeneratedImage, ...] = ()
    notes: tuple[Note, ...] = ()
