from __future__ import annotations

import datetime as dt
from typing import Final

from ..models import utcnow
from ..utils import format_stamp, sanitize_title

ARCHIVE_SUFFIX: Final = ".gonggan"
FORMAT_VERSION: Final = "2.3"

METADATA_ENTRY: Final = "metadata.json"
THREADS_ENTRY: Final = "threads.json"
LEGACY_MESSAGES_ENTRY: Final = "messages.json"
FILES_MANIFEST_ENTRY: Final = "files_manifest.json"
GALLERY_ENTRY: Final = "gallery.json"
NOTES_ENTRY: Final = "notes.json"

FILES_DIR: Final = "files/"
IMAGES_DIR: Final = "images/"
NOTES_DIR: Final = "notes/"

LEGACY_THREAD_ID: Final = "legacy-thread"
LEGACY_THREAD_TITLE: Final = "이전 대화"

# Zip entries carry this timestamp so identical spaces produce identical bytes.
ENTRY_DATE_TIME: Final = (1980, 1, 1, 0, 0, 0)


def to_iso(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    value = value.astimezone(dt.UTC)
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    return value.isoformat(timespec=timespec).replace("+00:00", "Z")


def parse_iso(value: object, default: dt.datetime | None = None) -> dt.datetime:
    if isinstance(value, str) and value:
        try:
            parsed = dt.datetime.fromisoformat(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=dt.UTC)
            return parsed.astimezone(dt.UTC)
    return default if default is not None else utcnow()


def archive_filename(title: str, moment: dt.datetime | None = None) -> str:
    return f"{sanitize_title(title)}_{format_stamp(moment or utcnow())}{ARCHIVE_SUFFIX}"


def image_entry_name(image_id: str) -> str:
    return f"img_{image_id}.png"
