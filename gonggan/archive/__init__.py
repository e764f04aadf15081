from __future__ import annotations

from .format import ARCHIVE_SUFFIX, FORMAT_VERSION, LEGACY_THREAD_TITLE, archive_filename
from .reader import import_space, import_space_async, read_archive
from .writer import archive_bytes, export_space, export_space_async, write_archive

__all__ = [
    "ARCHIVE_SUFFIX",
    "FORMAT_VERSION",
    "LEGACY_THREAD_TITLE",
    "archive_bytes",
    "archive_filename",
    "export_space",
    "export_space_async",
    "import_space",
    "import_space_async",
    "read_archive",
    "write_archive",
]
