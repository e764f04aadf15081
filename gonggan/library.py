from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .archive import ARCHIVE_SUFFIX, read_archive, write_archive
from .config import GongganConfig, load_config
from .errors import ArchiveFormatError
from .models import Space
from .store import SpaceStore
from .store.paths import Spaces

logger = logging.getLogger(__name__)


class SpaceLibrary:
    """Keeps one archive per space on disk so the CLI can resume between runs."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    @classmethod
    def from_config(cls, config: GongganConfig | None = None) -> SpaceLibrary:
        cfg = config or load_config()
        return cls(cfg.library_path)

    def path_for(self, space_id: str) -> Path:
        return self.directory / f"{space_id}{ARCHIVE_SUFFIX}"

    def load_all(self) -> list[Space]:
        if not self.directory.exists():
            return []
        spaces: list[Space] = []
        for path in sorted(self.directory.glob(f"*{ARCHIVE_SUFFIX}")):
            try:
                spaces.append(read_archive(path, keep_id=True))
            except ArchiveFormatError as exc:
                logger.warning(
                    "skipping unreadable library entry",
                    extra={"path": str(path), "error": str(exc)},
                )
        spaces.sort(key=lambda space: space.last_active, reverse=True)
        return spaces

    def save(self, space: Space) -> Path:
        path = self.path_for(space.id)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        write_archive(space, tmp_path)
        tmp_path.replace(path)
        logger.debug("space saved", extra={"space_id": space.id, "path": str(path)})
        return path

    def delete(self, space_id: str) -> bool:
        path = self.path_for(space_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def sync(self, previous: Spaces, current: Spaces) -> None:
        """Persist spaces whose object changed; drop archives of removed spaces."""
        before = {space.id: space for space in previous}
        for space in current:
            if before.pop(space.id, None) is not space:
                self.save(space)
        for space_id in before:
            self.delete(space_id)

    @contextmanager
    def session(self) -> Iterator[SpaceStore]:
        """Yield a store over every saved space and write back what changed."""
        store = SpaceStore(self.load_all())
        loaded = store.spaces
        try:
            yield store
        finally:
            self.sync(loaded, store.spaces)
