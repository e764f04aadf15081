from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from ..models import GeneratedImage, Message, Note, Space, SpaceFile, Thread
from . import edits as store_edits
from . import paths as store_paths
from .paths import Spaces
from .types import MessagePath

logger = logging.getLogger(__name__)

Listener = Callable[[Spaces, Spaces], None]


class SpaceStore:
    """Owns the space collection; every mutation goes through a path-scoped update."""

    def __init__(self, spaces: Iterable[Space] = ()) -> None:
        self._spaces: Spaces = tuple(spaces)
        self._listeners: list[Listener] = []

    @property
    def spaces(self) -> Spaces:
        return self._spaces

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(previous, current)`` after each change; returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def apply(self, update: Callable[[Spaces], Spaces]) -> bool:
        previous = self._spaces
        current = update(previous)
        if current is previous:
            return False
        self._spaces = current
        for listener in list(self._listeners):
            try:
                listener(previous, current)
            except Exception as exc:
                logger.exception("space store listener failed", exc_info=exc)
        return True

    # Lookups

    def find_space(self, space_id: str) -> Space | None:
        return next((space for space in self._spaces if space.id == space_id), None)

    def get_space(self, space_id: str) -> Space:
        space = self.find_space(space_id)
        if space is None:
            raise KeyError(f"unknown space: {space_id}")
        return space

    def get_thread(self, space_id: str, thread_id: str) -> Thread:
        space = self.get_space(space_id)
        for thread in space.threads:
            if thread.id == thread_id:
                return thread
        raise KeyError(f"unknown thread: {thread_id}")

    def get_message(self, path: MessagePath) -> Message:
        thread = self.get_thread(path.space_id, path.thread_id)
        for message in thread.messages:
            if message.id == path.message_id:
                return message
        raise KeyError(f"unknown message: {path.message_id}")

    # Path-scoped updates

    def add_space(self, space: Space, *, prepend: bool = True) -> Space:
        self.apply(lambda spaces: store_paths.insert_space(spaces, space, prepend=prepend))
        return space

    def remove_space(self, space_id: str) -> bool:
        return self.apply(lambda spaces: store_paths.remove_space(spaces, space_id))

    def replace_space(self, space: Space) -> bool:
        return self.update_space(space.id, lambda _current: space)

    def update_space(self, space_id: str, transform: Callable[[Space], Space]) -> bool:
        return self.apply(lambda spaces: store_paths.update_space(spaces, space_id, transform))

    def add_thread(self, space_id: str, thread: Thread) -> bool:
        return self.apply(lambda spaces: store_paths.add_thread(spaces, space_id, thread))

    def remove_thread(self, space_id: str, thread_id: str) -> bool:
        return self.apply(lambda spaces: store_paths.remove_thread(spaces, space_id, thread_id))

    def update_thread(
        self, space_id: str, thread_id: str, transform: Callable[[Thread], Thread]
    ) -> bool:
        return self.apply(
            lambda spaces: store_paths.update_thread(spaces, space_id, thread_id, transform)
        )

    def update_message(self, path: MessagePath, transform: Callable[[Message], Message]) -> bool:
        return self.apply(lambda spaces: store_paths.update_message(spaces, *path, transform))

    def append_message(self, space_id: str, thread_id: str, message: Message) -> bool:
        return self.apply(
            lambda spaces: store_paths.append_message(spaces, space_id, thread_id, message)
        )

    def update_file(
        self, space_id: str, file_id: str, transform: Callable[[SpaceFile], SpaceFile]
    ) -> bool:
        return self.apply(
            lambda spaces: store_paths.update_child(spaces, space_id, "files", file_id, transform)
        )

    def update_image(
        self,
        space_id: str,
        image_id: str,
        transform: Callable[[GeneratedImage], GeneratedImage],
    ) -> bool:
        return self.apply(
            lambda spaces: store_paths.update_child(
                spaces, space_id, "generated_images", image_id, transform
            )
        )

    def update_note(self, space_id: str, note_id: str, transform: Callable[[Note], Note]) -> bool:
        return self.apply(
            lambda spaces: store_paths.update_child(spaces, space_id, "notes", note_id, transform)
        )

    def add_images(self, space_id: str, images: Sequence[GeneratedImage]) -> bool:
        # Newest generations are shown first.
        return self.apply(
            lambda spaces: store_paths.add_children(
                spaces, space_id, "generated_images", tuple(images), prepend=True
            )
        )

    # Editing operations

    def create_space(self, title: str = store_edits.DEFAULT_SPACE_TITLE, **fields: Any) -> Space:
        return store_edits.create_space(self, title, **fields)

    def set_title(self, space_id: str, title: str) -> bool:
        return store_edits.set_title(self, space_id, title)

    def set_description(self, space_id: str, description: str) -> bool:
        return store_edits.set_description(self, space_id, description)

    def set_instructions(
        self, space_id: str, instructions: str, web_search_enabled: bool | None = None
    ) -> bool:
        return store_edits.set_instructions(self, space_id, instructions, web_search_enabled)

    def add_files(
        self, space_id: str, uploads: Sequence[store_edits.Upload]
    ) -> list[SpaceFile]:
        return store_edits.add_files(self, space_id, uploads)

    def add_link(self, space_id: str, url: str) -> SpaceFile:
        return store_edits.add_link(self, space_id, url)

    def remove_file(self, space_id: str, file_id: str) -> bool:
        return store_edits.remove_file(self, space_id, file_id)

    def create_thread(self, space_id: str, first_message: str, *, mode: str = "text") -> Thread:
        return store_edits.create_thread(self, space_id, first_message, mode=mode)

    def add_note(self, space_id: str, content: str) -> Note:
        return store_edits.add_note(self, space_id, content)

    def edit_note(self, space_id: str, note_id: str, content: str) -> bool:
        return store_edits.edit_note(self, space_id, note_id, content)

    def delete_note(self, space_id: str, note_id: str) -> bool:
        return store_edits.delete_note(self, space_id, note_id)

    def note_to_file(self, space_id: str, note_id: str) -> SpaceFile:
        return store_edits.note_to_file(self, space_id, note_id)

    def delete_image(self, space_id: str, image_id: str) -> bool:
        return store_edits.delete_image(self, space_id, image_id)
