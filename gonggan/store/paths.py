"""Path-scoped updates over the immutable space collection.

Every function takes the current collection and returns a new one in which
only the addressed node and its ancestors are rebuilt. Untouched siblings keep
their identity, and when nothing changes (unknown id, or a transform that
returns its argument) the original collection object itself is returned.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from typing import Protocol, TypeVar

from ..models import Message, Space, Thread
from .types import ChildCollection

logger = logging.getLogger(__name__)

Spaces = tuple[Space, ...]


class _HasId(Protocol):
    @property
    def id(self) -> str: ...


T = TypeVar("T", bound=_HasId)


def replace_item(items: tuple[T, ...], item_id: str, transform: Callable[[T], T]) -> tuple[T, ...]:
    for index, item in enumerate(items):
        if item.id != item_id:
            continue
        updated = transform(item)
        if updated is item:
            return items
        return items[:index] + (updated,) + items[index + 1 :]
    logger.debug("path update did not resolve", extra={"item_id": item_id})
    return items


def remove_item(items: tuple[T, ...], item_id: str) -> tuple[T, ...]:
    kept = tuple(item for item in items if item.id != item_id)
    return items if len(kept) == len(items) else kept


def _with_field(obj: T, name: str, value: object) -> T:
    if getattr(obj, name) is value:
        return obj
    return dataclasses.replace(obj, **{name: value})  # type: ignore[type-var]


def update_space(spaces: Spaces, space_id: str, transform: Callable[[Space], Space]) -> Spaces:
    return replace_item(spaces, space_id, transform)


def insert_space(spaces: Spaces, space: Space, *, prepend: bool = True) -> Spaces:
    return (space, *spaces) if prepend else (*spaces, space)


def remove_space(spaces: Spaces, space_id: str) -> Spaces:
    return remove_item(spaces, space_id)


def update_thread(
    spaces: Spaces, space_id: str, thread_id: str, transform: Callable[[Thread], Thread]
) -> Spaces:
    return update_space(
        spaces,
        space_id,
        lambda space: _with_field(
            space, "threads", replace_item(space.threads, thread_id, transform)
        ),
    )


def update_message(
    spaces: Spaces,
    space_id: str,
    thread_id: str,
    message_id: str,
    transform: Callable[[Message], Message],
) -> Spaces:
    return update_thread(
        spaces,
        space_id,
        thread_id,
        lambda thread: _with_field(
            thread, "messages", replace_item(thread.messages, message_id, transform)
        ),
    )


def append_message(spaces: Spaces, space_id: str, thread_id: str, message: Message) -> Spaces:
    return update_thread(
        spaces,
        space_id,
        thread_id,
        lambda thread: dataclasses.replace(thread, messages=(*thread.messages, message)),
    )


def update_child(
    spaces: Spaces,
    space_id: str,
    collection: ChildCollection,
    child_id: str,
    transform: Callable[[T], T],
) -> Spaces:
    return update_space(
        spaces,
        space_id,
        lambda space: _with_field(
            space, collection, replace_item(getattr(space, collection), child_id, transform)
        ),
    )


def add_children(
    spaces: Spaces,
    space_id: str,
    collection: ChildCollection,
    children: tuple[_HasId, ...],
    *,
    prepend: bool = False,
) -> Spaces:
    if not children:
        return spaces

    def _add(space: Space) -> Space:
        current = getattr(space, collection)
        merged = (*children, *current) if prepend else (*current, *children)
        return dataclasses.replace(space, **{collection: merged})

    return update_space(spaces, space_id, _add)


def remove_child(
    spaces: Spaces, space_id: str, collection: ChildCollection, child_id: str
) -> Spaces:
    return update_space(
        spaces,
        space_id,
        lambda space: _with_field(space, collection, remove_item(getattr(space, collection), child_id)),
    )


def add_thread(spaces: Spaces, space_id: str, thread: Thread, *, prepend: bool = True) -> Spaces:
    def _add(space: Space) -> Space:
        threads = (thread, *space.threads) if prepend else (*space.threads, thread)
        return dataclasses.replace(space, threads=threads)

    return update_space(spaces, space_id, _add)


def remove_thread(spaces: Spaces, space_id: str, thread_id: str) -> Spaces:
    return update_space(
        spaces,
        space_id,
        lambda space: _with_field(space, "threads", remove_item(space.threads, thread_id)),
    )
