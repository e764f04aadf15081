from __future__ import annotations

import dataclasses

import pytest

from gonggan.errors import ValidationError
from gonggan.models import IMAGE_COMPLETED, IMAGE_FAILED, Message, Space
from gonggan.store import MessagePath, SpaceStore
from gonggan.store import paths as store_paths


def _other_space(space: Space) -> Space:
    return dataclasses.replace(space, id="space-2", title="other")


def test_message_update_shares_untouched_branches(sample_space: Space) -> None:
    other = _other_space(sample_space)
    store = SpaceStore([sample_space, other])
    before = store.spaces

    changed = store.update_message(
        MessagePath("space-1", "t1", "m2"), lambda m: dataclasses.replace(m, content="edited")
    )

    after = store.spaces
    assert changed is True
    assert after is not before
    assert after[1] is other
    space = after[0]
    assert space.files is sample_space.files
    assert space.notes is sample_space.notes
    assert space.generated_images is sample_space.generated_images
    messages = space.threads[0].messages
    assert messages[0] is sample_space.threads[0].messages[0]
    assert messages[2] is sample_space.threads[0].messages[2]
    assert messages[1].content == "edited"


def test_unknown_path_returns_same_collection(sample_space: Space) -> None:
    spaces = (sample_space,)

    assert store_paths.update_message(spaces, "space-1", "t1", "missing", lambda m: m) is spaces
    assert store_paths.update_thread(spaces, "nope", "t1", lambda t: t) is spaces
    assert store_paths.remove_child(spaces, "space-1", "notes", "missing") is spaces


def test_identity_transform_is_a_no_op(sample_space: Space) -> None:
    store = SpaceStore([sample_space])
    calls: list[object] = []
    store.subscribe(lambda previous, current: calls.append(current))

    assert store.update_message(MessagePath("space-1", "t1", "m1"), lambda m: m) is False
    assert calls == []


def test_updates_on_different_leaves_commute(sample_space: Space) -> None:
    def complete(image):
        return dataclasses.replace(image, status=IMAGE_COMPLETED, data=b"x")

    def fail(image):
        return dataclasses.replace(image, status=IMAGE_FAILED)

    spaces = (sample_space,)
    a_then_b = store_paths.update_child(
        store_paths.update_child(spaces, "space-1", "generated_images", "g1", complete),
        "space-1",
        "generated_images",
        "g2",
        fail,
    )
    b_then_a = store_paths.update_child(
        store_paths.update_child(spaces, "space-1", "generated_images", "g2", fail),
        "space-1",
        "generated_images",
        "g1",
        complete,
    )

    assert a_then_b == b_then_a


def test_same_leaf_last_write_wins(sample_space: Space) -> None:
    store = SpaceStore([sample_space])
    path = MessagePath("space-1", "t1", "m2")

    store.update_message(path, lambda m: dataclasses.replace(m, content="first"))
    store.update_message(path, lambda m: dataclasses.replace(m, content="second"))

    assert store.get_message(path).content == "second"


def test_listeners_receive_previous_and_current(sample_space: Space) -> None:
    store = SpaceStore()
    seen: list[tuple[int, int]] = []
    unsubscribe = store.subscribe(lambda previous, current: seen.append((len(previous), len(current))))

    store.add_space(sample_space)
    unsubscribe()
    store.remove_space(sample_space.id)

    assert seen == [(0, 1)]
    assert store.spaces == ()


def test_failing_listener_does_not_block_update(sample_space: Space) -> None:
    store = SpaceStore()

    def broken(previous, current) -> None:
        raise RuntimeError("boom")

    store.subscribe(broken)
    assert store.add_space(sample_space) is sample_space
    assert store.find_space("space-1") is sample_space


def test_append_message_and_lookups(sample_space: Space) -> None:
    store = SpaceStore([sample_space])
    extra = dataclasses.replace(sample_space.threads[0].messages[0], id="m4")

    store.append_message("space-1", "t1", extra)

    assert store.get_thread("space-1", "t1").messages[-1] == extra
    with pytest.raises(KeyError):
        store.get_message(MessagePath("space-1", "t1", "nope"))
    with pytest.raises(KeyError):
        store.get_space("nope")


def test_add_images_prepends(sample_space: Space) -> None:
    store = SpaceStore([sample_space])
    newest = dataclasses.replace(sample_space.generated_images[0], id="g9")

    store.add_images("space-1", [newest])

    assert [i.id for i in store.get_space("space-1").generated_images] == ["g9", "g1", "g2"]


def test_message_rejects_streaming_user_message(sample_space: Space) -> None:
    user = sample_space.threads[0].messages[0]
    with pytest.raises(ValidationError):
        Message(user.id, user.type, user.content_type, user.content, user.timestamp, True)
