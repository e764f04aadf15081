from __future__ import annotations

import pytest

from gonggan.errors import ValidationError
from gonggan.store import SpaceStore, Upload
from gonggan.store.edits import DEFAULT_SPACE_TITLE, IMAGE_THREAD_TITLE, thread_title
from gonggan.utils import detect_file_kind, size_label


def test_create_space_defaults_and_prepends() -> None:
    store = SpaceStore()
    first = store.create_space("first")
    second = store.create_space()

    assert second.title == DEFAULT_SPACE_TITLE
    assert second.web_search_enabled is True
    assert [s.id for s in store.spaces] == [second.id, first.id]


def test_space_settings_updates() -> None:
    store = SpaceStore()
    space = store.create_space("a")

    store.set_title(space.id, "b")
    store.set_description(space.id, "desc")
    store.set_instructions(space.id, "persona", web_search_enabled=False)

    updated = store.get_space(space.id)
    assert (updated.title, updated.description, updated.instructions) == ("b", "desc", "persona")
    assert updated.web_search_enabled is False


def test_add_files_detects_kind_and_size() -> None:
    store = SpaceStore()
    space = store.create_space()
    uploads = [
        Upload("paper.pdf", b"x" * 2048, "application/pdf"),
        Upload("photo.jpg", b"y" * (2 * 1024 * 1024), "image/jpeg"),
        Upload("report.docx", b"z", None),
        Upload("readme", b"w", None),
    ]

    files = store.add_files(space.id, uploads)

    assert [f.kind for f in files] == ["pdf", "image", "doc", "txt"]
    assert files[0].size == "2 KB"
    assert files[1].size == "2.0 MB"
    assert files[2].mime_type == "application/octet-stream"
    assert store.get_space(space.id).files == tuple(files)


def test_add_link_and_remove_file() -> None:
    store = SpaceStore()
    space = store.create_space()

    link = store.add_link(space.id, " https://example.com ")

    assert link.kind == "link"
    assert link.url == link.name == "https://example.com"
    assert link.data is None
    assert store.remove_file(space.id, link.id) is True
    assert store.get_space(space.id).files == ()


def test_add_link_rejects_empty_url() -> None:
    store = SpaceStore()
    space = store.create_space()
    before = store.spaces

    with pytest.raises(ValidationError):
        store.add_link(space.id, "   ")
    assert store.spaces is before


def test_thread_titles() -> None:
    assert thread_title("short") == "short"
    assert thread_title("a" * 25) == "a" * 20 + "..."
    assert thread_title("draw a cat", mode="image") == IMAGE_THREAD_TITLE


def test_create_thread_prepends() -> None:
    store = SpaceStore()
    space = store.create_space()

    older = store.create_thread(space.id, "first question")
    newer = store.create_thread(space.id, "second question")

    assert [t.id for t in store.get_space(space.id).threads] == [newer.id, older.id]
    assert newer.messages == ()


def test_note_lifecycle_and_conversion() -> None:
    store = SpaceStore()
    space = store.create_space()

    note = store.add_note(space.id, "메모 내용")
    store.edit_note(space.id, note.id, "바뀐 메모")
    file = store.note_to_file(space.id, note.id)

    assert file.name == f"memo_{note.id[-4:]}.txt"
    assert file.kind == "txt"
    assert file.mime_type == "text/plain"
    assert file.data == "바뀐 메모".encode()
    assert file.size == f"{len(file.data) / 1024:.1f} KB"
    assert store.delete_note(space.id, note.id) is True
    assert store.get_space(space.id).notes == ()
    with pytest.raises(KeyError):
        store.note_to_file(space.id, note.id)


def test_size_label_and_kind_detection() -> None:
    assert size_label(100 * 1024) == "100 KB"
    assert size_label(10 * 1024) == "10 KB"
    assert size_label(3 * 1024 * 1024 + 512 * 1024) == "3.5 MB"
    assert detect_file_kind("a.DOC", "application/msword") == "doc"
    assert detect_file_kind("scan.png", "image/png") == "image"
