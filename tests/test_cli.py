from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from gonggan import __version__
from gonggan.cli import app
from gonggan.generation import Fragment, ImageRequest, ImageResult, TextRequest
from gonggan.library import SpaceLibrary

runner = CliRunner()


class StubClient:
    async def stream_text(self, request: TextRequest):
        for text in ("Hello ", "there"):
            yield Fragment(text)

    async def generate_image(self, request: ImageRequest) -> ImageResult | None:
        return ImageResult(b"\x89PNG")


@pytest.fixture
def library(tmp_path: Path) -> SpaceLibrary:
    return SpaceLibrary(tmp_path / "library")


def _only_space_id(library: SpaceLibrary) -> str:
    spaces = library.load_all()
    assert len(spaces) == 1
    return spaces[0].id


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("new", "list", "chat", "regenerate", "image", "export", "import", "note"):
        assert command in result.stdout


def test_note_help_lists_subcommands() -> None:
    result = runner.invoke(app, ["note", "--help"])
    assert result.exit_code == 0
    assert "add" in result.stdout
    assert "to-file" in result.stdout


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_new_and_list(library: SpaceLibrary) -> None:
    result = runner.invoke(app, ["new", "--title", "Trip", "--instructions", "be brief"])
    assert result.exit_code == 0, result.stdout

    listing = runner.invoke(app, ["list"])
    assert listing.exit_code == 0
    assert "Trip" in listing.stdout
    assert library.load_all()[0].instructions == "be brief"


def test_list_empty() -> None:
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No spaces yet" in result.stdout


def test_unknown_space_fails() -> None:
    result = runner.invoke(app, ["show", "missing"])
    assert result.exit_code == 1
    assert "Space not found" in result.stdout


def test_notes_and_files(library: SpaceLibrary, tmp_path: Path) -> None:
    runner.invoke(app, ["new", "--title", "Work"])
    attachment = tmp_path / "brief.txt"
    attachment.write_text("context")

    assert runner.invoke(app, ["note", "add", "Work", "remember this"]).exit_code == 0
    assert runner.invoke(app, ["file", "add", "Work", str(attachment)]).exit_code == 0
    assert runner.invoke(app, ["file", "link", "Work", "https://example.com"]).exit_code == 0

    space = library.load_all()[0]
    assert [n.content for n in space.notes] == ["remember this"]
    assert [(f.name, f.kind) for f in space.files] == [
        ("brief.txt", "txt"),
        ("https://example.com", "link"),
    ]
    assert space.files[0].data == b"context"

    notes = runner.invoke(app, ["note", "list", "Work"])
    assert "remember this" in notes.stdout
    assert runner.invoke(app, ["note", "to-file", "Work", space.notes[0].id]).exit_code == 0
    assert runner.invoke(app, ["note", "rm", "Work", space.notes[0].id]).exit_code == 0
    assert runner.invoke(app, ["file", "rm", "Work", space.files[1].id]).exit_code == 0
    assert runner.invoke(app, ["note", "rm", "Work", "nope"]).exit_code == 1

    space = library.load_all()[0]
    assert space.notes == ()
    assert [f.kind for f in space.files] == ["txt", "txt"]


def test_chat_streams_reply_and_persists(
    library: SpaceLibrary, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("gonggan.cli._model_client", StubClient)
    runner.invoke(app, ["new", "--title", "Chat"])

    result = runner.invoke(app, ["chat", "Chat", "hi there"])

    assert result.exit_code == 0, result.stdout
    assert "Hello" in result.stdout
    assert "there" in result.stdout
    thread = library.load_all()[0].threads[0]
    assert [m.content for m in thread.messages] == ["hi there", "Hello there"]

    regenerated = runner.invoke(app, ["regenerate", "Chat", thread.id])
    assert regenerated.exit_code == 0, regenerated.stdout
    assert len(library.load_all()[0].threads[0].messages) == 2


def test_image_command_fills_gallery(
    library: SpaceLibrary, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("gonggan.cli._model_client", StubClient)
    runner.invoke(app, ["new", "--title", "Art"])

    result = runner.invoke(app, ["image", "Art", "a cat", "--count", "2"])

    assert result.exit_code == 0, result.stdout
    assert "2/2 images generated" in result.stdout
    assert [i.status for i in library.load_all()[0].generated_images] == ["completed"] * 2

    rejected = runner.invoke(app, ["image", "Art", "a cat", "--count", "5"])
    assert rejected.exit_code == 1


def test_image_command_reuses_gallery_image(
    library: SpaceLibrary, monkeypatch: pytest.MonkeyPatch
) -> None:
    requests: list[ImageRequest] = []

    class RecordingClient(StubClient):
        async def generate_image(self, request: ImageRequest) -> ImageResult | None:
            requests.append(request)
            return ImageResult(b"\x89PNG")

    monkeypatch.setattr("gonggan.cli._model_client", RecordingClient)
    runner.invoke(app, ["new", "--title", "Art"])
    runner.invoke(app, ["image", "Art", "a cat"])
    first = library.load_all()[0].generated_images[0]

    result = runner.invoke(app, ["image", "Art", "the same cat", "--ref-image", first.id])

    assert result.exit_code == 0, result.stdout
    assert [ref.data for ref in requests[-1].reference_images] == [b"\x89PNG"]
    unknown = runner.invoke(app, ["image", "Art", "x", "--ref-image", "nope"])
    assert unknown.exit_code == 1
    assert len(library.load_all()[0].generated_images) == 2


def test_export_then_import(library: SpaceLibrary, tmp_path: Path) -> None:
    runner.invoke(app, ["new", "--title", "Share me"])
    runner.invoke(app, ["note", "add", "Share me", "note body"])
    output = tmp_path / "out" / "shared.gonggan"

    exported = runner.invoke(app, ["export", "Share me", "--output", str(output)])
    assert exported.exit_code == 0, exported.stdout
    assert output.exists()

    preview = runner.invoke(app, ["import", str(output), "--dry-run"])
    assert preview.exit_code == 0
    assert "Dry run" in preview.stdout
    assert len(library.load_all()) == 1

    imported = runner.invoke(app, ["import", str(output)])
    assert imported.exit_code == 0, imported.stdout
    spaces = library.load_all()
    assert len(spaces) == 2
    assert len({space.id for space in spaces}) == 2
    assert all(space.notes[0].content == "note body" for space in spaces)


def test_export_to_directory_uses_title(library: SpaceLibrary, tmp_path: Path) -> None:
    runner.invoke(app, ["new", "--title", "Dir"])
    target = tmp_path / "exports"

    result = runner.invoke(app, ["export", _only_space_id(library), "--output-dir", str(target)])

    assert result.exit_code == 0, result.stdout
    [archive] = list(target.glob("Dir_*.gonggan"))
    assert archive.stat().st_size > 0


def test_import_rejects_bad_archive(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.gonggan"
    bogus.write_bytes(b"nope")

    result = runner.invoke(app, ["import", str(bogus)])

    assert result.exit_code == 1
    assert "Import failed" in result.stdout


def test_config_set_then_show(tmp_path: Path) -> None:
    saved = runner.invoke(app, ["config", "set", "history_limit", "6"])
    assert saved.exit_code == 0, saved.stdout
    assert json.loads((tmp_path / "config.json").read_text()) == {"history_limit": 6}

    shown = runner.invoke(app, ["config", "show"])
    assert shown.exit_code == 0
    assert "history_limit: 6" in shown.stdout

    rejected = runner.invoke(app, ["config", "set", "provider", "gemini"])
    assert rejected.exit_code == 1
    assert "Config not updated" in rejected.stdout
