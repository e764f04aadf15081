from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from gonggan.models import (
    CONTENT_TEXT,
    IMAGE_COMPLETED,
    IMAGE_FAILED,
    MESSAGE_AI,
    MESSAGE_USER,
    GeneratedImage,
    Message,
    Note,
    Space,
    SpaceFile,
    Thread,
)


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GONGGAN_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("GONGGAN_LIBRARY_DIR", str(tmp_path / "library"))
    for name in ("GONGGAN_PROVIDER", "GONGGAN_API_KEY", "GONGGAN_HISTORY_LIMIT"):
        monkeypatch.delenv(name, raising=False)


def at(minute: int) -> dt.datetime:
    return dt.datetime(2024, 5, 1, 9, minute, 30, 250000, tzinfo=dt.UTC)


@pytest.fixture
def sample_space() -> Space:
    messages = (
        Message("m1", MESSAGE_USER, CONTENT_TEXT, "안녕하세요", at(1)),
        Message("m2", MESSAGE_AI, CONTENT_TEXT, "반갑습니다.\n\n출처:\n- [a](https://a)", at(2)),
        Message("m3", MESSAGE_USER, CONTENT_TEXT, "요약해줘", at(3), quoted_context="긴 문단"),
    )
    return Space(
        id="space-1",
        title="Research 노트!",
        description="desc",
        last_active=at(4),
        is_private=True,
        instructions="be brief",
        web_search_enabled=False,
        files=(
            SpaceFile("f1", "paper.pdf", "pdf", at(0), "2 KB", "application/pdf", b"%PDF-1.4\x00\xff"),
            SpaceFile("f2", "https://example.com", "link", at(0), url="https://example.com"),
            SpaceFile("f3", "notes.txt", "txt", at(0), "1 KB", "text/plain", "메모".encode()),
        ),
        threads=(Thread("t1", "안녕하세요", at(3), messages),),
        generated_images=(
            GeneratedImage("g1", "a cat", "1:1", "1K", at(5), IMAGE_COMPLETED, b"\x89PNG\r\n"),
            GeneratedImage("g2", "a dog", "16:9", "2K", at(6), IMAGE_FAILED),
        ),
        notes=(Note("n1234", "첫 줄 제목\n본문", at(7)),),
    )
