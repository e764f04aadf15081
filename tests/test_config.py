import json
from pathlib import Path

import pytest

from gonggan.config import (
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    set_config_value,
    write_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_empty(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "absent.json") == {}
    empty = tmp_path / "empty.json"
    empty.write_text("  \n")
    assert read_config_file(empty) == {}


def test_write_config_file_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.json"
    data = {"provider": "anthropic", "history_limit": 6, "text_model": "claude-x"}
    write_config_file(data, config_path)
    assert json.loads(config_path.read_text()) == data
    assert read_config_file(config_path) == data


def test_get_config_path_uses_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.json"
    monkeypatch.setenv("GONGGAN_CONFIG", str(config_path))
    assert get_config_path() == config_path


def test_load_config_defaults() -> None:
    cfg = load_config()
    assert cfg.provider == "openai"
    assert cfg.history_limit == 10
    assert cfg.request_timeout_s == 60


def test_load_config_reads_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"provider": "anthropic", "history_limit": 4, "unknown": 1}\n')

    cfg = load_config(config_path)

    assert cfg.provider == "anthropic"
    assert cfg.history_limit == 4


def test_load_config_warns_and_uses_defaults_on_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken-json")

    with pytest.warns(RuntimeWarning, match="Invalid config file"):
        cfg = load_config(config_path)

    assert cfg.provider == "openai"


def test_get_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GONGGAN_PROVIDER", "anthropic")
    monkeypatch.setenv("GONGGAN_TEXT_MODEL", "claude-sonnet-4-5")
    overrides = get_env_overrides()
    assert overrides["provider"] == "anthropic"
    assert overrides["text_model"] == "claude-sonnet-4-5"


def test_env_overrides_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"history_limit": 4}\n')
    monkeypatch.setenv("GONGGAN_HISTORY_LIMIT", "12")

    assert load_config(config_path).history_limit == 12


def test_load_config_invalid_int_env_does_not_crash_and_warns(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{}\n")
    monkeypatch.setenv("GONGGAN_REQUEST_TIMEOUT_S", "nope")
    with pytest.warns(RuntimeWarning, match="request_timeout_s"):
        cfg = load_config(config_path)
    assert cfg.request_timeout_s == 60


def test_load_config_invalid_provider_warns(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"provider": "gemini"}\n')
    with pytest.warns(RuntimeWarning, match="provider"):
        cfg = load_config(config_path)
    assert cfg.provider == "openai"


def test_library_path_expands_user(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GONGGAN_LIBRARY_DIR", str(tmp_path / "spaces"))
    assert load_config().library_path == tmp_path / "spaces"


def test_set_config_value_merges_and_coerces(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"text_model": "gpt-x"}\n')

    set_config_value("history_limit", "4", config_path)
    set_config_value("provider", " Anthropic ", config_path)

    assert read_config_file(config_path) == {
        "text_model": "gpt-x",
        "history_limit": 4,
        "provider": "anthropic",
    }
    assert load_config(config_path).history_limit == 4


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("colour", "blue", "unknown config key"),
        ("history_limit", "ten", "must be an integer"),
        ("provider", "gemini", "provider must be one of"),
    ],
)
def test_set_config_value_rejects_bad_input(
    tmp_path: Path, key: str, value: str, message: str
) -> None:
    config_path = tmp_path / "config.json"
    with pytest.raises(ValueError, match=message):
        set_config_value(key, value, config_path)
    assert not config_path.exists()
