"""CLI tests for configuration commands."""

import os
from pathlib import Path
from typing import Any

from click.testing import CliRunner

from syncpair.cli import cli
from syncpair.config import ConfigManager


def _env_with_home(tmp_path: Path) -> dict[str, Any]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("SYNCPAIR__")}
    env["HOME"] = str(tmp_path)
    return env


def _config_path(tmp_path: Path) -> Path:
    return tmp_path / ".syncpair" / "config.yaml"


def test_config_view_creates_and_displays_config(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(cli, ["config", "view"], env=env)

    assert result.exit_code == 0
    assert "upload:" in result.output
    assert _config_path(tmp_path).exists()


def test_config_set_updates_value_and_writes_diff(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(
        cli, ["config", "set", "server.base_url", "--value", "https://sync.example.com"], env=env
    )

    assert result.exit_code == 0
    assert "sync.example.com" in result.output

    manager = ConfigManager(config_path=_config_path(tmp_path), env={})
    config = manager.load(include_env=False)
    assert config.server.base_url == "https://sync.example.com"


def test_config_set_rejects_invalid_value(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    result = runner.invoke(
        cli, ["config", "set", "upload.max_concurrent_uploads", "--value", "0"], env=env
    )

    assert result.exit_code != 0
    manager = ConfigManager(config_path=_config_path(tmp_path), env={})
    assert manager.load(include_env=False).upload.max_concurrent_uploads == 5


def test_config_edit_applies_changes(tmp_path: Path, monkeypatch) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    manager = ConfigManager(config_path=_config_path(tmp_path), env={})
    manager.ensure_exists()

    def _mock_edit(text: str, **_: Any) -> str:
        return text.replace("upload_delay_ms: 2000", "upload_delay_ms: 750")

    monkeypatch.setattr("syncpair.cli.click.edit", _mock_edit)

    result = runner.invoke(cli, ["config", "edit"], env=env)

    assert result.exit_code == 0
    assert "updated" in result.output.lower()

    config = manager.load(include_env=False)
    assert config.upload.upload_delay_ms == 750
