"""Tests for the top-level CLI commands."""

import json
import os
import time
from pathlib import Path
from typing import Any, Optional

import jwt
import pytest
from click.testing import CliRunner

from syncpair.agent import NotSignedInError
from syncpair.cli import cli
from syncpair.enrollment import EnrollmentCode
from syncpair.guard import AccessDecision, AccessState
from syncpair.notifications import NotificationCenter
from syncpair.state import Credential, CredentialStore, decode_claims
from syncpair.upload import UploadStatus


def _env_with_home(tmp_path: Path) -> dict[str, Any]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("SYNCPAIR__")}
    env["HOME"] = str(tmp_path)
    return env


def _store(tmp_path: Path) -> CredentialStore:
    return CredentialStore.open(tmp_path / ".syncpair")


def _token(**claims: object) -> str:
    return jwt.encode(dict(claims), "syncpair-test-secret-0123456789abcdef", algorithm="HS256")


class _FakeAgent:
    def __init__(self, decisions: list[AccessDecision]) -> None:
        self.notifications = NotificationCenter()
        self._decisions = decisions
        self.closed = False
        self.enrollment_runs = 0
        self.pushed: list[tuple[Path, Optional[Path]]] = []
        self.push_status: Optional[UploadStatus] = UploadStatus.UPLOADED

    def check_access(self) -> AccessDecision:
        return self._decisions[0]

    def run_enrollment(self, *, on_code, stop_event) -> AccessDecision:
        self.enrollment_runs += 1
        on_code(EnrollmentCode(code="123456", expires_at=0.0))
        return self._decisions[-1]

    def upload_file(self, path: Path, *, root: Optional[Path] = None, timeout=None) -> Any:
        self.pushed.append((path, root))
        if not self._decisions[0].authenticated:
            raise NotSignedInError("Sign in with `syncpair login` before uploading.")
        return self.push_status

    def start_watching(self, root: Path) -> Path:
        raise NotSignedInError("Sign in with `syncpair login` before watching a folder.")

    @property
    def uploads(self) -> Any:
        return _FakeUploads()

    def close(self) -> None:
        self.closed = True


class _FakeUploads:
    def subscribe(self, callback) -> Any:
        return lambda: None


def _signed_in(name: Optional[str] = "Acme") -> AccessDecision:
    token = _token(exp=time.time() + 3600, org_name=name)
    return AccessDecision(
        AccessState.AUTHENTICATED,
        credential=Credential(token=token, claims=decode_claims(token), organization_id="org-1"),
    )


def _signed_out() -> AccessDecision:
    return AccessDecision(AccessState.UNAUTHENTICATED, reason="no credential")


def test_cli_help_displays_commands() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "syncpair pairs this machine" in result.output
    for command in ["login", "logout", "status", "watch", "upload", "config"]:
        assert command in result.output


def test_status_json_reports_signed_out(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(cli, ["status", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["signed_in"] is False
    assert payload["reason"] == "no credential"
    assert payload["upload"]["max_concurrent_uploads"] == 5
    assert payload["recent_dirs"] == []


def test_status_json_reports_organization_from_token(tmp_path: Path) -> None:
    runner = CliRunner()
    store = _store(tmp_path)
    store.set_token(
        _token(exp=time.time() + 3600, org_name="Acme", org_image_url="https://img/acme.png")
    )
    store.set_organization_id("org-1")
    store.push_recent("/data/projects")

    result = runner.invoke(cli, ["status", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["signed_in"] is True
    assert payload["organization"] == {
        "id": "org-1",
        "name": "Acme",
        "image_url": "https://img/acme.png",
    }
    assert payload["expires_at"].endswith("Z")
    assert payload["recent_dirs"] == ["/data/projects"]


def test_status_clears_expired_token(tmp_path: Path) -> None:
    runner = CliRunner()
    store = _store(tmp_path)
    store.set_token(_token(exp=time.time() - 10))

    result = runner.invoke(cli, ["status"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "expired" in result.output
    assert _store(tmp_path).get_token() is None


def test_logout_forgets_token(tmp_path: Path) -> None:
    runner = CliRunner()
    _store(tmp_path).set_token(_token(exp=time.time() + 3600))

    result = runner.invoke(cli, ["logout"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "Signed out." in result.output
    assert _store(tmp_path).get_token() is None


def test_recent_lists_folders_most_recent_first(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    empty = runner.invoke(cli, ["recent"], env=env)
    assert "No folders watched yet." in empty.output

    store = _store(tmp_path)
    store.push_recent("/a")
    store.push_recent("/b")
    result = runner.invoke(cli, ["recent"], env=env)

    assert result.exit_code == 0
    assert "1. /b" in result.output
    assert "2. /a" in result.output


def test_upload_set_persists_valid_value(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        cli,
        ["upload", "set", "max_concurrent_uploads", "--value", "8"],
        env=_env_with_home(tmp_path),
    )

    assert result.exit_code == 0
    assert _store(tmp_path).load_upload_config().max_concurrent_uploads == 8


@pytest.mark.parametrize("value", ["0", "21"])
def test_upload_set_rejects_out_of_range_concurrency(tmp_path: Path, value: str) -> None:
    runner = CliRunner()

    result = runner.invoke(
        cli,
        ["upload", "set", "max_concurrent_uploads", "--value", value],
        env=_env_with_home(tmp_path),
    )

    assert result.exit_code != 0
    assert _store(tmp_path).load_upload_config().max_concurrent_uploads == 5


def test_upload_view_json(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(cli, ["upload", "view", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["upload_delay_ms"] == 2000
    assert "*.tmp" in payload["ignored_patterns"]


def test_login_when_already_signed_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    agent = _FakeAgent([_signed_in()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    runner = CliRunner()

    result = runner.invoke(cli, ["login"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "Already signed in to Acme" in result.output
    assert agent.enrollment_runs == 0
    assert agent.closed


def test_login_displays_code_and_reports_pairing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    agent = _FakeAgent([_signed_out(), _signed_in()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    runner = CliRunner()

    result = runner.invoke(cli, ["login"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "Enrollment code: 123-456" in result.output
    assert "Device paired with Acme" in result.output
    assert agent.closed


def test_login_fails_when_enrollment_aborted(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    agent = _FakeAgent([_signed_out()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    runner = CliRunner()

    result = runner.invoke(cli, ["login"], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "Enrollment did not complete" in result.output


def test_watch_requires_sign_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    agent = _FakeAgent([_signed_out()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    folder = tmp_path / "docs"
    folder.mkdir()
    runner = CliRunner()

    result = runner.invoke(cli, ["watch", str(folder)], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "syncpair login" in result.output
    assert agent.closed


def test_upload_push_reports_uploaded_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    agent = _FakeAgent([_signed_in()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    folder = tmp_path / "docs"
    folder.mkdir()
    target = folder / "report.csv"
    target.write_text("a,b\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(
        cli,
        ["upload", "push", str(target), "--root", str(tmp_path)],
        env=_env_with_home(tmp_path),
    )

    assert result.exit_code == 0
    assert "Uploaded report.csv" in result.output
    assert agent.pushed == [(target, tmp_path)]
    assert agent.closed


def test_upload_push_fails_when_upload_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    agent = _FakeAgent([_signed_in()])
    agent.push_status = UploadStatus.FAILED
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    target = tmp_path / "report.csv"
    target.write_text("a,b\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["upload", "push", str(target)], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "did not complete (failed)" in result.output


def test_upload_push_requires_sign_in(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    agent = _FakeAgent([_signed_out()])
    monkeypatch.setattr("syncpair.cli._create_agent", lambda config: agent)
    target = tmp_path / "report.csv"
    target.write_text("a,b\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["upload", "push", str(target)], env=_env_with_home(tmp_path))

    assert result.exit_code != 0
    assert "syncpair login" in result.output
    assert agent.closed
