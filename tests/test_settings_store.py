"""Tests for the settings and credential stores."""

import json
import time
from pathlib import Path

import jwt
import pytest

from syncpair.config import UploadConfig
from syncpair.state import (
    CredentialError,
    CredentialStore,
    SettingsStore,
    StoreError,
    decode_claims,
)


def _token(**claims: object) -> str:
    return jwt.encode(dict(claims), "syncpair-test-secret-0123456789abcdef", algorithm="HS256")


def test_settings_store_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)

    store.set("token", "abc")
    store.set("nested", {"a": [1, 2]})

    reopened = SettingsStore(path)
    assert reopened.get("token") == "abc"
    assert reopened.get("nested") == {"a": [1, 2]}
    assert json.loads(path.read_text(encoding="utf-8"))["token"] == "abc"

    reopened.delete("token")
    assert SettingsStore(path).get("token") is None


def test_settings_store_returns_copies() -> None:
    store = SettingsStore()
    store.set("recentDirs", ["/a"])

    value = store.get("recentDirs")
    value.append("/b")

    assert store.get("recentDirs") == ["/a"]


def test_settings_store_rejects_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        SettingsStore(path)


def test_push_recent_deduplicates_and_caps_list() -> None:
    store = CredentialStore(SettingsStore())

    store.push_recent("/data/a")
    result = store.push_recent("/data/a")
    assert result == ["/data/a"]

    for name in ["b", "c", "d", "e", "f", "g"]:
        store.push_recent(f"/data/{name}")
    store.push_recent("/data/d")

    recent = store.recent_dirs()
    assert recent[0] == "/data/d"
    assert len(recent) == 5
    assert len(set(recent)) == 5
    assert "/data/a" not in recent


def test_load_credential_decodes_claims() -> None:
    store = CredentialStore(SettingsStore())
    expiry = int(time.time()) + 3600
    token = _token(org_id="org_1", org_name="Acme Labs", exp=expiry, scope="sync")

    store.set_token(token)
    credential = store.load_credential()

    assert credential is not None
    assert credential.token == token
    assert credential.organization_id == "org_1"
    assert credential.organization_name == "Acme Labs"
    assert credential.claims.expires_at == expiry
    assert credential.claims.scope == "sync"


def test_stored_organization_id_wins_over_claims() -> None:
    store = CredentialStore(SettingsStore())
    store.set_token(_token(org_id="org_claims", exp=int(time.time()) + 60))
    store.set_organization_id("org_stored")

    credential = store.load_credential()

    assert credential is not None
    assert credential.organization_id == "org_stored"


def test_load_credential_without_token_returns_none() -> None:
    assert CredentialStore(SettingsStore()).load_credential() is None


def test_undecodable_token_raises_credential_error() -> None:
    store = CredentialStore(SettingsStore())
    store.set_token("not-a-jwt")

    with pytest.raises(CredentialError):
        store.load_credential()
    with pytest.raises(CredentialError):
        decode_claims("still.not.valid")


def test_clear_token_removes_only_token() -> None:
    store = CredentialStore(SettingsStore())
    store.set_token(_token(exp=1))
    store.set_organization_id("org_1")

    store.clear_token()

    assert store.get_token() is None
    assert store.get_organization_id() == "org_1"


def test_upload_config_round_trip_and_fallback() -> None:
    settings = SettingsStore()
    store = CredentialStore(settings)
    default = UploadConfig(upload_delay_ms=100)

    assert store.load_upload_config(default) == default

    store.save_upload_config(UploadConfig(max_concurrent_uploads=9))
    assert store.load_upload_config(default).max_concurrent_uploads == 9

    settings.set("upload_config", {"max_concurrent_uploads": 99})
    assert store.load_upload_config(default) == default


def test_decode_claims_rejects_malformed_claim_types() -> None:
    with pytest.raises(CredentialError):
        decode_claims(_token(org_id=42, exp=time.time() + 60))
