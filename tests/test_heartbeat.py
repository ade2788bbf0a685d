"""Tests for the heartbeat service."""

import time
from typing import Optional

from syncpair.api import HeartbeatResponse, TransportError
from syncpair.config.models import HeartbeatSettings
from syncpair.heartbeat import OFFLINE_STATUS, HeartbeatService


class _FakeClient:
    def __init__(self) -> None:
        self.fail = False
        self.calls: list[tuple[str, str, str, str]] = []

    def heartbeat(
        self, token: str, device_fingerprint: str, app_version: str, *, endpoint: str
    ) -> HeartbeatResponse:
        self.calls.append((token, device_fingerprint, app_version, endpoint))
        if self.fail:
            raise TransportError("connection refused")
        return HeartbeatResponse(status="online", first_seen="2024-01-01T00:00:00Z")


def _service(client: _FakeClient, token: Optional[str] = "tok", **settings) -> HeartbeatService:
    return HeartbeatService(
        client,  # type: ignore[arg-type]
        lambda: token,
        "fp-1",
        "1.2.3",
        settings=HeartbeatSettings(**settings),
        clock=lambda: 100.0,
    )


def test_successful_beat_records_response() -> None:
    client = _FakeClient()
    service = _service(client, endpoint="/custom/heartbeat")

    status = service.beat()

    assert status.online
    assert status.response is not None and status.response.status == "online"
    assert status.checked_at == 100.0
    assert client.calls == [("tok", "fp-1", "1.2.3", "/custom/heartbeat")]


def test_failure_keeps_previous_response_marked_offline() -> None:
    client = _FakeClient()
    service = _service(client)
    service.beat()
    client.fail = True

    status = service.beat()

    assert not status.online
    assert status.error == "connection refused"
    assert status.response is not None
    assert status.response.status == OFFLINE_STATUS
    assert status.response.first_seen == "2024-01-01T00:00:00Z"


def test_beat_without_token_skips_request() -> None:
    client = _FakeClient()

    status = _service(client, token=None).beat()

    assert client.calls == []
    assert status.error == "not signed in"
    assert status.response is not None and status.response.status == OFFLINE_STATUS


def test_disabled_heartbeat_does_not_start() -> None:
    client = _FakeClient()
    service = _service(client, enabled=False)

    service.start()
    service.stop()

    assert client.calls == []


def test_start_beats_until_stopped() -> None:
    client = _FakeClient()
    service = _service(client, interval_seconds=60)

    service.start()
    deadline = time.monotonic() + 5
    while not client.calls and time.monotonic() < deadline:
        time.sleep(0.01)
    service.stop()

    assert len(client.calls) == 1
