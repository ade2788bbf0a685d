"""Tests for the sync API client."""

import io
import json
from typing import Any, Optional

import pytest
import requests

from syncpair.api import (
    DeviceDescriptor,
    FileCheckItem,
    ProtocolError,
    SyncApiClient,
    TransportError,
)


class _Response:
    def __init__(self, status_code: int = 200, body: Any = None, raw: Optional[bytes] = None) -> None:
        self.status_code = status_code
        if raw is not None:
            self.content = raw
        else:
            self.content = json.dumps(body).encode("utf-8") if body is not None else b""
        self.text = self.content.decode("utf-8", errors="replace")

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.content)


class _Session:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def _next(self, **call: Any) -> _Response:
        self.calls.append(call)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url: str, **kwargs: Any) -> _Response:
        return self._next(method="POST", url=url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> _Response:
        return self._next(method="PUT", url=url, **kwargs)

    def close(self) -> None:
        self.closed = True


def _client(*responses: Any) -> tuple[SyncApiClient, _Session]:
    session = _Session(*responses)
    return SyncApiClient("https://sync.example.com/", session=session), session  # type: ignore[arg-type]


def _device() -> DeviceDescriptor:
    return DeviceDescriptor(
        hostname="host",
        platform="macOS",
        release="14.4",
        arch="arm64",
        cpus=10,
        total_memory=32,
        os_type="macOS",
        device_id="device-1",
        device_fingerprint="fp-1",
    )


def test_get_code_posts_descriptor_with_org_hint() -> None:
    client, session = _client(
        _Response(body={"success": True, "otp_code": "654321", "expires_at": "2026-01-01T00:01:00Z"})
    )

    response = client.get_code(_device(), "org_1")

    assert response.otp_code == "654321"
    call = session.calls[0]
    assert call["url"] == "https://sync.example.com/api/sync/get_code"
    assert call["json"]["device_fingerprint"] == "fp-1"
    assert call["json"]["org_id"] == "org_1"
    assert "Authorization" not in call["headers"]


def test_get_code_without_code_is_protocol_error() -> None:
    client, _ = _client(_Response(body={"success": False}))

    with pytest.raises(ProtocolError):
        client.get_code(_device())


def test_non_2xx_status_raises_transport_error() -> None:
    client, _ = _client(_Response(status_code=503, body={"error": "busy"}))

    with pytest.raises(TransportError) as excinfo:
        client.poll_enrollment("fp-1")

    assert excinfo.value.status_code == 503


def test_connection_failure_raises_transport_error() -> None:
    client, _ = _client(requests.ConnectionError("refused"))

    with pytest.raises(TransportError):
        client.poll_enrollment("fp-1")


def test_non_json_body_raises_protocol_error() -> None:
    client, _ = _client(_Response(raw=b"<html>oops</html>"))

    with pytest.raises(ProtocolError):
        client.poll_enrollment("fp-1")


def test_poll_enrollment_parses_token() -> None:
    client, session = _client(
        _Response(
            body={
                "success": True,
                "enrolled": True,
                "signin_token": "tok",
                "organization_id": "org_1",
                "organization_name": "Acme",
                "extra": "ignored",
            }
        )
    )

    response = client.poll_enrollment("fp-1")

    assert response.enrolled and response.signin_token == "tok"
    assert session.calls[0]["json"] == {"device_fingerprint": "fp-1"}


def test_finish_enrollment_sends_bearer_token() -> None:
    client, session = _client(_Response(status_code=204))

    assert client.finish_enrollment("tok", "fp-1") == {}
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tok"
    assert session.calls[0]["url"].endswith("/api/sync/finish_enrollment")


def test_heartbeat_uses_configured_endpoint() -> None:
    client, session = _client(_Response(body={"status": "online", "last_seen": "now"}))

    response = client.heartbeat("tok", "fp-1", "1.2.3", endpoint="/api/sync/ping")

    assert response.status == "online"
    assert session.calls[0]["url"] == "https://sync.example.com/api/sync/ping"
    assert session.calls[0]["json"] == {"device_fingerprint": "fp-1", "app_version": "1.2.3"}


def test_presigned_batch_serializes_camel_case_names() -> None:
    client, session = _client(
        _Response(
            body={
                "success": True,
                "files": [
                    {
                        "file_name": "docs/a.txt",
                        "status": "needs_upload",
                        "file_id": "f1",
                        "upload_url": "https://bucket/put",
                    }
                ],
            }
        )
    )

    results = client.get_presigned_batch(
        "tok", [FileCheckItem(file_name="docs/a.txt", content_type="text/plain", sha256="abc")]
    )

    assert results[0].file_id == "f1"
    assert session.calls[0]["json"] == {
        "files": [{"fileName": "docs/a.txt", "contentType": "text/plain", "sha256": "abc"}]
    }


def test_put_file_streams_with_content_type() -> None:
    client, session = _client(_Response(status_code=200))
    stream = io.BytesIO(b"data")

    client.put_file("https://bucket/put", stream, "text/plain")

    call = session.calls[0]
    assert call["method"] == "PUT"
    assert call["data"] is stream
    assert call["headers"] == {"Content-Type": "text/plain"}


def test_rebase_shares_session() -> None:
    client, session = _client()

    other = client.rebase("https://uploads.example.com")

    assert other.session is session
    assert other.base_url == "https://uploads.example.com"
    assert client.rebase("https://sync.example.com") is client
