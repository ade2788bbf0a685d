"""HTTP client for the pairing, heartbeat, and upload endpoints."""

from __future__ import annotations

import logging
from typing import IO, Any, Iterable, Mapping, Optional

import requests
from pydantic import ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import ProtocolError, TransportError
from .models import (
    CodeResponse,
    DeviceDescriptor,
    FileCheckItem,
    FileCheckResult,
    HeartbeatResponse,
    PollResponse,
    PresignedBatchResponse,
)

LOGGER = logging.getLogger(__name__)

_retry_strategy = Retry(
    total=2,
    backoff_factor=0.5,
    status_forcelist=[502, 503, 504],
    allowed_methods=["POST", "PUT"],
)


def create_session(*, verify_ssl: bool = True) -> requests.Session:
    """Create a pooled session that retries gateway errors."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=4, pool_maxsize=20, max_retries=_retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = verify_ssl
    session.headers.update({"User-Agent": "syncpair-agent"})
    return session


class SyncApiClient:
    """Thin wrapper over the `/api/sync/*` endpoints.

    Every method raises :class:`TransportError` or :class:`ProtocolError`;
    none of them retry beyond the session's adapter.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        verify_ssl: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or create_session(verify_ssl=verify_ssl)

    def rebase(self, base_url: str) -> "SyncApiClient":
        """Return a client for another base URL sharing this connection pool."""
        if base_url.rstrip("/") == self.base_url:
            return self
        return SyncApiClient(base_url, timeout=self.timeout, session=self.session)

    def close(self) -> None:
        self.session.close()

    # Enrollment ----------------------------------------------------------

    def get_code(self, device: DeviceDescriptor, organization_id: Optional[str] = None) -> CodeResponse:
        """Request a one-time pairing code for ``device``."""
        payload: dict[str, Any] = device.model_dump(mode="json")
        if organization_id:
            payload["org_id"] = organization_id
        response = self._parse(CodeResponse, self._post("/api/sync/get_code", payload))
        if not response.success or not response.otp_code:
            raise ProtocolError("Pairing code response did not include a code.")
        return response

    def poll_enrollment(self, device_fingerprint: str) -> PollResponse:
        """Ask whether the device has been enrolled yet."""
        data = self._post("/api/sync/poll_enrollment", {"device_fingerprint": device_fingerprint})
        return self._parse(PollResponse, data)

    def finish_enrollment(self, token: str, device_fingerprint: str) -> dict[str, Any]:
        """Acknowledge a completed pairing using the new bearer token."""
        return self._post(
            "/api/sync/finish_enrollment",
            {"device_fingerprint": device_fingerprint},
            token=token,
        )

    # Liveness ------------------------------------------------------------

    def heartbeat(
        self,
        token: str,
        device_fingerprint: str,
        app_version: str,
        *,
        endpoint: str = "/api/sync/heartbeat",
    ) -> HeartbeatResponse:
        data = self._post(
            endpoint,
            {"device_fingerprint": device_fingerprint, "app_version": app_version},
            token=token,
        )
        return self._parse(HeartbeatResponse, data)

    # Uploads -------------------------------------------------------------

    def get_presigned_batch(
        self, token: Optional[str], files: Iterable[FileCheckItem]
    ) -> list[FileCheckResult]:
        """Ask which files need uploading and where to send them."""
        body = {"files": [item.model_dump(mode="json", by_alias=True) for item in files]}
        response = self._parse(
            PresignedBatchResponse,
            self._post("/api/sync/get_presigned_batch", body, token=token),
        )
        if not response.success:
            raise ProtocolError(response.message or "Presign request was rejected.")
        return response.files

    def put_file(self, upload_url: str, stream: IO[bytes], content_type: str) -> None:
        """Stream a file body to a presigned URL."""
        try:
            response = self.session.put(
                upload_url,
                data=stream,
                headers={"Content-Type": content_type},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Upload request failed: {exc}") from exc
        if not response.ok:
            raise TransportError(
                f"Upload failed with status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

    def update_metadata(self, token: Optional[str], file_id: str) -> None:
        self._post(f"/api/sync/{file_id}/update_metadata", None, token=token)

    # Internal helpers ----------------------------------------------------

    def _post(
        self,
        endpoint: str,
        payload: Optional[Mapping[str, Any]],
        *,
        token: Optional[str] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        LOGGER.debug("POST %s", url)
        try:
            response = self.session.post(
                url,
                json=dict(payload) if payload is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Request to {endpoint} failed: {exc}") from exc

        if not response.ok:
            raise TransportError(
                f"HTTP {response.status_code} from {endpoint}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Response from {endpoint} is not JSON.") from exc
        if not isinstance(data, dict):
            raise ProtocolError(f"Response from {endpoint} must be a JSON object.")
        return data

    @staticmethod
    def _parse(model: type, data: Mapping[str, Any]):
        try:
            return model.model_validate(dict(data))
        except ValidationError as exc:
            raise ProtocolError(f"Unexpected response shape: {exc}") from exc


__all__ = ["SyncApiClient", "create_session"]
