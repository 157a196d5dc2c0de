"""Zoom video-meeting integration client.

Server-to-server OAuth token acquisition with a process-wide cache,
authenticated requests with tiered retry (rate limit vs server error),
meeting lifecycle calls, recording retrieval and streamed file download.
Every call returns a ``ProviderResult``; nothing raises past this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
import logging
import threading
import time
from typing import Any, BinaryIO, Callable, Dict, List, Optional
import uuid

import httpx
from pydantic import SecretStr

from ..core.config import Settings, settings as default_settings
from ..core.time_utils import ensure_utc
from .results import ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

PROVIDER = "zoom"
MAX_BACKOFF_MS = 32000
RECORDING_FILE_TYPES = frozenset({"MP4", "TRANSCRIPT"})
START_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Conferencing policy applied to every meeting this system creates.
MEETING_SETTINGS: Dict[str, Any] = {
    "host_video": True,
    "participant_video": True,
    "join_before_host": True,
    "jbh_time": 5,
    "mute_upon_entry": True,
    "waiting_room": False,
    "auto_recording": "cloud",
    "audio": "both",
    "approval_type": 2,
    "recording_authentication": True,
    "on_demand": False,
    "audio_transcript": True,
}

_STATUS_KINDS: Dict[int, ProviderErrorKind] = {
    400: ProviderErrorKind.VALIDATION,
    401: ProviderErrorKind.AUTHENTICATION,
    404: ProviderErrorKind.NOT_FOUND,
    409: ProviderErrorKind.CONFLICT,
}


class ZoomError(RuntimeError):
    """Raised internally for token and transport failures."""

    def __init__(
        self, message: str, kind: ProviderErrorKind, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code


# ── Payload records ─────────────────────────────────────────────────────


def _parse_time(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class ZoomMeeting:
    id: str
    uuid: str
    topic: str
    join_url: str
    start_url: str
    password: str
    start_time: Optional[datetime]
    duration: int
    status: str

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ZoomMeeting":
        return cls(
            id=_text(data, "id"),
            uuid=_text(data, "uuid"),
            topic=_text(data, "topic"),
            join_url=_text(data, "join_url"),
            start_url=_text(data, "start_url"),
            password=_text(data, "password"),
            start_time=_parse_time(data.get("start_time")),
            duration=int(data.get("duration") or 0),
            status=_text(data, "status"),
        )


@dataclass(frozen=True)
class ZoomRecordingFile:
    id: str
    file_type: str
    file_size: int
    play_url: str
    download_url: str
    recording_start: Optional[datetime]
    recording_end: Optional[datetime]
    status: str

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ZoomRecordingFile":
        return cls(
            id=_text(data, "id"),
            file_type=_text(data, "file_type"),
            file_size=int(data.get("file_size") or 0),
            play_url=_text(data, "play_url"),
            download_url=_text(data, "download_url"),
            recording_start=_parse_time(data.get("recording_start")),
            recording_end=_parse_time(data.get("recording_end")),
            status=_text(data, "status"),
        )


@dataclass(frozen=True)
class ZoomRecording:
    meeting_id: str
    topic: str
    start_time: Optional[datetime]
    duration: int
    total_size: int
    files: List[ZoomRecordingFile] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ZoomRecording":
        raw_files = data.get("recording_files")
        files = [
            ZoomRecordingFile.from_payload(item)
            for item in (raw_files if isinstance(raw_files, list) else [])
            if isinstance(item, dict) and item.get("file_type") in RECORDING_FILE_TYPES
        ]
        return cls(
            meeting_id=_text(data, "id"),
            topic=_text(data, "topic"),
            start_time=_parse_time(data.get("start_time")),
            duration=int(data.get("duration") or 0),
            total_size=int(data.get("total_size") or 0),
            files=files,
        )

    def first_of(self, file_type: str) -> Optional[ZoomRecordingFile]:
        return next((f for f in self.files if f.file_type == file_type), None)


# ── Token cache ─────────────────────────────────────────────────────────


class ZoomTokenCache:
    """Single shared bearer token, refreshed under a lock.

    Callers holding a still-valid token never touch the lock; only the
    refresh itself is serialized, and late arrivals reuse the token the
    first refresher obtained.
    """

    def __init__(
        self,
        *,
        account_id: str,
        client_id: str,
        client_secret: str | SecretStr,
        oauth_url: str = "https://zoom.us/oauth/token",
        ttl_minutes: int = 55,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._account_id = account_id
        self._client_id = client_id
        self._client_secret = (
            client_secret.get_secret_value()
            if isinstance(client_secret, SecretStr)
            else client_secret
        )
        self._oauth_url = oauth_url
        self._ttl_seconds = ttl_minutes * 60
        self._timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._account_id and self._client_id and self._client_secret)

    def _cached(self) -> Optional[str]:
        if self._token is not None and self._clock() < self._expires_at:
            return self._token
        return None

    def get_token(self) -> str:
        token = self._cached()
        if token is not None:
            return token
        with self._lock:
            token = self._cached()
            if token is not None:
                return token
            return self._refresh()

    def invalidate(self, token: Optional[str] = None) -> None:
        """Drop the cached token. When ``token`` is given, only drop that one."""
        with self._lock:
            if token is None or token == self._token:
                self._token = None
                self._expires_at = 0.0

    def _refresh(self) -> str:
        if not self.is_configured:
            raise ZoomError(
                "Zoom OAuth credentials are not configured", ProviderErrorKind.CONFIGURATION
            )
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(
                    "POST",
                    self._oauth_url,
                    params={"grant_type": "account_credentials", "account_id": self._account_id},
                    auth=(self._client_id, self._client_secret),
                )
        except httpx.TransportError as exc:
            logger.error("Zoom OAuth endpoint unreachable: %s", exc)
            raise ZoomError(
                f"Zoom OAuth endpoint unreachable: {exc}", ProviderErrorKind.TRANSIENT
            ) from exc

        if response.status_code >= 400:
            logger.error(
                "Zoom OAuth token request failed with %s: %s",
                response.status_code,
                response.text[:500],
            )
            kind = (
                ProviderErrorKind.TRANSIENT
                if response.status_code == 429 or response.status_code >= 500
                else ProviderErrorKind.AUTHENTICATION
            )
            raise ZoomError("Failed to obtain Zoom access token", kind, response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise ZoomError(
                "Zoom OAuth returned a non-JSON response", ProviderErrorKind.MALFORMED_PAYLOAD
            ) from exc
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise ZoomError("Zoom OAuth response has no access token", ProviderErrorKind.PROVIDER)

        self._token = str(token)
        self._expires_at = self._clock() + self._ttl_seconds
        logger.info("Zoom access token refreshed")
        return self._token


_shared_token_cache: Optional[ZoomTokenCache] = None
_shared_token_cache_lock = threading.Lock()


def get_shared_token_cache(config: Optional[Settings] = None) -> ZoomTokenCache:
    """Process-wide token cache, created on first use."""
    global _shared_token_cache
    with _shared_token_cache_lock:
        if _shared_token_cache is None:
            config = config or default_settings
            _shared_token_cache = ZoomTokenCache(
                account_id=config.zoom_account_id,
                client_id=config.zoom_client_id,
                client_secret=config.zoom_client_secret,
                oauth_url=config.zoom_oauth_url,
                ttl_minutes=config.zoom_token_ttl_minutes,
                timeout=config.zoom_request_timeout_seconds,
            )
        return _shared_token_cache


# ── Client ──────────────────────────────────────────────────────────────


def backoff_delay_ms(attempt: int, base_delay_ms: int, cap_ms: int = MAX_BACKOFF_MS) -> int:
    """Delay before retry ``attempt`` (1-based): base * 2^attempt, capped."""
    return int(min(base_delay_ms * (2**attempt), cap_ms))


class ZoomClient:
    """HTTP client for the Zoom REST API."""

    def __init__(
        self,
        *,
        token_cache: ZoomTokenCache,
        base_url: str = "https://api.zoom.us/v2/",
        timeout: float = 30.0,
        download_timeout: float = 1800.0,
        base_delay_ms: int = 1000,
        max_delay_ms: int = MAX_BACKOFF_MS,
        rate_limit_max_retries: int = 5,
        server_error_max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tokens = token_cache
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._download_timeout = download_timeout
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._rate_limit_max_retries = rate_limit_max_retries
        self._server_error_max_retries = server_error_max_retries
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ZoomClient":
        config = config or default_settings
        return cls(
            token_cache=get_shared_token_cache(config),
            base_url=config.zoom_api_base_url,
            timeout=config.zoom_request_timeout_seconds,
            download_timeout=config.zoom_download_timeout_seconds,
            base_delay_ms=config.zoom_retry_base_delay_ms,
            max_delay_ms=config.zoom_retry_max_delay_ms,
            rate_limit_max_retries=config.zoom_rate_limit_max_retries,
            server_error_max_retries=config.zoom_server_error_max_retries,
        )

    def _fail(self, kind: ProviderErrorKind, message: str, **kwargs: Any) -> ProviderResult[Any]:
        return ProviderResult.fail(kind, message, provider=PROVIDER, **kwargs)

    def _send(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """One authenticated request; a 401 refreshes the token and retries once."""
        url = f"{self._base_url}/{path.lstrip('/')}"
        token = self._tokens.get_token()
        response = self._http(method, url, token, json_body=json_body, params=params)
        if response.status_code == 401:
            logger.warning(
                "Zoom returned 401 for %s %s; refreshing token and retrying", method, path
            )
            self._tokens.invalidate(token)
            token = self._tokens.get_token()
            response = self._http(method, url, token, json_body=json_body, params=params)
        return response

    def _http(
        self,
        method: str,
        url: str,
        token: str,
        *,
        json_body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                return client.request(method, url, headers=headers, json=json_body, params=params)
        except httpx.TransportError as exc:
            logger.error("Zoom API unreachable for %s %s: %s", method, url, exc)
            raise ZoomError(
                f"Zoom API unreachable: {exc}", ProviderErrorKind.TRANSIENT
            ) from exc

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        session_id: Optional[str] = None,
        meeting_id: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ProviderResult[httpx.Response]:
        """Run one logical operation under the retry policy."""
        started = time.monotonic()
        rate_limit_attempts = 0
        server_error_attempts = 0
        sid = session_id or "N/A"
        mid = meeting_id or "N/A"

        def audit_failure(status_code: Any, body: str) -> None:
            logger.error(
                "[AUDIT] Zoom API operation FAILED. operation=%s session_id=%s meeting_id=%s "
                "endpoint=%s status=%s rate_limit_retries=%s server_error_retries=%s "
                "duration_ms=%.0f body=%s",
                operation,
                sid,
                mid,
                path,
                status_code,
                rate_limit_attempts,
                server_error_attempts,
                (time.monotonic() - started) * 1000,
                body[:1000],
            )

        while True:
            try:
                response = self._send(method, path, json_body=json_body, params=params)
            except ZoomError as exc:
                audit_failure(exc.status_code, exc.message)
                return self._fail(
                    exc.kind,
                    exc.message,
                    status_code=exc.status_code,
                    details={"operation": operation},
                )

            status_code = response.status_code
            if status_code == 429 or status_code >= 500:
                if status_code == 429:
                    rate_limit_attempts += 1
                    attempt, ceiling, label = (
                        rate_limit_attempts,
                        self._rate_limit_max_retries,
                        "rate limit",
                    )
                else:
                    server_error_attempts += 1
                    attempt, ceiling, label = (
                        server_error_attempts,
                        self._server_error_max_retries,
                        "server error",
                    )
                if attempt > ceiling:
                    audit_failure(status_code, response.text)
                    return self._fail(
                        ProviderErrorKind.TRANSIENT,
                        "Video conferencing service is temporarily unavailable",
                        status_code=status_code,
                        details={"operation": operation, "retries": ceiling},
                    )
                delay_ms = backoff_delay_ms(attempt, self._base_delay_ms, self._max_delay_ms)
                logger.warning(
                    "[AUDIT] Zoom API %s, retrying. operation=%s session_id=%s meeting_id=%s "
                    "attempt=%s/%s delay_ms=%s",
                    label,
                    operation,
                    sid,
                    mid,
                    attempt,
                    ceiling,
                    delay_ms,
                )
                self._sleep(delay_ms / 1000)
                continue

            if status_code >= 400:
                audit_failure(status_code, response.text)
                kind = _STATUS_KINDS.get(status_code, ProviderErrorKind.PROVIDER)
                return self._fail(
                    kind,
                    f"Zoom {operation} failed with status {status_code}",
                    status_code=status_code,
                    details={"operation": operation, "body": response.text[:500]},
                )

            logger.info(
                "[AUDIT] Zoom API operation SUCCESS. operation=%s session_id=%s meeting_id=%s "
                "endpoint=%s status=%s rate_limit_retries=%s server_error_retries=%s "
                "duration_ms=%.0f",
                operation,
                sid,
                mid,
                path,
                status_code,
                rate_limit_attempts,
                server_error_attempts,
                (time.monotonic() - started) * 1000,
            )
            return ProviderResult.ok(response)

    def _json(self, response: httpx.Response, operation: str) -> ProviderResult[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("[AUDIT] Zoom %s returned an unreadable body", operation)
            return self._fail(
                ProviderErrorKind.MALFORMED_PAYLOAD,
                f"Zoom {operation} returned an unreadable response",
            )
        return ProviderResult.ok(data)

    # ── High-level API methods ──────────────────────────────────────────

    def create_meeting(
        self,
        *,
        topic: str,
        start_time: datetime,
        duration_minutes: int,
        timezone: str = "UTC",
        session_id: Optional[str] = None,
    ) -> ProviderResult[ZoomMeeting]:
        logger.info(
            "[AUDIT] Creating Zoom meeting. session_id=%s start=%s duration=%s",
            session_id or "N/A",
            start_time,
            duration_minutes,
        )
        body = {
            "topic": topic,
            "type": 2,
            "start_time": ensure_utc(start_time).strftime(START_TIME_FORMAT),
            "duration": duration_minutes,
            "timezone": timezone,
            "settings": dict(MEETING_SETTINGS),
        }
        result = self._request(
            "POST",
            "users/me/meetings",
            operation="create_meeting",
            session_id=session_id,
            json_body=body,
        )
        if result.error is not None:
            return ProviderResult(error=result.error)
        parsed = self._json(result.unwrap(), "create_meeting")
        if parsed.error is not None:
            return ProviderResult(error=parsed.error)
        meeting = ZoomMeeting.from_payload(parsed.unwrap())
        if not meeting.id or not meeting.join_url:
            return self._fail(
                ProviderErrorKind.MALFORMED_PAYLOAD, "Zoom meeting response is missing its id"
            )
        return ProviderResult.ok(meeting)

    def update_meeting(
        self,
        meeting_id: str,
        *,
        start_time: datetime,
        duration_minutes: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> ProviderResult[bool]:
        body: Dict[str, Any] = {"start_time": ensure_utc(start_time).strftime(START_TIME_FORMAT)}
        if duration_minutes is not None:
            body["duration"] = duration_minutes
        result = self._request(
            "PATCH",
            f"meetings/{meeting_id}",
            operation="update_meeting",
            session_id=session_id,
            meeting_id=meeting_id,
            json_body=body,
        )
        if result.error is not None:
            return ProviderResult(error=result.error)
        return ProviderResult.ok(True)

    def delete_meeting(
        self, meeting_id: str, *, session_id: Optional[str] = None
    ) -> ProviderResult[bool]:
        """Delete a meeting. An already-deleted meeting yields ``False``, not an error."""
        result = self._request(
            "DELETE",
            f"meetings/{meeting_id}",
            operation="delete_meeting",
            session_id=session_id,
            meeting_id=meeting_id,
        )
        if result.error is not None:
            if result.error.kind == ProviderErrorKind.NOT_FOUND:
                return ProviderResult.ok(False)
            return ProviderResult(error=result.error)
        return ProviderResult.ok(True)

    def end_meeting(
        self, meeting_id: str, *, session_id: Optional[str] = None
    ) -> ProviderResult[bool]:
        result = self._request(
            "PUT",
            f"meetings/{meeting_id}/status",
            operation="end_meeting",
            session_id=session_id,
            meeting_id=meeting_id,
            json_body={"action": "end"},
        )
        if result.error is not None:
            return ProviderResult(error=result.error)
        return ProviderResult.ok(True)

    def get_meeting(
        self, meeting_id: str, *, session_id: Optional[str] = None
    ) -> ProviderResult[ZoomMeeting]:
        result = self._request(
            "GET",
            f"meetings/{meeting_id}",
            operation="get_meeting",
            session_id=session_id,
            meeting_id=meeting_id,
        )
        if result.error is not None:
            return ProviderResult(error=result.error)
        parsed = self._json(result.unwrap(), "get_meeting")
        if parsed.error is not None:
            return ProviderResult(error=parsed.error)
        return ProviderResult.ok(ZoomMeeting.from_payload(parsed.unwrap()))

    def get_recordings(
        self, meeting_id: str, *, session_id: Optional[str] = None
    ) -> ProviderResult[ZoomRecording]:
        """Recording metadata, keeping only MP4 and TRANSCRIPT files."""
        result = self._request(
            "GET",
            f"meetings/{meeting_id}/recordings",
            operation="get_recordings",
            session_id=session_id,
            meeting_id=meeting_id,
        )
        if result.error is not None:
            return ProviderResult(error=result.error)
        parsed = self._json(result.unwrap(), "get_recordings")
        if parsed.error is not None:
            return ProviderResult(error=parsed.error)
        recording = ZoomRecording.from_payload(parsed.unwrap())
        logger.info(
            "[AUDIT] Zoom recordings retrieved. session_id=%s meeting_id=%s files=%s "
            "total_size=%s",
            session_id or "N/A",
            meeting_id,
            len(recording.files),
            recording.total_size,
        )
        return ProviderResult.ok(recording)

    def download_file(
        self,
        download_url: str,
        destination: BinaryIO,
        *,
        access_token: Optional[str] = None,
        chunk_size: int = 1024 * 1024,
    ) -> ProviderResult[int]:
        """Stream a recording file into ``destination``; returns bytes written."""
        if not access_token:
            try:
                access_token = self._tokens.get_token()
            except ZoomError as exc:
                return self._fail(exc.kind, exc.message, status_code=exc.status_code)
        separator = "&" if "?" in download_url else "?"
        url = f"{download_url}{separator}access_token={access_token}"

        written = 0
        try:
            with httpx.Client(timeout=self._download_timeout, follow_redirects=True) as client:
                with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        logger.error(
                            "[AUDIT] Zoom file download failed. url=%s status=%s",
                            download_url,
                            response.status_code,
                        )
                        status_code = response.status_code
                        kind = (
                            ProviderErrorKind.TRANSIENT
                            if status_code == 429 or status_code >= 500
                            else _STATUS_KINDS.get(status_code, ProviderErrorKind.PROVIDER)
                        )
                        return self._fail(
                            kind,
                            f"Zoom file download failed with status {response.status_code}",
                            status_code=response.status_code,
                        )
                    for chunk in response.iter_bytes(chunk_size):
                        destination.write(chunk)
                        written += len(chunk)
        except httpx.TransportError as exc:
            logger.error("[AUDIT] Network error downloading Zoom file %s: %s", download_url, exc)
            return self._fail(ProviderErrorKind.TRANSIENT, f"Zoom file download failed: {exc}")

        logger.info("[AUDIT] Zoom file downloaded. url=%s bytes=%s", download_url, written)
        return ProviderResult.ok(written)


# ── Webhook verification ────────────────────────────────────────────────


def compute_webhook_signature(secret: str, timestamp: str, body: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), f"v0:{timestamp}:{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"v0={digest}"


def verify_webhook_signature(
    secret: str, timestamp: Optional[str], body: str, signature: Optional[str]
) -> bool:
    if not secret or not timestamp or not signature:
        return False
    expected = compute_webhook_signature(secret, timestamp, body)
    return hmac.compare_digest(expected, signature)


def url_validation_response(secret: str, plain_token: str) -> Dict[str, str]:
    """Reply to Zoom's ``endpoint.url_validation`` challenge."""
    encrypted = hmac.new(
        secret.encode("utf-8"), plain_token.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {"plainToken": plain_token, "encryptedToken": encrypted}


class FakeZoomClient:
    """In-memory stub for testing/non-production environments."""

    def __init__(self, **kwargs: Any) -> None:
        self._calls: list[dict[str, Any]] = []
        self._errors: dict[str, ProviderResult[Any]] = {}
        self.recordings: dict[str, ZoomRecording] = {}
        self.download_payload: bytes = b"fake-recording"

    def set_error(
        self, method: str, kind: ProviderErrorKind, message: str = "injected failure"
    ) -> None:
        """Inject a method-specific failure for deterministic failure testing."""
        self._errors[method] = ProviderResult.fail(kind, message, provider=PROVIDER)

    def _injected(self, method: str) -> Optional[ProviderResult[Any]]:
        return self._errors.get(method)

    def create_meeting(
        self, *, topic: str, start_time: datetime, duration_minutes: int, **kwargs: Any
    ) -> ProviderResult[ZoomMeeting]:
        self._calls.append(
            {
                "method": "create_meeting",
                "topic": topic,
                "start_time": start_time,
                "duration_minutes": duration_minutes,
                **kwargs,
            }
        )
        injected = self._injected("create_meeting")
        if injected is not None:
            return injected
        meeting_id = str(uuid.uuid4().int % 10**11)
        return ProviderResult.ok(
            ZoomMeeting(
                id=meeting_id,
                uuid=uuid.uuid4().hex,
                topic=topic,
                join_url=f"https://zoom.example/j/{meeting_id}",
                start_url=f"https://zoom.example/s/{meeting_id}",
                password="fakepass",
                start_time=ensure_utc(start_time),
                duration=duration_minutes,
                status="waiting",
            )
        )

    def update_meeting(self, meeting_id: str, **kwargs: Any) -> ProviderResult[bool]:
        self._calls.append({"method": "update_meeting", "meeting_id": meeting_id, **kwargs})
        return self._injected("update_meeting") or ProviderResult.ok(True)

    def delete_meeting(self, meeting_id: str, **kwargs: Any) -> ProviderResult[bool]:
        self._calls.append({"method": "delete_meeting", "meeting_id": meeting_id, **kwargs})
        return self._injected("delete_meeting") or ProviderResult.ok(True)

    def end_meeting(self, meeting_id: str, **kwargs: Any) -> ProviderResult[bool]:
        self._calls.append({"method": "end_meeting", "meeting_id": meeting_id, **kwargs})
        return self._injected("end_meeting") or ProviderResult.ok(True)

    def get_recordings(self, meeting_id: str, **kwargs: Any) -> ProviderResult[ZoomRecording]:
        self._calls.append({"method": "get_recordings", "meeting_id": meeting_id})
        injected = self._injected("get_recordings")
        if injected is not None:
            return injected
        recording = self.recordings.get(meeting_id)
        if recording is None:
            return ProviderResult.fail(
                ProviderErrorKind.NOT_FOUND, "No recordings", provider=PROVIDER
            )
        return ProviderResult.ok(recording)

    def download_file(
        self, download_url: str, destination: BinaryIO, **kwargs: Any
    ) -> ProviderResult[int]:
        self._calls.append({"method": "download_file", "download_url": download_url})
        injected = self._injected("download_file")
        if injected is not None:
            return injected
        destination.write(self.download_payload)
        return ProviderResult.ok(len(self.download_payload))
