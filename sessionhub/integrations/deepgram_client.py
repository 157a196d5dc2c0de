"""Deepgram speech-to-text client.

Sends either a raw audio stream or a source URL to the pre-recorded
``/listen`` endpoint and renders the response as plain text, one
``[mm:ss] Speaker N: text`` line per diarized utterance.
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Dict, List, Optional, Union

import httpx
from pydantic import SecretStr

from ..core.config import Settings, settings as default_settings
from .results import ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

PROVIDER = "deepgram"


def _format_offset(seconds: Any) -> str:
    """``mm:ss`` within the first hour, ``hh:mm:ss`` after it."""
    try:
        total = int(float(seconds))
    except (TypeError, ValueError):
        total = 0
    hours, rest = divmod(max(total, 0), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def normalize_transcript(payload: Any) -> str:
    """Readable transcript from a ``/listen`` response body.

    Prefers speaker-attributed utterances; falls back to the first channel's
    best alternative; returns "" when neither is present.
    """
    if not isinstance(payload, dict):
        return ""
    results = payload.get("results")
    if not isinstance(results, dict):
        return ""

    utterances = results.get("utterances")
    if isinstance(utterances, list):
        lines: List[str] = []
        usable = [u for u in utterances if isinstance(u, dict) and u.get("transcript")]
        for utterance in sorted(usable, key=lambda u: float(u.get("start") or 0)):
            speaker = utterance.get("speaker")
            lines.append(
                f"[{_format_offset(utterance.get('start'))}] "
                f"Speaker {speaker if speaker is not None else 0}: "
                f"{str(utterance['transcript']).strip()}"
            )
        if lines:
            return "\n".join(lines)

    channels = results.get("channels")
    if isinstance(channels, list) and channels and isinstance(channels[0], dict):
        alternatives = channels[0].get("alternatives")
        if isinstance(alternatives, list) and alternatives and isinstance(alternatives[0], dict):
            transcript = alternatives[0].get("transcript")
            if isinstance(transcript, str):
                return transcript.strip()
    return ""


class DeepgramClient:
    """HTTP client for Deepgram pre-recorded transcription."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr,
        base_url: str = "https://api.deepgram.com/v1/listen",
        model: str = "whisper-large",
        timeout: float = 300.0,
    ) -> None:
        self._api_key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._base_url = base_url
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "DeepgramClient":
        config = config or default_settings
        return cls(
            api_key=config.deepgram_api_key,
            base_url=config.deepgram_base_url,
            model=config.deepgram_model,
            timeout=config.deepgram_timeout_seconds,
        )

    @property
    def _params(self) -> Dict[str, str]:
        return {
            "model": self._model,
            "smart_format": "true",
            "diarize": "true",
            "paragraphs": "true",
            "utterances": "true",
        }

    def _fail(self, kind: ProviderErrorKind, message: str, **kwargs: Any) -> ProviderResult[Any]:
        return ProviderResult.fail(kind, message, provider=PROVIDER, **kwargs)

    def _missing_key(self) -> Optional[ProviderResult[Any]]:
        if not self._api_key:
            logger.error("[Deepgram] API key is missing in configuration")
            return self._fail(ProviderErrorKind.CONFIGURATION, "Deepgram API key is not configured")
        return None

    def _post(
        self,
        *,
        content: Union[bytes, BinaryIO, None] = None,
        json_body: Optional[Dict[str, Any]] = None,
        content_type: str,
    ) -> ProviderResult[str]:
        headers = {"Authorization": f"Token {self._api_key}", "Content-Type": content_type}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(
                    "POST",
                    self._base_url,
                    params=self._params,
                    headers=headers,
                    content=content,
                    json=json_body,
                )
        except httpx.TimeoutException as exc:
            logger.error("[Deepgram] Request timed out: %s", exc)
            return self._fail(ProviderErrorKind.TRANSIENT, "Transcription request timed out")
        except httpx.TransportError as exc:
            logger.error("[Deepgram] API unreachable: %s", exc)
            return self._fail(ProviderErrorKind.TRANSIENT, f"Deepgram API unreachable: {exc}")

        if response.status_code >= 400:
            logger.error(
                "[Deepgram] API failed. status=%s body=%s",
                response.status_code,
                response.text[:500],
            )
            if response.status_code in (401, 403):
                kind = ProviderErrorKind.AUTHENTICATION
            elif response.status_code == 400:
                kind = ProviderErrorKind.VALIDATION
            elif response.status_code == 429 or response.status_code >= 500:
                kind = ProviderErrorKind.TRANSIENT
            else:
                kind = ProviderErrorKind.PROVIDER
            return self._fail(
                kind,
                f"Deepgram request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            logger.error("[Deepgram] Failed to decode response body")
            return self._fail(ProviderErrorKind.MALFORMED_PAYLOAD, "Unreadable Deepgram response")

        transcript = normalize_transcript(payload)
        if transcript:
            logger.info("[Deepgram] Transcription completed. length=%s", len(transcript))
        else:
            logger.warning("[Deepgram] Response parsed but no transcript found")
        return ProviderResult.ok(transcript)

    def transcribe_from_stream(
        self, audio: Union[bytes, BinaryIO], mime_type: str
    ) -> ProviderResult[str]:
        missing = self._missing_key()
        if missing is not None:
            return missing
        logger.info("[Deepgram] Starting stream transcription (model=%s)", self._model)
        return self._post(content=audio, content_type=mime_type or "application/octet-stream")

    def transcribe_from_url(self, url: str) -> ProviderResult[str]:
        missing = self._missing_key()
        if missing is not None:
            return missing
        if not url:
            return self._fail(ProviderErrorKind.VALIDATION, "Audio URL is required")
        logger.info("[Deepgram] Starting URL transcription (model=%s)", self._model)
        return self._post(json_body={"url": url}, content_type="application/json")


class FakeDeepgramClient:
    """In-memory stub; returns ``transcript`` for every call."""

    def __init__(self, transcript: str = "[00:00] Speaker 0: hello", **kwargs: Any) -> None:
        self.transcript = transcript
        self.error: Optional[ProviderResult[str]] = None
        self._calls: list[dict[str, Any]] = []

    def set_error(self, kind: ProviderErrorKind, message: str = "injected failure") -> None:
        self.error = ProviderResult.fail(kind, message, provider=PROVIDER)

    def transcribe_from_stream(
        self, audio: Union[bytes, BinaryIO], mime_type: str
    ) -> ProviderResult[str]:
        self._calls.append({"method": "transcribe_from_stream", "mime_type": mime_type})
        return self.error or ProviderResult.ok(self.transcript)

    def transcribe_from_url(self, url: str) -> ProviderResult[str]:
        self._calls.append({"method": "transcribe_from_url", "url": url})
        return self.error or ProviderResult.ok(self.transcript)
