"""
Recording storage on Cloudflare R2 (S3-compatible).

Session recordings are copied out of the video provider into our own bucket
so they outlive the provider's retention window. Access is always through
short-lived SigV4 presigned URLs; the transcription provider fetches audio
from such a URL instead of receiving the bytes from us.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import logging
from typing import Any, BinaryIO, Dict, Optional
from urllib.parse import quote

import requests

from ..core.config import Settings, settings as default_settings
from .results import ProviderErrorKind, ProviderResult

logger = logging.getLogger(__name__)

PROVIDER = "r2"
_UNSIGNED = "UNSIGNED-PAYLOAD"


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


def _canonical_query(params: Dict[str, str]) -> str:
    return "&".join(
        f"{quote(k, safe='-_.~')}={quote(str(params[k]), safe='-_.~')}" for k in sorted(params)
    )


@dataclass
class PresignedUrl:
    url: str
    headers: Dict[str, str]
    expires_at: datetime


class R2RecordingStorage:
    """SigV4 query-string signer plus streaming upload for recordings."""

    def __init__(
        self,
        *,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
        timeout: float = 30.0,
        upload_timeout: float = 1800.0,
    ) -> None:
        self.account_id = account_id
        self.access_key_id = access_key_id
        self.secret_key = secret_access_key
        self.bucket_name = bucket_name
        self.host = f"{account_id}.r2.cloudflarestorage.com"
        self.region = "auto"
        self.service = "s3"
        self.algorithm = "AWS4-HMAC-SHA256"
        self._timeout = timeout
        self._upload_timeout = upload_timeout

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "R2RecordingStorage":
        config = config or default_settings
        return cls(
            account_id=config.r2_account_id,
            access_key_id=config.r2_access_key_id,
            secret_access_key=config.r2_secret_access_key.get_secret_value(),
            bucket_name=config.r2_bucket_name,
            upload_timeout=config.zoom_download_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(
            self.account_id and self.bucket_name and self.access_key_id and self.secret_key
        )

    def _not_configured(self) -> ProviderResult[Any]:
        logger.error("R2 configuration is missing; check r2_* settings")
        return ProviderResult.fail(
            ProviderErrorKind.CONFIGURATION,
            "Recording storage is not configured",
            provider=PROVIDER,
        )

    def presign(
        self,
        method: str,
        object_key: str,
        expires_seconds: int,
        *,
        content_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PresignedUrl:
        now = now or datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        datestamp = now.strftime("%Y%m%d")
        canonical_uri = f"/{self.bucket_name}/{quote(object_key, safe='/-_.~')}"
        credential_scope = f"{datestamp}/{self.region}/{self.service}/aws4_request"

        params: Dict[str, str] = {
            "X-Amz-Algorithm": self.algorithm,
            "X-Amz-Credential": f"{self.access_key_id}/{credential_scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_seconds),
            "X-Amz-SignedHeaders": "host",
            "X-Amz-Content-Sha256": _UNSIGNED,
        }
        if content_type:
            params["content-type"] = content_type

        query = _canonical_query(params)
        canonical_request = "\n".join(
            [method.upper(), canonical_uri, query, f"host:{self.host}\n", "host", _UNSIGNED]
        )
        string_to_sign = "\n".join(
            [
                self.algorithm,
                amz_date,
                credential_scope,
                hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
            ]
        )
        k_date = _hmac(f"AWS4{self.secret_key}".encode("utf-8"), datestamp)
        k_region = _hmac(k_date, self.region)
        k_service = _hmac(k_region, self.service)
        k_signing = _hmac(k_service, "aws4_request")
        signature = hmac.new(k_signing, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

        return PresignedUrl(
            url=f"https://{self.host}{canonical_uri}?{query}&X-Amz-Signature={signature}",
            headers={"Content-Type": content_type} if content_type else {},
            expires_at=now.replace(microsecond=0) + timedelta(seconds=expires_seconds),
        )

    def get_access_url(self, object_key: str, ttl: timedelta) -> ProviderResult[str]:
        """Short-lived GET URL for a stored recording."""
        if not self.is_configured:
            return self._not_configured()
        presigned = self.presign("GET", object_key, int(ttl.total_seconds()))
        logger.info("[R2] Presigned GET for %s expires %s", object_key, presigned.expires_at)
        return ProviderResult.ok(presigned.url)

    def upload_stream(
        self,
        object_key: str,
        stream: BinaryIO,
        content_type: str,
        content_length: Optional[int] = None,
    ) -> ProviderResult[str]:
        """Upload a file-like object without loading it into memory. Returns the key."""
        if not self.is_configured:
            return self._not_configured()
        presigned = self.presign("PUT", object_key, 900, content_type=content_type)
        headers = dict(presigned.headers)
        if content_length is not None:
            headers["Content-Length"] = str(content_length)
        try:
            resp = requests.put(
                presigned.url, data=stream, headers=headers, timeout=self._upload_timeout
            )
        except requests.RequestException as exc:
            logger.error("[R2] Failed to upload %s: %s", object_key, exc)
            return ProviderResult.fail(
                ProviderErrorKind.TRANSIENT, f"Recording upload failed: {exc}", provider=PROVIDER
            )
        if not 200 <= resp.status_code < 300:
            logger.error("[R2] Upload of %s rejected: status=%s", object_key, resp.status_code)
            kind = (
                ProviderErrorKind.TRANSIENT
                if resp.status_code >= 500
                else ProviderErrorKind.PROVIDER
            )
            return ProviderResult.fail(
                kind,
                f"Recording upload failed with status {resp.status_code}",
                provider=PROVIDER,
                status_code=resp.status_code,
            )
        logger.info("[R2] Uploaded %s", object_key)
        return ProviderResult.ok(object_key)


class FakeRecordingStorage:
    """In-memory bucket for tests."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.error: Optional[ProviderResult[Any]] = None

    def set_error(self, kind: ProviderErrorKind, message: str = "injected failure") -> None:
        self.error = ProviderResult.fail(kind, message, provider=PROVIDER)

    def get_access_url(self, object_key: str, ttl: timedelta) -> ProviderResult[str]:
        if self.error is not None:
            return self.error
        seconds = int(ttl.total_seconds())
        return ProviderResult.ok(f"https://storage.example/{object_key}?ttl={seconds}")

    def upload_stream(
        self,
        object_key: str,
        stream: BinaryIO,
        content_type: str,
        content_length: Optional[int] = None,
    ) -> ProviderResult[str]:
        if self.error is not None:
            return self.error
        self.objects[object_key] = stream.read()
        return ProviderResult.ok(object_key)
