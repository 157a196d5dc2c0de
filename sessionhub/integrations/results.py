"""Typed outcome of every provider-client call.

Provider clients never raise SDK or transport exceptions at their callers.
They return ``ProviderResult``: either a value or a ``ProviderError`` tagged
with a ``ProviderErrorKind``. Callers branch on ``result.error.kind`` or call
``unwrap()`` to turn the error into the matching domain exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from ..core.exceptions import (
    AuthenticationException,
    BusinessRuleException,
    ConfigurationException,
    ConflictException,
    DomainException,
    NotFoundException,
    ProviderException,
    TransientUnavailableException,
    ValidationException,
)

T = TypeVar("T")


class ProviderErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    PAYMENT_DECLINED = "payment_declined"
    MALFORMED_PAYLOAD = "malformed_payload"
    PROVIDER = "provider"


_KIND_TO_EXCEPTION: Dict[ProviderErrorKind, Type[DomainException]] = {
    ProviderErrorKind.VALIDATION: ValidationException,
    ProviderErrorKind.MALFORMED_PAYLOAD: ValidationException,
    ProviderErrorKind.AUTHENTICATION: AuthenticationException,
    ProviderErrorKind.NOT_FOUND: NotFoundException,
    ProviderErrorKind.CONFLICT: ConflictException,
    ProviderErrorKind.TRANSIENT: TransientUnavailableException,
    ProviderErrorKind.CONFIGURATION: ConfigurationException,
    ProviderErrorKind.PAYMENT_DECLINED: BusinessRuleException,
    ProviderErrorKind.PROVIDER: ProviderException,
}


@dataclass(frozen=True)
class ProviderError:
    kind: ProviderErrorKind
    message: str
    provider: str = ""
    status_code: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_exception(self) -> DomainException:
        exc_cls = _KIND_TO_EXCEPTION.get(self.kind, ProviderException)
        details = dict(self.details)
        if self.provider:
            details.setdefault("provider", self.provider)
        if self.status_code is not None:
            details.setdefault("status_code", self.status_code)
        return exc_cls(self.message, code=f"PROVIDER_{self.kind.name}", details=details)


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[ProviderError] = None

    @classmethod
    def ok(cls, value: T) -> "ProviderResult[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        kind: ProviderErrorKind,
        message: str,
        *,
        provider: str = "",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ProviderResult[T]":
        return cls(
            error=ProviderError(
                kind=kind,
                message=message,
                provider=provider,
                status_code=status_code,
                details=details or {},
            )
        )

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the domain exception for the error kind."""
        if self.error is not None:
            raise self.error.to_exception()
        return self.value  # type: ignore[return-value]
