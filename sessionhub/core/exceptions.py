# sessionhub/core/exceptions.py
"""
Domain-specific exceptions for the session marketplace.

Every failure the orchestrator can surface belongs to one of these kinds.
Each kind knows its HTTP rendering and the hint shown to the user
("invalid request", "try again", "contact support").
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)

HINT_INVALID_REQUEST = "invalid_request"
HINT_TRY_AGAIN = "try_again"
HINT_CONTACT_SUPPORT = "contact_support"


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    hint: str = HINT_CONTACT_SUPPORT

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "hint": self.hint,
            "details": self.details,
        }

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_payload())


class ValidationException(DomainException):
    """Raised when caller input is invalid. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST
    hint = HINT_INVALID_REQUEST


class AuthenticationException(DomainException):
    """Raised when a credential or signature is invalid."""

    status_code = status.HTTP_401_UNAUTHORIZED
    hint = HINT_INVALID_REQUEST


class ForbiddenException(DomainException):
    """Raised when the caller may not act on the resource."""

    status_code = status.HTTP_403_FORBIDDEN
    hint = HINT_INVALID_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND
    hint = HINT_INVALID_REQUEST


class ConflictException(DomainException):
    """Raised for duplicates and already-processed requests."""

    status_code = status.HTTP_409_CONFLICT
    hint = HINT_INVALID_REQUEST


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE
    hint = HINT_INVALID_REQUEST


class TransientUnavailableException(DomainException):
    """Raised when a provider stays rate-limited or unavailable after retries."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    hint = HINT_TRY_AGAIN

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail=self.to_payload(),
            headers={"Retry-After": "30"},
        )


class ConfigurationException(DomainException):
    """Raised when a required secret or setting is missing. Never retried."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    hint = HINT_CONTACT_SUPPORT


class ProviderException(DomainException):
    """Raised when a provider fails in a way no other kind describes."""

    status_code = status.HTTP_502_BAD_GATEWAY
    hint = HINT_CONTACT_SUPPORT


class ServiceException(DomainException):
    """Raised when a service operation fails unexpectedly."""

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["message"] = self.message or "An error occurred processing your request"
        return payload


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
