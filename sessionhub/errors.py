"""Unified error envelope for domain failures."""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .core.exceptions import DomainException, TransientUnavailableException

logger = logging.getLogger(__name__)


def _title_from_status(status_code: int) -> str:
    mapping = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        409: "Conflict",
        422: "Unprocessable Entity",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return mapping.get(status_code, "Error")


def _problem(
    *,
    status: int,
    detail: str,
    code: str,
    hint: str,
    instance: Optional[str] = None,
    errors: Optional[Any] = None,
) -> Dict[str, Any]:
    problem: Dict[str, Any] = {
        "type": "about:blank",
        "title": _title_from_status(status),
        "status": status,
        "detail": detail,
        "instance": instance or "",
        "code": code,
        "hint": hint,
    }
    if errors:
        problem["errors"] = errors
    return problem


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc, exc.code)
        payload = exc.to_payload()
        headers = {"Retry-After": "30"} if isinstance(exc, TransientUnavailableException) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(
                _problem(
                    status=exc.status_code,
                    detail=payload["message"],
                    code=payload["code"],
                    hint=payload["hint"],
                    instance=str(request.url.path),
                    errors=payload["details"],
                )
            ),
            headers=headers,
        )
