"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

from http import HTTPStatus

from fastapi import Request
from fastapi.responses import JSONResponse

from .domain_errors import DomainError

PROBLEM_TYPE_BASE = "https://api.thiraiview.com/problems"


def build_problem_details_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": f"{PROBLEM_TYPE_BASE}/{exc.code.lower().replace('_', '-')}",
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
        # Kept for clients that read the legacy {"error": "..."} shape.
        "error": exc.message,
    }
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
    )


async def domain_error_handler(_: Request, exc: DomainError) -> JSONResponse:
    return build_problem_details_response(exc)
