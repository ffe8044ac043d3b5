from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from apps.api.services.jobs import JobNotFoundError
from apps.api.services.resolvers import ResolverResult

LOGGER = logging.getLogger(__name__)

_STATUS_FOR_CODE = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid_request": status.HTTP_400_BAD_REQUEST,
    "spawn_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "schedule_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _as_envelope(code: str, message: str, details: Any | None = None) -> Mapping[str, Any]:
    """Standardize error payloads for the API and UI."""
    payload = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return payload


def api_error(status_code: int, code: str, message: str, details: Any | None = None) -> HTTPException:
    """HTTPException whose envelope carries ``code`` instead of ``HTTP_<status>``."""
    detail: Any = message if details is None else {"message": message, **details}
    return HTTPException(status_code=status_code, detail=detail, headers={"x-error-code": code})


def raise_for_result(result: ResolverResult) -> ResolverResult:
    """Map a failed resolver result onto the matching HTTP error."""
    if result.success:
        return result
    code = result.code or "spawn_failed"
    status_code = _STATUS_FOR_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    extra = {k: v for k, v in result.to_dict().items() if k not in {"success", "error", "message"}}
    raise api_error(status_code, code.upper(), result.error or "Request failed", extra or None)


def install_error_handlers(app: FastAPI) -> None:
    """Attach consistent error handlers producing {code, message, details} envelopes."""

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
        headers = exc.headers or {}
        code = headers.get("x-error-code") or f"HTTP_{exc.status_code}"
        if isinstance(exc.detail, str):
            message, details = exc.detail, None
        elif isinstance(exc.detail, dict) and "message" in exc.detail:
            details = {k: v for k, v in exc.detail.items() if k != "message"}
            message = str(exc.detail["message"])
        else:
            message, details = str(exc.detail), exc.detail
        return JSONResponse(status_code=exc.status_code, content=_as_envelope(code, message, details))

    @app.exception_handler(JobNotFoundError)
    async def _job_not_found_handler(_request: Request, exc: JobNotFoundError) -> JSONResponse:
        job_ref = exc.args[0] if exc.args else ""
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=_as_envelope("JOB_NOT_FOUND", f"Job not found: {job_ref}"),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_as_envelope("VALIDATION_ERROR", "Validation error", exc.errors()),
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # pragma: no cover
        LOGGER.exception("[api] Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_as_envelope("INTERNAL_ERROR", "Internal server error", {"error": str(exc)}),
        )
