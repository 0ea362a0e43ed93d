from __future__ import annotations

import logging
import traceback
import uuid
from typing import Any, Tuple

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from .errors import EngineError

logger = logging.getLogger(__name__)

SAFE_ERROR_TEXT = "معلش حصلت مشكلة مؤقتة، جرب تاني بعد شوية أو كلمنا على {phone}"
SAFE_ERROR_TITLE = "خطأ تقني"

_UPSTREAM_STATUSES = frozenset(
    {
        status.HTTP_502_BAD_GATEWAY,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        status.HTTP_504_GATEWAY_TIMEOUT,
    }
)


def _detail_to_reason(detail: Any) -> str:
    if isinstance(detail, dict):
        return detail.get("reason") or detail.get("message") or "unknown"
    if isinstance(detail, list):
        return str(detail[0]) if detail else "unknown"
    return str(detail) if detail else "unknown"


def map_exception_to_error_code(exc: Exception) -> Tuple[str, str, int]:
    """Return (error code, reason, HTTP status) for ``exc``."""
    if isinstance(exc, EngineError):
        return exc.code, exc.reason, exc.http_status

    if isinstance(exc, RequestValidationError):
        return "BAD_REQUEST", "request_validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY

    if isinstance(exc, HTTPException):
        status_code = exc.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        reason = _detail_to_reason(exc.detail)
        if status_code == status.HTTP_404_NOT_FOUND:
            return "NOT_FOUND", reason, status_code
        if status.HTTP_400_BAD_REQUEST <= status_code < status.HTTP_500_INTERNAL_SERVER_ERROR:
            return "BAD_REQUEST", reason, status_code
        if status_code in _UPSTREAM_STATUSES:
            return "UPSTREAM_UNAVAILABLE", reason, status_code
        return "INTERNAL_ERROR", reason, status_code

    return (
        "INTERNAL_ERROR",
        getattr(exc, "reason", None) or exc.__class__.__name__,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def build_error_response(
    *,
    error_code: str,
    reason: str,
    status_code: int,
    phone: str,
    debug_payload: dict[str, Any] | None = None,
) -> JSONResponse:
    meta: dict[str, Any] = {"error": {"code": error_code, "reason": reason}}
    if debug_payload:
        meta["debug"] = debug_payload
    return JSONResponse(
        status_code=status_code,
        content={
            "reply": {"text": SAFE_ERROR_TEXT.format(phone=phone), "title": SAFE_ERROR_TITLE},
            "data": None,
            "meta": meta,
        },
    )


def _settings_for(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def new_trace_id() -> str:
    return uuid.uuid4().hex


def log_exception(
    *,
    request: Request,
    exc: Exception,
    trace_id: str,
    handled: bool,
) -> None:
    reason = getattr(exc, "reason", None) or exc.__class__.__name__
    if not handled:
        logger.error(
            "Unhandled application error trace_id=%s path=%s reason=%s",
            trace_id,
            request.url.path,
            reason,
            exc_info=exc,
        )
        return
    logger.warning(
        "Handled application error trace_id=%s path=%s reason=%s",
        trace_id,
        request.url.path,
        reason,
    )
    logger.debug(
        "Full traceback for trace_id=%s\n%s",
        trace_id,
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )


def error_response(request: Request, exc: Exception, *, handled: bool = True) -> JSONResponse:
    """Log ``exc`` under a fresh trace id and render the uniform error body."""
    trace_id = new_trace_id()
    log_exception(request=request, exc=exc, trace_id=trace_id, handled=handled)
    error_code, reason, status_code = map_exception_to_error_code(exc)
    debug_payload: dict[str, Any] = {"trace_id": trace_id}
    if isinstance(exc, EngineError) and exc.debug:
        debug_payload.update(exc.debug)
    return build_error_response(
        error_code=error_code,
        reason=reason,
        status_code=status_code,
        phone=_settings_for(request).fallback_contact_phone,
        debug_payload=debug_payload,
    )
