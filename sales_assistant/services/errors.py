from __future__ import annotations

from typing import Any

from fastapi import status


class EngineError(Exception):
    """Base error for the conversation engine and its collaborators."""

    code: str = "INTERNAL_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        reason: str | None = None,
        http_status: int | None = None,
        debug: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or reason or "")
        self.reason = reason or message or self.code
        if http_status is not None:
            self.http_status = http_status
        self.debug = debug or {}


class BadRequestError(EngineError):
    code = "BAD_REQUEST"
    http_status = status.HTTP_400_BAD_REQUEST


class SessionNotFoundError(EngineError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND


class ConfigError(EngineError):
    """Declarative tables could not be loaded or are malformed."""

    code = "CONFIG_ERROR"


class KnowledgeStoreError(EngineError):
    """Knowledge backend is unavailable; callers degrade to contact routing."""

    code = "UPSTREAM_UNAVAILABLE"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
