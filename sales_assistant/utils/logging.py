from __future__ import annotations

import logging
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with trace and user context."""

    def process(self, msg: Any, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        trace_id = self.extra.get("trace_id") or "-"
        user_id = self.extra.get("user_id") or "-"
        return f"trace_id={trace_id} user_id={user_id} {msg}", kwargs


def get_request_logger(
    logger: logging.Logger | str,
    *,
    trace_id: str | None,
    user_id: str | None,
) -> RequestLoggerAdapter:
    base_logger = logging.getLogger(logger) if isinstance(logger, str) else logger
    return RequestLoggerAdapter(
        base_logger,
        {
            "trace_id": trace_id or "-",
            "user_id": user_id or "-",
        },
    )


def configure_logging(level: str | int = "INFO") -> None:
    """Install one stream handler on the package logger; repeated calls only adjust the level."""
    package_logger = logging.getLogger("sales_assistant")
    package_logger.setLevel(level if isinstance(level, int) else level.upper())
    if not any(getattr(handler, "_sales_assistant", False) for handler in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._sales_assistant = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)
