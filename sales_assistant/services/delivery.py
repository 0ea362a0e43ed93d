from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ReplyDelivery(Protocol):
    """Outbound channel that carries a composed reply back to the user."""

    def deliver(self, user_id: str, text: str, *, trace_id: str | None = None) -> None: ...


class LoggingReplyDelivery:
    """Default delivery: the HTTP response already carries the reply, so only log it."""

    def deliver(self, user_id: str, text: str, *, trace_id: str | None = None) -> None:
        logger.info(
            "Reply delivered trace_id=%s user_id=%s chars=%d",
            trace_id or "-",
            user_id,
            len(text),
        )


_reply_delivery: ReplyDelivery = LoggingReplyDelivery()


def get_reply_delivery() -> ReplyDelivery:
    return _reply_delivery
