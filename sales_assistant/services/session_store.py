"""
In-memory per-user session store.

Every mutation of one user's session runs under that user's re-entrant lock, so
the engine can hold ``session_lock(user_id)`` for a whole turn while calling the
individual operations. Stored sessions are never handed out: readers get copies.

Sessions inactive for longer than the TTL are treated as new. On expiry the
customer type (optional) and the last few distinct products move into a soft
memory cache and greet the user when they come back; they never refill slots.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from ..config import Settings, get_settings
from ..intents import ConversationMode, CustomerType
from ..models.nlu import Entity
from ..models.session import Session, Slots, SoftMemory, Turn
from .cache import TTLCache

logger = logging.getLogger(__name__)


class SessionStore:
    """Per-user context memory: slots, history, mode and timestamps."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        ttl_seconds: float | None = None,
        history_limit: int | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        self._history_limit = history_limit or settings.session_history_limit
        self._soft_memory_products = settings.session_soft_memory_products
        self._soft_memory_ttl = settings.session_soft_memory_ttl_seconds
        self._carry_customer_type = settings.session_carry_customer_type
        self._clock = clock or time.time

        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()
        self._soft_memory: TTLCache[SoftMemory] = TTLCache(clock=self._clock)

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def session_lock(self, user_id: str) -> Iterator[None]:
        """Serialize all work on ``user_id``'s session."""
        while True:
            lock = self._lock_for(user_id)
            lock.acquire()
            # The sweeper may have retired this lock between lookup and acquire.
            with self._registry_lock:
                current = self._locks.get(user_id)
            if current is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _is_stale(self, session: Session, now: float) -> bool:
        return now - session.last_activity > self._ttl

    def _new_session(self, user_id: str, now: float) -> Session:
        memory = self._soft_memory.pop(user_id)
        session = Session(user_id=user_id, created_at=now, last_activity=now)
        if memory is not None:
            session = session.model_copy(
                update={
                    "slots": Slots(customer_type=memory.customer_type),
                    "recent_products": list(memory.recent_products),
                    "returning": True,
                }
            )
            logger.info(
                "Session restored from soft memory user_id=%s customer_type=%s products=%s",
                user_id,
                memory.customer_type.value if memory.customer_type else "-",
                memory.recent_products,
            )
        return session

    def _retire(self, session: Session) -> None:
        """Drop ``session`` keeping only its soft memory. Caller holds the user lock."""
        customer_type = session.slots.customer_type if self._carry_customer_type else None
        products = session.recent_products[-self._soft_memory_products:] if self._soft_memory_products else []
        if customer_type is not None or products:
            self._soft_memory.set(
                session.user_id,
                SoftMemory(customer_type=customer_type, recent_products=products),
                self._soft_memory_ttl,
            )
        with self._registry_lock:
            self._sessions.pop(session.user_id, None)

    def get(self, user_id: str) -> Optional[Session]:
        """Copy of the live session, or None when absent or past its TTL."""
        with self._registry_lock:
            session = self._sessions.get(user_id)
        if session is None or self._is_stale(session, self._clock()):
            return None
        return session.copy_state()

    def get_or_create(self, user_id: str) -> Session:
        with self.session_lock(user_id):
            self.expire_if_stale(user_id)
            session = self._sessions.get(user_id)
            if session is None:
                session = self._new_session(user_id, self._clock())
                with self._registry_lock:
                    self._sessions[user_id] = session
                logger.debug("Session created user_id=%s returning=%s", user_id, session.returning)
            return session.copy_state()

    def expire_if_stale(self, user_id: str) -> bool:
        """Retire the session when it is past its TTL; True if it was retired."""
        with self.session_lock(user_id):
            session = self._sessions.get(user_id)
            if session is None or not self._is_stale(session, self._clock()):
                return False
            self._retire(session)
            logger.info(
                "Session expired user_id=%s idle_seconds=%.0f",
                user_id,
                self._clock() - session.last_activity,
            )
            return True

    def reset(self, user_id: str) -> bool:
        """Forget the session and its soft memory; True if a session existed."""
        with self.session_lock(user_id):
            self._soft_memory.pop(user_id)
            with self._registry_lock:
                existed = self._sessions.pop(user_id, None) is not None
                self._locks.pop(user_id, None)
        logger.info("Session reset user_id=%s existed=%s", user_id, existed)
        return existed

    def sweep(self) -> int:
        """Retire every stale session and return how many were removed.

        Users whose lock is busy are skipped; their turn in flight refreshes them.
        """
        with self._registry_lock:
            user_ids = list(self._sessions)
        removed = 0
        for user_id in user_ids:
            with self._registry_lock:
                lock = self._locks.get(user_id)
            if lock is None or not lock.acquire(blocking=False):
                continue
            try:
                session = self._sessions.get(user_id)
                if session is not None and self._is_stale(session, self._clock()):
                    self._retire(session)
                    with self._registry_lock:
                        self._locks.pop(user_id, None)
                    removed += 1
            finally:
                lock.release()
        expired_memory = self._soft_memory.cleanup_expired()
        logger.info("Session sweep removed=%d soft_memory_expired=%d active=%d", removed, expired_memory, len(self))
        return removed

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _update(self, user_id: str, **changes: object) -> Session:
        with self.session_lock(user_id):
            session = self._sessions.get(user_id)
            if session is None:
                session = self._new_session(user_id, self._clock())
            session = session.model_copy(update=changes)
            with self._registry_lock:
                self._sessions[user_id] = session
            return session.copy_state()

    def _current(self, user_id: str) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            return self.get_or_create(user_id)
        return session

    def append_turn(self, user_id: str, turn: Turn) -> Session:
        """Append to history (oldest dropped past the cap) and refresh activity."""
        with self.session_lock(user_id):
            session = self._current(user_id)
            history = [*session.history, turn][-self._history_limit:]
            return self._update(user_id, history=history, last_activity=self._clock())

    def merge_slots(self, user_id: str, entities: Iterable[Entity]) -> Session:
        """Fill empty slots; a confirmed value may replace an ambiguous one, never the reverse."""
        with self.session_lock(user_id):
            session = self._current(user_id)
            slots = session.slots.merged(entities)
            changes: Dict[str, object] = {"slots": slots}
            product = slots.value_of("product")
            if product and product != session.slots.value_of("product"):
                changes["recent_products"] = self._remember(session.recent_products, product)
            return self._update(user_id, **changes)

    def _remember(self, products: List[str], product: str) -> List[str]:
        updated = [item for item in products if item != product]
        updated.append(product)
        return updated[-self._soft_memory_products:] if self._soft_memory_products else []

    def clear_slots(self, user_id: str) -> Session:
        """Reset the product flow; customer type and history stay."""
        with self.session_lock(user_id):
            session = self._current(user_id)
            return self._update(
                user_id,
                slots=session.slots.cleared(),
                pending_slot=None,
                asked_slots=[],
                mode=ConversationMode.IDLE,
            )

    def set_pending_slot(self, user_id: str, slot_name: Optional[str]) -> Session:
        return self._update(user_id, pending_slot=slot_name)

    def mark_asked(self, user_id: str, slot_name: str) -> Session:
        with self.session_lock(user_id):
            session = self._current(user_id)
            if slot_name in session.asked_slots:
                return session.copy_state()
            return self._update(user_id, asked_slots=[*session.asked_slots, slot_name])

    def set_mode(self, user_id: str, mode: ConversationMode) -> Session:
        return self._update(user_id, mode=mode)

    def set_customer_type(self, user_id: str, customer_type: CustomerType) -> Session:
        with self.session_lock(user_id):
            session = self._current(user_id)
            if session.slots.customer_type == customer_type:
                return session.copy_state()
            logger.info("Customer type set user_id=%s customer_type=%s", user_id, customer_type.value)
            return self._update(
                user_id,
                slots=session.slots.model_copy(update={"customer_type": customer_type}),
            )

    def mark_greeted(self, user_id: str) -> Session:
        return self._update(user_id, returning=False)


class SessionSweeper:
    """Background thread running a sweep callable at a fixed interval."""

    def __init__(self, sweep: Callable[[], int], interval_seconds: float) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()
        logger.info("Session sweeper started interval_seconds=%.0f", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Session sweeper stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._sweep()
            except Exception:
                logger.exception("Session sweep failed")
