"""
Notification intents and domain events emitted by the rewards engine.

Both are fire-and-forget: a failing sender or subscriber is logged and
never propagates into the ledger write that triggered it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Protocol
from uuid import UUID
import threading

from loguru import logger

from impact_ledger.models import CreditSource


class NotificationSender(Protocol):
    def notify(self, user_id: UUID, title_key: str, body_key: str, params: dict) -> None:
        ...


class LoggingNotificationSender:
    """Default sender: records the intent in the log for the delivery layer to pick up."""

    def notify(self, user_id: UUID, title_key: str, body_key: str, params: dict) -> None:
        logger.info(f"[Notifications] {user_id}: {title_key} / {body_key} {params}")


@dataclass(frozen=True)
class CreditIssued:
    user_id: UUID
    amount: Decimal
    source: CreditSource
    transaction_id: UUID
    origin_event_id: Optional[str] = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self.subscribers: list[Callable] = []

    def subscribe(self, handler: Callable) -> None:
        with self._lock:
            self.subscribers.append(handler)

    def unsubscribe(self, handler: Callable) -> None:
        with self._lock:
            if handler in self.subscribers:
                self.subscribers.remove(handler)

    def publish(self, event) -> int:
        """Deliver ``event`` to every subscriber; returns how many failed."""
        with self._lock:
            handlers = list(self.subscribers)
        failed = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                failed += 1
                logger.exception(f"[EventBus] Subscriber {handler!r} failed on {type(event).__name__}")
        return failed
