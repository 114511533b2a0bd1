from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import Select, delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import NotificationOutbox, utcnow
from .queue import QueueService

logger = logging.getLogger(__name__)


class NotificationEvent(str, enum.Enum):
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_CONFIRMED = "completion_confirmed"
    COMPLETION_CHANGES_REQUESTED = "completion_changes_requested"
    REMINDER_SENT = "reminder_sent"
    AUTO_COMPLETED = "auto_completed"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    TRADE_CANCELLED = "trade_cancelled"


class NotificationPort(Protocol):
    async def notify(self, recipient_id: str, event_type: NotificationEvent, payload: dict[str, Any]) -> None:
        ...


class QueueNotificationPort:
    """Hand notifications to the delivery worker through the Redis queue."""

    def __init__(self, queue: QueueService, queue_name: str) -> None:
        self._queue = queue
        self._queue_name = queue_name

    async def notify(self, recipient_id: str, event_type: NotificationEvent, payload: dict[str, Any]) -> None:
        await self._queue.enqueue(
            self._queue_name,
            {
                "recipient_id": recipient_id,
                "event_type": event_type.value,
                "payload": payload,
            },
        )


class OutboxDispatcher:
    """Deliver persisted notification intents with bounded retries.

    Intents are written in the same transaction as the trade change, so a
    failed delivery stays in the outbox with its error and attempt count
    until a later pass succeeds or ``max_attempts`` is exhausted. Delivered
    rows are kept for ``retention`` and then pruned.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        port: NotificationPort,
        *,
        max_attempts: int = 5,
        batch_size: int = 200,
        retention: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._port = port
        self._max_attempts = max_attempts
        self._batch_size = batch_size
        self._retention = retention
        self._clock = clock

    def pending_statement(self, trade_id: Optional[uuid.UUID] = None) -> Select:
        # Rows claimed by a concurrent dispatcher are skipped on Postgres; SQLite ignores the lock.
        stmt = (
            select(NotificationOutbox)
            .where(
                NotificationOutbox.delivered_at.is_(None),
                NotificationOutbox.attempts < self._max_attempts,
            )
            .order_by(NotificationOutbox.created_at)
            .limit(self._batch_size)
            .with_for_update(skip_locked=True)
        )
        if trade_id is not None:
            stmt = stmt.where(NotificationOutbox.trade_id == trade_id)
        return stmt

    async def dispatch_pending(self, *, trade_id: Optional[uuid.UUID] = None) -> int:
        stmt = self.pending_statement(trade_id)
        delivered = 0
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for intent in result.scalars().all():
                intent.attempts += 1
                try:
                    await self._port.notify(
                        intent.recipient_id,
                        NotificationEvent(intent.event_type),
                        intent.payload or {},
                    )
                except Exception as exc:
                    intent.last_error = str(exc) or exc.__class__.__name__
                    logger.warning(
                        "Notification %s for trade %s failed (attempt %s/%s): %s",
                        intent.event_type,
                        intent.trade_id,
                        intent.attempts,
                        self._max_attempts,
                        exc,
                    )
                else:
                    intent.delivered_at = self._clock()
                    intent.last_error = None
                    delivered += 1
            await session.commit()
        return delivered

    async def prune_delivered(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or self._clock()) - self._retention
        stmt = delete(NotificationOutbox).where(
            NotificationOutbox.delivered_at.is_not(None),
            NotificationOutbox.delivered_at < cutoff,
        ).execution_options(synchronize_session=False)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount:
            logger.info("Pruned %s delivered notifications older than %s", result.rowcount, cutoff.isoformat())
        return result.rowcount or 0


def event_payload(trade: Any, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "trade_id": str(trade.id),
        "trade_title": trade.title,
        "status": trade.status,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload
