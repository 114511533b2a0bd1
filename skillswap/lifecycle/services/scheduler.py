"""Time-triggered reminders and forced completion for unresponsive trades.

The scheduler keeps no state of its own. Which reminders already went out is
the trade's persisted ``reminder_stage`` and every deadline is measured from
the persisted ``completion_requested_at``, so a delayed, skipped or duplicated
run converges on the same result.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from ..models import Trade, TradeStatus, utcnow
from .confirmation import ConfirmationService, TerminalOutcome
from .notifications import NotificationEvent, OutboxDispatcher, event_payload
from .store import TradeStore, TradeTransaction

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (TradeStatus.IN_PROGRESS, TradeStatus.PENDING_CONFIRMATION)


class ResolutionAction(str, enum.Enum):
    REMINDED = "reminded"
    AUTO_COMPLETED = "auto_completed"
    SKIPPED = "skipped"


@dataclass
class ResolutionReport:
    ran_at: datetime
    scanned: int = 0
    reminded: list[uuid.UUID] = field(default_factory=list)
    auto_completed: list[uuid.UUID] = field(default_factory=list)
    skipped: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)
    reward_failed: list[uuid.UUID] = field(default_factory=list)
    notifications_delivered: int = 0
    notifications_pruned: int = 0


@dataclass
class _TradeResolution:
    action: ResolutionAction
    outcome: Optional[TerminalOutcome] = None


class AutoResolutionScheduler:
    def __init__(
        self,
        store: TradeStore,
        confirmation: ConfirmationService,
        dispatcher: OutboxDispatcher,
        *,
        reminder_after: Sequence[timedelta] = (timedelta(days=7),),
        auto_complete_after: timedelta = timedelta(days=14),
        batch_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        thresholds = sorted(delta for delta in reminder_after if delta < auto_complete_after)
        self._store = store
        self._confirmation = confirmation
        self._dispatcher = dispatcher
        self._reminder_after = thresholds
        self._auto_complete_after = auto_complete_after
        self._batch_size = batch_size
        self._clock = clock

    def reminder_stage_due(self, elapsed: timedelta) -> int:
        return sum(1 for threshold in self._reminder_after if elapsed >= threshold)

    async def run(self, now: Optional[datetime] = None) -> ResolutionReport:
        now = now or self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        report = ResolutionReport(ran_at=now)
        windows = self.due_windows(now)
        logger.info("Auto-resolution run at %s", now.isoformat())

        cursor: Optional[tuple[datetime, uuid.UUID]] = None
        while True:
            page = await self._store.find_due_for_resolution(
                ACTIVE_STATUSES,
                windows,
                after=cursor,
                limit=self._batch_size,
            )
            report.scanned += len(page)
            for trade_id, _ in page:
                await self._resolve_isolated(trade_id, now, report)
            if len(page) < self._batch_size:
                break
            last_id, last_requested_at = page[-1]
            cursor = (last_requested_at, last_id)

        report.notifications_delivered = await self._dispatcher.dispatch_pending()
        report.notifications_pruned = await self._dispatcher.prune_delivered(now)
        logger.info(
            "Auto-resolution finished: scanned=%s reminded=%s auto_completed=%s skipped=%s failed=%s",
            report.scanned,
            len(report.reminded),
            len(report.auto_completed),
            len(report.skipped),
            len(report.failed),
        )
        return report

    def due_windows(self, now: datetime) -> list[tuple[datetime, Optional[int]]]:
        """Request-time cutoffs at which a trade has a reminder or the deadline due."""
        windows: list[tuple[datetime, Optional[int]]] = [
            (now - threshold, stage) for stage, threshold in enumerate(self._reminder_after, start=1)
        ]
        windows.append((now - self._auto_complete_after, None))
        return windows

    async def _resolve_isolated(self, trade_id: uuid.UUID, now: datetime, report: ResolutionReport) -> None:
        try:
            action = await self._resolve(trade_id, now, report)
        except Exception:
            logger.exception("Auto-resolution failed for trade %s", trade_id)
            report.failed.append(trade_id)
            return
        if action is ResolutionAction.REMINDED:
            report.reminded.append(trade_id)
        elif action is ResolutionAction.AUTO_COMPLETED:
            report.auto_completed.append(trade_id)
        else:
            report.skipped.append(trade_id)

    async def _resolve(self, trade_id: uuid.UUID, now: datetime, report: ResolutionReport) -> ResolutionAction:
        async def _apply(tx: TradeTransaction) -> _TradeResolution:
            trade = await tx.get_trade(trade_id)
            if trade.trade_status not in ACTIVE_STATUSES or trade.completion_requested_at is None:
                return _TradeResolution(ResolutionAction.SKIPPED)

            elapsed = now - trade.completion_requested_at
            if elapsed >= self._auto_complete_after:
                reason = f"No response after {self._auto_complete_after.days} days"
                outcome = await self._confirmation.apply_auto_complete(tx, trade, now, reason)
                return _TradeResolution(ResolutionAction.AUTO_COMPLETED, outcome)

            due_stage = self.reminder_stage_due(elapsed)
            if due_stage <= trade.reminder_stage:
                return _TradeResolution(ResolutionAction.SKIPPED)

            trade.reminder_stage = due_stage
            trade.updated_at = now
            deadline = trade.completion_requested_at + self._auto_complete_after
            for recipient in self._reminder_recipients(trade):
                tx.enqueue_notification(
                    trade,
                    recipient,
                    NotificationEvent.REMINDER_SENT.value,
                    event_payload(trade, reminder_stage=due_stage, auto_complete_at=deadline.isoformat()),
                    at=now,
                )
            return _TradeResolution(ResolutionAction.REMINDED)

        resolution = await self._store.run(_apply)
        if resolution.outcome is not None:
            logger.info("Trade %s auto-completed", trade_id)
            rewarded = await self._confirmation.award_once(resolution.outcome.grant_id, resolution.outcome.trade)
            if not rewarded:
                report.reward_failed.append(trade_id)
        return resolution.action

    @staticmethod
    def _reminder_recipients(trade: Trade) -> list[str]:
        requester = trade.completion_requested_by
        if requester:
            counterpart = trade.counterpart_of(requester)
            return [counterpart] if counterpart else []
        return trade.parties()
