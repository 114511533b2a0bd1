from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from ..errors import ValidationError
from ..models import RewardGrant, Trade, TradeStatus, utcnow
from .notifications import NotificationEvent, OutboxDispatcher, event_payload
from .rewards import RewardPort
from .state_machine import SYSTEM_ACTOR, TradeStateValidator, TransitionTrigger
from .store import TradeStore, TradeTransaction

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    TradeStatus.COMPLETED: NotificationEvent.COMPLETION_CONFIRMED,
    TradeStatus.AUTO_COMPLETED: NotificationEvent.AUTO_COMPLETED,
}


@dataclass
class TerminalOutcome:
    """Result of a transaction that may have moved a trade into a completed state.

    ``grant_id`` is only set for the single transaction that performed the
    transition; it is the ticket for the one reward invocation.
    """

    trade: Trade
    grant_id: Optional[uuid.UUID] = None


class ConfirmationService:
    """Confirm or push back on a pending completion request.

    :meth:`finalize` is the only code path that moves a trade into
    ``completed`` or ``auto_completed``; the scheduler reuses it.
    """

    def __init__(
        self,
        store: TradeStore,
        dispatcher: OutboxDispatcher,
        rewards: RewardPort,
        *,
        validator: Optional[TradeStateValidator] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._rewards = rewards
        self._validator = validator or TradeStateValidator()
        self._clock = clock

    async def confirm(self, trade_id: uuid.UUID, actor_id: str) -> Trade:
        now = self._clock()

        async def _confirm(tx: TradeTransaction) -> TerminalOutcome:
            trade = await tx.get_trade(trade_id)
            return await self.apply_confirm(tx, trade, actor_id, now)

        outcome = await self._store.run(_confirm)
        return await self.after_commit(outcome)

    async def apply_confirm(self, tx: TradeTransaction, trade: Trade, actor_id: str, now: datetime) -> TerminalOutcome:
        self._validator.validate_transition(trade, TradeStatus.COMPLETED, actor_id, TransitionTrigger.CONFIRM)
        return await self.finalize(tx, trade, TradeStatus.COMPLETED, actor_id=actor_id, trigger=TransitionTrigger.CONFIRM, now=now)

    async def apply_auto_complete(self, tx: TradeTransaction, trade: Trade, now: datetime, reason: str) -> TerminalOutcome:
        self._validator.validate_transition(trade, TradeStatus.AUTO_COMPLETED, SYSTEM_ACTOR, TransitionTrigger.AUTO_RESOLVE)
        return await self.finalize(
            tx,
            trade,
            TradeStatus.AUTO_COMPLETED,
            actor_id=SYSTEM_ACTOR,
            trigger=TransitionTrigger.AUTO_RESOLVE,
            now=now,
            reason=reason,
        )

    async def finalize(
        self,
        tx: TradeTransaction,
        trade: Trade,
        status: TradeStatus,
        *,
        actor_id: str,
        trigger: TransitionTrigger,
        now: datetime,
        reason: Optional[str] = None,
    ) -> TerminalOutcome:
        previous = trade.trade_status
        requester = trade.completion_requested_by

        trade.status = status.value
        trade.completed_at = now
        trade.updated_at = now
        trade.completion_requested_by = None
        if reason:
            trade.auto_completion_reason = reason
        # A concurrent finisher must fail on the version check here, before the grant insert.
        await tx.flush()

        tx.record_transition(trade, previous, status, trigger=trigger.value, actor_id=actor_id, at=now)
        grant = tx.create_reward_grant(trade, at=now)

        event = _TERMINAL_EVENTS[status]
        for party in trade.parties():
            tx.enqueue_notification(
                trade,
                party,
                event.value,
                event_payload(trade, actor_id=actor_id, requested_by=requester, reason=reason),
                at=now,
            )
        return TerminalOutcome(trade=trade, grant_id=grant.id)

    async def after_commit(self, outcome: TerminalOutcome) -> Trade:
        trade = outcome.trade
        if outcome.grant_id is not None:
            logger.info("Trade %s reached %s", trade.id, trade.status)
            await self.award_once(outcome.grant_id, trade)
        await self._dispatcher.dispatch_pending(trade_id=trade.id)
        return trade

    async def award_once(self, grant_id: uuid.UUID, trade: Trade) -> bool:
        """Invoke the reward port for a freshly created grant.

        Called once, by the caller whose transaction created the grant. A failed
        call is recorded on the grant and not retried.
        """
        error: Optional[str] = None
        try:
            await self._rewards.award_completion(trade.id, trade.creator_id, trade.participant_id or "")
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("Reward invocation failed for trade %s", trade.id)

        awarded_at = self._clock()

        async def _record(tx: TradeTransaction) -> None:
            grant = await tx.session.get(RewardGrant, grant_id)
            if grant is None:
                return
            if error is None:
                grant.awarded_at = awarded_at
                grant.last_error = None
            else:
                grant.last_error = error

        await self._store.run(_record)
        return error is None

    async def request_changes(self, trade_id: uuid.UUID, actor_id: str, feedback: str) -> Trade:
        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationError("feedback is required when requesting changes", context={"trade_id": str(trade_id)})
        now = self._clock()

        async def _request_changes(tx: TradeTransaction) -> Trade:
            trade = await tx.get_trade(trade_id)
            self._validator.validate_transition(
                trade, TradeStatus.IN_PROGRESS, actor_id, TransitionTrigger.REQUEST_CHANGES
            )
            requester = trade.completion_requested_by

            trade.change_requests.append(
                {
                    "id": str(uuid.uuid4()),
                    "requested_by": actor_id,
                    "requested_at": now.isoformat(),
                    "reason": feedback,
                    "status": "pending",
                }
            )
            trade.status = TradeStatus.IN_PROGRESS.value
            trade.completion_requested_by = None
            trade.completion_requested_at = None
            trade.reminder_stage = 0
            trade.updated_at = now

            tx.record_transition(
                trade,
                TradeStatus.PENDING_CONFIRMATION,
                TradeStatus.IN_PROGRESS,
                trigger=TransitionTrigger.REQUEST_CHANGES.value,
                actor_id=actor_id,
                at=now,
            )
            tx.enqueue_notification(
                trade,
                requester,
                NotificationEvent.COMPLETION_CHANGES_REQUESTED.value,
                event_payload(trade, actor_id=actor_id, feedback=feedback),
                at=now,
            )
            return trade

        trade = await self._store.run(_request_changes)
        logger.info("Changes requested on trade %s by %s", trade.id, actor_id)
        await self._dispatcher.dispatch_pending(trade_id=trade.id)
        return trade

