from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Callable, Optional

from ..models import Proposal, ProposalStatus, Trade, TradeStatus, TradeTransition, utcnow
from ..schemas.trade import TradeCreate
from .notifications import NotificationEvent, OutboxDispatcher, event_payload
from .state_machine import TradeStateValidator, TransitionTrigger
from .store import TradeStore, TradeTransaction

logger = logging.getLogger(__name__)


class TradeService:
    """Trade creation, lookups and creator cancellation."""

    def __init__(
        self,
        store: TradeStore,
        dispatcher: OutboxDispatcher,
        *,
        validator: Optional[TradeStateValidator] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._validator = validator or TradeStateValidator()
        self._clock = clock

    async def create_trade(self, creator_id: str, payload: TradeCreate) -> Trade:
        now = self._clock()

        async def _create(tx: TradeTransaction) -> Trade:
            trade = Trade(
                id=uuid.uuid4(),
                title=payload.title,
                description=payload.description,
                creator_id=creator_id,
                status=TradeStatus.OPEN.value,
                skills_offered=[skill.model_dump(mode="json") for skill in payload.skills_offered],
                skills_wanted=[skill.model_dump(mode="json") for skill in payload.skills_wanted],
                evidence=[],
                change_requests=[],
                reminder_stage=0,
                created_at=now,
                updated_at=now,
            )
            tx.add(trade)
            await tx.flush()
            tx.record_transition(trade, None, TradeStatus.OPEN, trigger="create", actor_id=creator_id, at=now)
            return trade

        trade = await self._store.run(_create)
        logger.info("Trade %s created by %s", trade.id, creator_id)
        return trade

    async def get_trade(self, trade_id: uuid.UUID) -> Trade:
        return await self._store.load_trade(trade_id)

    async def list_proposals(self, trade_id: uuid.UUID) -> Sequence[Proposal]:
        await self._store.load_trade(trade_id)
        return await self._store.load_proposals(trade_id)

    async def history(self, trade_id: uuid.UUID) -> Sequence[TradeTransition]:
        await self._store.load_trade(trade_id)
        return await self._store.load_transitions(trade_id)

    async def cancel(self, trade_id: uuid.UUID, actor_id: str, reason: Optional[str] = None) -> Trade:
        now = self._clock()

        async def _cancel(tx: TradeTransaction) -> Trade:
            trade = await tx.get_trade(trade_id)
            previous = trade.trade_status
            self._validator.validate_transition(trade, TradeStatus.CANCELLED, actor_id, TransitionTrigger.CANCEL)

            if previous is TradeStatus.OPEN:
                for proposal in await tx.list_proposals(trade.id, status=ProposalStatus.PENDING):
                    proposal.status = ProposalStatus.REJECTED.value
                    proposal.resolved_at = now
                    proposal.updated_at = now

            trade.status = TradeStatus.CANCELLED.value
            trade.cancelled_at = now
            trade.updated_at = now
            tx.record_transition(
                trade, previous, TradeStatus.CANCELLED, trigger=TransitionTrigger.CANCEL.value, actor_id=actor_id, at=now
            )
            tx.enqueue_notification(
                trade,
                trade.participant_id,
                NotificationEvent.TRADE_CANCELLED.value,
                event_payload(trade, actor_id=actor_id, reason=reason),
                at=now,
            )
            return trade

        trade = await self._store.run(_cancel)
        logger.info("Trade %s cancelled by %s", trade.id, actor_id)
        await self._dispatcher.dispatch_pending(trade_id=trade.id)
        return trade
