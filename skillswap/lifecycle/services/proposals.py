from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from ..errors import AuthorizationError, InvalidStateError, ProposalAlreadyResolved
from ..models import Proposal, ProposalStatus, Trade, TradeStatus, utcnow
from ..schemas.trade import ProposalCreate
from .notifications import NotificationEvent, OutboxDispatcher, event_payload
from .state_machine import TradeStateValidator, TransitionTrigger
from .store import TradeStore, TradeTransaction

logger = logging.getLogger(__name__)


class ProposalService:
    """Submit, accept and reject proposals against an open trade.

    Proposal rows only change inside a transaction that also writes the
    owning trade, so the trade's version guard covers them as well.
    """

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

    async def submit(self, trade_id: uuid.UUID, proposer_id: str, payload: ProposalCreate) -> Proposal:
        now = self._clock()

        async def _submit(tx: TradeTransaction) -> Proposal:
            trade = await tx.get_trade(trade_id)
            self._ensure_open(trade)
            if proposer_id == trade.creator_id:
                raise AuthorizationError(
                    "the trade creator cannot propose on their own trade",
                    context={"trade_id": str(trade.id), "actor_id": proposer_id},
                )
            proposal = Proposal(
                id=uuid.uuid4(),
                trade_id=trade.id,
                proposer_id=proposer_id,
                status=ProposalStatus.PENDING.value,
                message=payload.message,
                skills_offered=[skill.model_dump(mode="json") for skill in payload.skills_offered],
                skills_requested=[skill.model_dump(mode="json") for skill in payload.skills_requested],
                created_at=now,
                updated_at=now,
            )
            tx.add(proposal)
            trade.updated_at = now
            return proposal

        proposal = await self._store.run(_submit)
        logger.info("Proposal %s submitted on trade %s by %s", proposal.id, trade_id, proposer_id)
        return proposal

    async def accept(self, trade_id: uuid.UUID, proposal_id: uuid.UUID, actor_id: str) -> Trade:
        now = self._clock()

        async def _accept(tx: TradeTransaction) -> Trade:
            trade = await tx.get_trade(trade_id)
            self._validator.validate_transition(
                trade, TradeStatus.IN_PROGRESS, actor_id, TransitionTrigger.ACCEPT_PROPOSAL
            )
            chosen = await tx.get_proposal(trade.id, proposal_id)
            self._ensure_pending(chosen)

            for proposal in await tx.list_proposals(trade.id, status=ProposalStatus.PENDING):
                proposal.updated_at = now
                proposal.resolved_at = now
                if proposal.id == chosen.id:
                    proposal.status = ProposalStatus.ACCEPTED.value
                else:
                    proposal.status = ProposalStatus.REJECTED.value
                    tx.enqueue_notification(
                        trade,
                        proposal.proposer_id,
                        NotificationEvent.PROPOSAL_REJECTED.value,
                        event_payload(trade, proposal_id=str(proposal.id)),
                        at=now,
                    )

            trade.participant_id = chosen.proposer_id
            trade.status = TradeStatus.IN_PROGRESS.value
            trade.proposal_accepted_at = now
            trade.updated_at = now
            tx.record_transition(
                trade,
                TradeStatus.OPEN,
                TradeStatus.IN_PROGRESS,
                trigger=TransitionTrigger.ACCEPT_PROPOSAL.value,
                actor_id=actor_id,
                at=now,
            )
            tx.enqueue_notification(
                trade,
                chosen.proposer_id,
                NotificationEvent.PROPOSAL_ACCEPTED.value,
                event_payload(trade, proposal_id=str(chosen.id)),
                at=now,
            )
            return trade

        trade = await self._store.run(_accept)
        logger.info("Proposal %s accepted on trade %s", proposal_id, trade.id)
        await self._dispatcher.dispatch_pending(trade_id=trade.id)
        return trade

    async def reject(self, trade_id: uuid.UUID, proposal_id: uuid.UUID, actor_id: str) -> Proposal:
        now = self._clock()

        async def _reject(tx: TradeTransaction) -> Proposal:
            trade = await tx.get_trade(trade_id)
            self._validator.ensure_creator(trade, actor_id)
            self._ensure_open(trade)
            proposal = await tx.get_proposal(trade.id, proposal_id)
            self._ensure_pending(proposal)

            proposal.status = ProposalStatus.REJECTED.value
            proposal.resolved_at = now
            proposal.updated_at = now
            trade.updated_at = now
            tx.enqueue_notification(
                trade,
                proposal.proposer_id,
                NotificationEvent.PROPOSAL_REJECTED.value,
                event_payload(trade, proposal_id=str(proposal.id)),
                at=now,
            )
            return proposal

        proposal = await self._store.run(_reject)
        await self._dispatcher.dispatch_pending(trade_id=trade_id)
        return proposal

    def _ensure_open(self, trade: Trade) -> None:
        self._validator.ensure_not_terminal(trade)
        if trade.trade_status is not TradeStatus.OPEN:
            raise InvalidStateError(
                "trade is no longer open for proposals",
                context={"trade_id": str(trade.id), "status": trade.status},
            )

    @staticmethod
    def _ensure_pending(proposal: Proposal) -> None:
        if proposal.status != ProposalStatus.PENDING.value:
            raise ProposalAlreadyResolved(
                f"proposal is already {proposal.status}",
                context={"proposal_id": str(proposal.id), "status": proposal.status},
            )
