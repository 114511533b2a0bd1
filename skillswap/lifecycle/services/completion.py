from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Callable, Optional

from ..errors import ValidationError
from ..models import Trade, TradeStatus, utcnow
from ..schemas.trade import EvidenceIn
from .confirmation import ConfirmationService, TerminalOutcome
from .notifications import NotificationEvent, OutboxDispatcher, event_payload
from .state_machine import TradeStateValidator, TransitionTrigger
from .store import TradeStore, TradeTransaction

logger = logging.getLogger(__name__)


class CompletionService:
    """Record a party's completion declaration together with its evidence.

    Three outcomes depending on the stored state:

    * ``in_progress``: the trade moves to ``pending_confirmation``.
    * ``pending_confirmation`` requested by the same actor: nothing changes,
      the current trade is returned so client retries are harmless.
    * ``pending_confirmation`` requested by the other party: both sides
      consider the work done, so the call confirms the pending request
      instead of opening a second one. Its evidence is still appended.
    """

    def __init__(
        self,
        store: TradeStore,
        dispatcher: OutboxDispatcher,
        confirmation: ConfirmationService,
        *,
        validator: Optional[TradeStateValidator] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._confirmation = confirmation
        self._validator = validator or TradeStateValidator()
        self._clock = clock

    async def request_completion(
        self,
        trade_id: uuid.UUID,
        actor_id: str,
        notes: str,
        evidence: Sequence[EvidenceIn],
    ) -> Trade:
        notes = (notes or "").strip()
        if not evidence:
            raise ValidationError("at least one evidence item is required", context={"trade_id": str(trade_id)})
        if not notes:
            raise ValidationError("completion notes are required", context={"trade_id": str(trade_id)})
        now = self._clock()

        async def _request(tx: TradeTransaction) -> TerminalOutcome:
            trade = await tx.get_trade(trade_id)
            self._validator.ensure_party(trade, actor_id)

            if trade.trade_status is TradeStatus.PENDING_CONFIRMATION:
                if trade.completion_requested_by == actor_id:
                    return TerminalOutcome(trade=trade)
                logger.info(
                    "Trade %s: completion requested by %s while %s is pending, treating as confirmation (%s evidence items)",
                    trade.id,
                    actor_id,
                    trade.completion_requested_by,
                    len(evidence),
                )
                self._append_evidence(trade, actor_id, evidence, now)
                return await self._confirmation.apply_confirm(tx, trade, actor_id, now)

            self._validator.validate_transition(
                trade, TradeStatus.PENDING_CONFIRMATION, actor_id, TransitionTrigger.REQUEST_COMPLETION
            )
            trade.status = TradeStatus.PENDING_CONFIRMATION.value
            trade.completion_requested_by = actor_id
            trade.completion_requested_at = now
            trade.completion_notes = notes
            trade.reminder_stage = 0
            trade.updated_at = now
            self._append_evidence(trade, actor_id, evidence, now)
            for change_request in trade.change_requests:
                if change_request.get("status") == "pending":
                    change_request["status"] = "addressed"
            trade.change_requests.changed()

            tx.record_transition(
                trade,
                TradeStatus.IN_PROGRESS,
                TradeStatus.PENDING_CONFIRMATION,
                trigger=TransitionTrigger.REQUEST_COMPLETION.value,
                actor_id=actor_id,
                at=now,
            )
            tx.enqueue_notification(
                trade,
                trade.counterpart_of(actor_id),
                NotificationEvent.COMPLETION_REQUESTED.value,
                event_payload(trade, actor_id=actor_id, evidence_count=len(evidence)),
                at=now,
            )
            return TerminalOutcome(trade=trade)

        outcome = await self._store.run(_request)
        if outcome.grant_id is not None:
            return await self._confirmation.after_commit(outcome)
        await self._dispatcher.dispatch_pending(trade_id=outcome.trade.id)
        return outcome.trade

    @staticmethod
    def _append_evidence(trade: Trade, actor_id: str, evidence: Sequence[EvidenceIn], now: datetime) -> None:
        for item in evidence:
            trade.evidence.append(
                {
                    **item.model_dump(mode="json"),
                    "submitted_by": actor_id,
                    "submitted_at": now.isoformat(),
                }
            )
