"""Legal trade transitions and actor authorization.

Every mutating operation asks :class:`TradeStateValidator` before it writes.
The graph, as (from, to) -> trigger:

    open                 -> in_progress           accept_proposal  (creator)
    in_progress          -> pending_confirmation  request_completion
    pending_confirmation -> completed             confirm          (not the requester)
    pending_confirmation -> in_progress           request_changes  (not the requester)
    in_progress          -> auto_completed        auto_resolve     (scheduler)
    pending_confirmation -> auto_completed        auto_resolve     (scheduler)
    open | in_progress   -> cancelled             cancel           (creator)
"""

from __future__ import annotations

import enum
from typing import Optional

from ..errors import AlreadyTerminalError, AuthorizationError, InvalidStateError
from ..models import Trade, TradeStatus

SYSTEM_ACTOR = "system:auto-resolution"


class TransitionTrigger(str, enum.Enum):
    ACCEPT_PROPOSAL = "accept_proposal"
    REQUEST_COMPLETION = "request_completion"
    CONFIRM = "confirm"
    REQUEST_CHANGES = "request_changes"
    AUTO_RESOLVE = "auto_resolve"
    CANCEL = "cancel"


TRANSITIONS: dict[tuple[TradeStatus, TradeStatus], TransitionTrigger] = {
    (TradeStatus.OPEN, TradeStatus.IN_PROGRESS): TransitionTrigger.ACCEPT_PROPOSAL,
    (TradeStatus.IN_PROGRESS, TradeStatus.PENDING_CONFIRMATION): TransitionTrigger.REQUEST_COMPLETION,
    (TradeStatus.PENDING_CONFIRMATION, TradeStatus.COMPLETED): TransitionTrigger.CONFIRM,
    (TradeStatus.PENDING_CONFIRMATION, TradeStatus.IN_PROGRESS): TransitionTrigger.REQUEST_CHANGES,
    (TradeStatus.IN_PROGRESS, TradeStatus.AUTO_COMPLETED): TransitionTrigger.AUTO_RESOLVE,
    (TradeStatus.PENDING_CONFIRMATION, TradeStatus.AUTO_COMPLETED): TransitionTrigger.AUTO_RESOLVE,
    (TradeStatus.OPEN, TradeStatus.CANCELLED): TransitionTrigger.CANCEL,
    (TradeStatus.IN_PROGRESS, TradeStatus.CANCELLED): TransitionTrigger.CANCEL,
}

_CREATOR_ONLY = frozenset({TransitionTrigger.ACCEPT_PROPOSAL, TransitionTrigger.CANCEL})
_COUNTERPART_ONLY = frozenset({TransitionTrigger.CONFIRM, TransitionTrigger.REQUEST_CHANGES})


def is_legal(current: TradeStatus, requested: TradeStatus) -> bool:
    return (current, requested) in TRANSITIONS


class TradeStateValidator:
    """Single source of truth for legal transitions and who may drive them."""

    def ensure_party(self, trade: Trade, actor_id: str) -> None:
        if actor_id not in trade.parties():
            raise AuthorizationError(
                "only the trade creator or participant may do this",
                context={"trade_id": str(trade.id), "actor_id": actor_id},
            )

    def ensure_creator(self, trade: Trade, actor_id: str) -> None:
        if actor_id != trade.creator_id:
            raise AuthorizationError(
                "only the trade creator may do this",
                context={"trade_id": str(trade.id), "actor_id": actor_id},
            )

    def ensure_not_terminal(self, trade: Trade) -> None:
        if trade.trade_status.is_terminal:
            raise AlreadyTerminalError(
                f"trade is already {trade.status}",
                context={"trade_id": str(trade.id), "status": trade.status},
            )

    def validate_transition(
        self,
        trade: Trade,
        requested: TradeStatus,
        actor_id: str,
        trigger: TransitionTrigger,
    ) -> None:
        current = trade.trade_status
        self.ensure_not_terminal(trade)
        self._authorize(trade, actor_id, trigger)

        expected: Optional[TransitionTrigger] = TRANSITIONS.get((current, requested))
        if expected is None or expected is not trigger:
            raise InvalidStateError(
                f"cannot move trade from {current.value} to {requested.value} via {trigger.value}",
                context={"trade_id": str(trade.id), "status": current.value, "requested": requested.value},
            )

    def _authorize(self, trade: Trade, actor_id: str, trigger: TransitionTrigger) -> None:
        if trigger is TransitionTrigger.AUTO_RESOLVE:
            if actor_id != SYSTEM_ACTOR:
                raise AuthorizationError(
                    "auto-resolution is reserved for the scheduler",
                    context={"trade_id": str(trade.id), "actor_id": actor_id},
                )
            return

        if trigger in _CREATOR_ONLY:
            self.ensure_creator(trade, actor_id)
            return

        self.ensure_party(trade, actor_id)
        if trigger in _COUNTERPART_ONLY and actor_id == trade.completion_requested_by:
            raise AuthorizationError(
                "cannot confirm or reject your own completion request",
                context={"trade_id": str(trade.id), "actor_id": actor_id},
            )
