from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime
from typing import Any, Optional, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError, ProposalNotFound, TradeNotFound
from ..models import NotificationOutbox, Proposal, ProposalStatus, RewardGrant, Trade, TradeStatus, TradeTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TradeTransaction:
    """Unit of work scoped to one trade and its proposals.

    Everything added through a transaction commits together with the trade
    update, or not at all.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    def add(self, instance: Any) -> None:
        self._session.add(instance)

    async def flush(self) -> None:
        await self._session.flush()

    async def get_trade(self, trade_id: uuid.UUID) -> Trade:
        stmt = select(Trade).where(Trade.id == trade_id).with_for_update()
        result = await self._session.execute(stmt)
        trade = result.scalars().first()
        if trade is None:
            raise TradeNotFound("trade not found", context={"trade_id": str(trade_id)})
        return trade

    async def get_proposal(self, trade_id: uuid.UUID, proposal_id: uuid.UUID) -> Proposal:
        stmt = select(Proposal).where(Proposal.id == proposal_id, Proposal.trade_id == trade_id)
        result = await self._session.execute(stmt)
        proposal = result.scalars().first()
        if proposal is None:
            raise ProposalNotFound(
                "proposal not found",
                context={"trade_id": str(trade_id), "proposal_id": str(proposal_id)},
            )
        return proposal

    async def list_proposals(
        self,
        trade_id: uuid.UUID,
        *,
        status: Optional[ProposalStatus] = None,
    ) -> Sequence[Proposal]:
        stmt = select(Proposal).where(Proposal.trade_id == trade_id).order_by(Proposal.created_at)
        if status is not None:
            stmt = stmt.where(Proposal.status == status.value)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    def record_transition(
        self,
        trade: Trade,
        from_status: Optional[TradeStatus],
        to_status: TradeStatus,
        *,
        trigger: str,
        actor_id: str,
        at: datetime,
    ) -> None:
        self._session.add(
            TradeTransition(
                trade_id=trade.id,
                from_status=from_status.value if from_status else None,
                to_status=to_status.value,
                trigger=trigger,
                actor_id=actor_id,
                created_at=at,
            )
        )

    def enqueue_notification(
        self,
        trade: Trade,
        recipient_id: Optional[str],
        event_type: str,
        payload: dict[str, Any],
        *,
        at: datetime,
    ) -> None:
        if not recipient_id:
            return
        self._session.add(
            NotificationOutbox(
                trade_id=trade.id,
                recipient_id=recipient_id,
                event_type=event_type,
                payload=payload,
                created_at=at,
            )
        )

    def create_reward_grant(self, trade: Trade, *, at: datetime) -> RewardGrant:
        grant = RewardGrant(
            id=uuid.uuid4(),
            trade_id=trade.id,
            party_a_id=trade.creator_id,
            party_b_id=trade.participant_id or "",
            completion_status=trade.status,
            created_at=at,
        )
        self._session.add(grant)
        return grant


class TradeStore:
    """Transactional access to trades with compare-and-swap retries.

    Every trade row carries a version counter. A write computed against a
    stale read fails at flush time and the whole operation is re-run against
    fresh state, up to ``retry_budget`` attempts.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, retry_budget: int = 3) -> None:
        self._session_factory = session_factory
        self._retry_budget = max(1, retry_budget)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def run(self, operation: Callable[[TradeTransaction], Awaitable[T]]) -> T:
        for attempt in range(1, self._retry_budget + 1):
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        result = await operation(TradeTransaction(session))
                    return result
                except StaleDataError as exc:
                    logger.warning(
                        "Trade transaction conflict (attempt %s/%s): %s",
                        attempt,
                        self._retry_budget,
                        exc,
                    )
        raise ConcurrencyConflictError(
            "trade was modified concurrently, please retry",
            context={"attempts": self._retry_budget},
        )

    async def load_trade(self, trade_id: uuid.UUID) -> Trade:
        async with self._session_factory() as session:
            trade = await session.get(Trade, trade_id)
            if trade is None:
                raise TradeNotFound("trade not found", context={"trade_id": str(trade_id)})
            return trade

    async def load_proposals(self, trade_id: uuid.UUID) -> Sequence[Proposal]:
        async with self._session_factory() as session:
            return await TradeTransaction(session).list_proposals(trade_id)

    async def load_transitions(self, trade_id: uuid.UUID) -> Sequence[TradeTransition]:
        async with self._session_factory() as session:
            stmt = (
                select(TradeTransition)
                .where(TradeTransition.trade_id == trade_id)
                .order_by(TradeTransition.id)
            )
            result = await session.execute(stmt)
            return result.scalars().all()

    async def find_due_for_resolution(
        self,
        statuses: Iterable[TradeStatus],
        windows: Sequence[tuple[datetime, Optional[int]]],
        *,
        after: Optional[tuple[datetime, uuid.UUID]] = None,
        limit: int = 500,
    ) -> list[tuple[uuid.UUID, datetime]]:
        """Page through trades with something due, ordered by request time.

        Each window is ``(requested_before, below_stage)``: a trade matches when
        its completion request is at or before ``requested_before`` and, if
        ``below_stage`` is set, its ``reminder_stage`` is lower. ``after`` is the
        ``(completion_requested_at, id)`` of the last row of the previous page.
        """
        if not windows:
            return []
        conditions = []
        for requested_before, below_stage in windows:
            condition = Trade.completion_requested_at <= requested_before
            if below_stage is not None:
                condition = and_(condition, Trade.reminder_stage < below_stage)
            conditions.append(condition)

        stmt = select(Trade.id, Trade.completion_requested_at).where(
            Trade.status.in_([status.value for status in statuses]),
            Trade.completion_requested_at.is_not(None),
            or_(*conditions),
        )
        if after is not None:
            last_requested_at, last_id = after
            stmt = stmt.where(
                or_(
                    Trade.completion_requested_at > last_requested_at,
                    and_(Trade.completion_requested_at == last_requested_at, Trade.id > last_id),
                )
            )
        stmt = stmt.order_by(Trade.completion_requested_at, Trade.id).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [(row.id, row.completion_requested_at) for row in result.all()]
