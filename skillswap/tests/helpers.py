import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select

from skillswap.lifecycle.models import NotificationOutbox, RewardGrant
from skillswap.lifecycle.schemas.trade import EvidenceIn, ProposalCreate, TradeCreate
from skillswap.lifecycle.services.lifecycle import TradeLifecycle
from skillswap.lifecycle.services.notifications import NotificationEvent

CREATOR = "user-1"
PROPOSER = "user-2"
OTHER_PROPOSER = "user-3"
OUTSIDER = "user-9"

DAY_ZERO = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = DAY_ZERO) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeNotificationPort:
    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationEvent, dict[str, Any]]] = []
        self.fail_with: Optional[Exception] = None

    async def notify(self, recipient_id: str, event_type: NotificationEvent, payload: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((recipient_id, event_type, payload))

    def events(self, event_type: NotificationEvent) -> list[tuple[str, dict[str, Any]]]:
        return [(recipient, payload) for recipient, event, payload in self.sent if event is event_type]


class FakeRewardPort:
    def __init__(self) -> None:
        self.calls: list[tuple[uuid.UUID, str, str]] = []
        self.fail_for: set[uuid.UUID] = set()

    async def award_completion(self, trade_id: uuid.UUID, party_a_id: str, party_b_id: str) -> None:
        self.calls.append((trade_id, party_a_id, party_b_id))
        if trade_id in self.fail_for:
            raise RuntimeError("reward service unavailable")


def evidence(title: str = "Recorded lesson") -> EvidenceIn:
    return EvidenceIn(type="video", url="https://example.com/lesson.mp4", title=title, description="Session recording")


async def open_trade(lifecycle: TradeLifecycle, creator_id: str = CREATOR):
    return await lifecycle.trades.create_trade(
        creator_id,
        TradeCreate(
            title="Guitar lessons for Spanish tutoring",
            description="Four one-hour sessions each",
            skills_offered=[{"name": "Guitar", "level": "advanced"}],
            skills_wanted=[{"name": "Spanish", "level": "intermediate"}],
        ),
    )


async def in_progress_trade(lifecycle: TradeLifecycle):
    trade = await open_trade(lifecycle)
    proposal = await lifecycle.proposals.submit(trade.id, PROPOSER, ProposalCreate(message="Happy to swap"))
    return await lifecycle.proposals.accept(trade.id, proposal.id, CREATOR)


async def pending_trade(lifecycle: TradeLifecycle, requester: str = PROPOSER):
    trade = await in_progress_trade(lifecycle)
    return await lifecycle.completion.request_completion(trade.id, requester, "All sessions delivered", [evidence()])


async def fetch_grants(session_factory) -> list[RewardGrant]:
    async with session_factory() as session:
        result = await session.execute(select(RewardGrant))
        return list(result.scalars().all())


async def fetch_outbox(session_factory) -> list[NotificationOutbox]:
    async with session_factory() as session:
        result = await session.execute(select(NotificationOutbox).order_by(NotificationOutbox.created_at))
        return list(result.scalars().all())
