from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..config import Settings
from ..models import utcnow
from .completion import CompletionService
from .confirmation import ConfirmationService
from .notifications import NotificationPort, OutboxDispatcher
from .proposals import ProposalService
from .rewards import RewardPort
from .scheduler import AutoResolutionScheduler
from .state_machine import TradeStateValidator
from .store import TradeStore
from .trades import TradeService


@dataclass
class TradeLifecycle:
    """The handlers exposed to the calling application layer, wired to one store."""

    store: TradeStore
    dispatcher: OutboxDispatcher
    trades: TradeService
    proposals: ProposalService
    completion: CompletionService
    confirmation: ConfirmationService
    scheduler: AutoResolutionScheduler


def build_lifecycle(
    store: TradeStore,
    notifications: NotificationPort,
    rewards: RewardPort,
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> TradeLifecycle:
    validator = TradeStateValidator()
    dispatcher = OutboxDispatcher(
        store.session_factory,
        notifications,
        max_attempts=settings.outbox_max_attempts,
        batch_size=settings.outbox_batch_size,
        retention=timedelta(days=settings.outbox_retention_days),
        clock=clock,
    )
    confirmation = ConfirmationService(store, dispatcher, rewards, validator=validator, clock=clock)
    return TradeLifecycle(
        store=store,
        dispatcher=dispatcher,
        trades=TradeService(store, dispatcher, validator=validator, clock=clock),
        proposals=ProposalService(store, dispatcher, validator=validator, clock=clock),
        completion=CompletionService(store, dispatcher, confirmation, validator=validator, clock=clock),
        confirmation=confirmation,
        scheduler=AutoResolutionScheduler(
            store,
            confirmation,
            dispatcher,
            reminder_after=[timedelta(days=days) for days in settings.reminder_after_days],
            auto_complete_after=timedelta(days=settings.auto_complete_after_days),
            batch_size=settings.scheduler_batch_size,
            clock=clock,
        ),
    )
