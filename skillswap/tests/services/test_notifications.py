import json
from datetime import timedelta

import fakeredis.aioredis
import pytest
import pytest_asyncio
from sqlalchemy.dialects import postgresql

from skillswap.lifecycle.services.notifications import NotificationEvent, OutboxDispatcher, QueueNotificationPort
from skillswap.lifecycle.services.queue import QueueService
from skillswap.tests.helpers import CREATOR, PROPOSER, fetch_outbox, pending_trade


@pytest_asyncio.fixture
async def queue():
    service = QueueService(
        "redis://localhost:6379/0",
        namespace="test",
        redis_client=fakeredis.aioredis.FakeRedis(decode_responses=True),
    )
    try:
        yield service
    finally:
        await service.close()


@pytest.mark.asyncio
async def test_failed_delivery_stays_in_outbox_until_retried(lifecycle, notifications, session_factory):
    notifications.fail_with = RuntimeError("push gateway down")
    trade = await pending_trade(lifecycle)

    undelivered = [row for row in await fetch_outbox(session_factory) if row.delivered_at is None]
    assert sorted(row.event_type for row in undelivered) == [
        NotificationEvent.COMPLETION_REQUESTED.value,
        NotificationEvent.PROPOSAL_ACCEPTED.value,
    ]
    assert all(row.last_error == "push gateway down" for row in undelivered)

    notifications.fail_with = None
    delivered = await lifecycle.dispatcher.dispatch_pending(trade_id=trade.id)

    assert delivered == 2
    assert [recipient for recipient, _ in notifications.events(NotificationEvent.COMPLETION_REQUESTED)] == [CREATOR]
    rows = await fetch_outbox(session_factory)
    assert all(row.delivered_at is not None and row.last_error is None for row in rows)


@pytest.mark.asyncio
async def test_outbox_gives_up_after_max_attempts(lifecycle, notifications, session_factory, clock):
    notifications.fail_with = RuntimeError("unreachable")
    await pending_trade(lifecycle)
    dispatcher = OutboxDispatcher(session_factory, notifications, max_attempts=2, clock=clock)

    assert await dispatcher.dispatch_pending() == 0
    assert await dispatcher.dispatch_pending() == 0

    rows = await fetch_outbox(session_factory)
    assert len(rows) == 2
    assert all(row.attempts == 2 and row.delivered_at is None for row in rows)


@pytest.mark.asyncio
async def test_queue_port_pushes_json_jobs(queue):
    await queue.connect()
    port = QueueNotificationPort(queue, "notifications:dispatch")

    await port.notify("user-1", NotificationEvent.REMINDER_SENT, {"trade_id": "abc", "reminder_stage": 1})

    raw = await queue.lrange(queue.queue_key("notifications:dispatch"))
    assert len(raw) == 1
    job = json.loads(raw[0])
    assert job["queue"] == "notifications:dispatch"
    assert job["payload"] == {
        "recipient_id": "user-1",
        "event_type": "reminder_sent",
        "payload": {"trade_id": "abc", "reminder_stage": 1},
    }


@pytest.mark.asyncio
async def test_queue_requires_connection():
    service = QueueService("redis://localhost:6379/0")
    with pytest.raises(RuntimeError):
        await service.enqueue("notifications:dispatch", {})


@pytest.mark.asyncio
async def test_delivered_rows_are_pruned_after_retention(lifecycle, notifications, session_factory, clock):
    trade = await pending_trade(lifecycle)
    notifications.fail_with = RuntimeError("push gateway down")
    await lifecycle.confirmation.request_changes(trade.id, CREATOR, "Need the recording")

    assert await lifecycle.dispatcher.prune_delivered(clock.now + timedelta(days=29)) == 0
    assert await lifecycle.dispatcher.prune_delivered(clock.now + timedelta(days=31)) == 2

    (remaining,) = await fetch_outbox(session_factory)
    assert remaining.delivered_at is None
    assert remaining.recipient_id == PROPOSER
    assert remaining.event_type == NotificationEvent.COMPLETION_CHANGES_REQUESTED.value


@pytest.mark.asyncio
async def test_pending_rows_are_claimed_with_skip_locked(lifecycle):
    sql = str(lifecycle.dispatcher.pending_statement().compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE SKIP LOCKED" in sql
