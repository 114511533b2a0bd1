import json
import uuid

import fakeredis.aioredis
import httpx
import pytest

from skillswap.lifecycle.services.queue import QueueService
from skillswap.lifecycle.services.rewards import HttpRewardPort, QueueRewardPort


@pytest.mark.asyncio
async def test_http_port_posts_award_with_idempotency_key():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"status": "queued"})

    trade_id = uuid.uuid4()
    port = HttpRewardPort("https://rewards.local/", token="secret", transport=httpx.MockTransport(handler))

    await port.award_completion(trade_id, "user-1", "user-2")

    (request,) = seen
    assert str(request.url) == "https://rewards.local/v1/awards/trade-completion"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Idempotency-Key"] == str(trade_id)
    assert json.loads(request.content) == {
        "trade_id": str(trade_id),
        "party_a_id": "user-1",
        "party_b_id": "user-2",
    }


@pytest.mark.asyncio
async def test_http_port_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"detail": "down"}))
    port = HttpRewardPort("https://rewards.local", transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        await port.award_completion(uuid.uuid4(), "user-1", "user-2")


@pytest.mark.asyncio
async def test_queue_port_uses_trade_id_as_job_id():
    queue = QueueService(
        "redis://localhost:6379/0",
        redis_client=fakeredis.aioredis.FakeRedis(decode_responses=True),
    )
    port = QueueRewardPort(queue, "rewards:award")
    trade_id = uuid.uuid4()

    await port.award_completion(trade_id, "user-1", "user-2")

    (raw,) = await queue.lrange(queue.queue_key("rewards:award"))
    job = json.loads(raw)
    assert job["id"] == str(trade_id)
    assert job["payload"]["party_b_id"] == "user-2"
    await queue.close()
