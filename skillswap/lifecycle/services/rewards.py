from __future__ import annotations

import uuid
from typing import Optional, Protocol

import httpx

from .queue import QueueService


class RewardPort(Protocol):
    async def award_completion(self, trade_id: uuid.UUID, party_a_id: str, party_b_id: str) -> None:
        ...


class QueueRewardPort:
    """Publish completion awards for the gamification worker."""

    def __init__(self, queue: QueueService, queue_name: str) -> None:
        self._queue = queue
        self._queue_name = queue_name

    async def award_completion(self, trade_id: uuid.UUID, party_a_id: str, party_b_id: str) -> None:
        await self._queue.enqueue(
            self._queue_name,
            {
                "trade_id": str(trade_id),
                "party_a_id": party_a_id,
                "party_b_id": party_b_id,
            },
            job_id=trade_id,
        )


class HttpRewardPort:
    """Async client for the gamification service's completion award endpoint."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 15,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip('/')
        self._token = token or ''
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def award_completion(self, trade_id: uuid.UUID, party_a_id: str, party_b_id: str) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self._base_url}/v1/awards/trade-completion",
                headers={**self._headers(), "Idempotency-Key": str(trade_id)},
                json={
                    "trade_id": str(trade_id),
                    "party_a_id": party_a_id,
                    "party_b_id": party_b_id,
                },
            )
            response.raise_for_status()
