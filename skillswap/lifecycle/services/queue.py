from __future__ import annotations

import json
import time
import uuid
from datetime import date, datetime
from typing import Any, Optional

from redis.asyncio import Redis


class QueueService:
    """Redis list queue shared with the notification and reward workers."""

    def __init__(self, redis_url: str, namespace: str = "swap", *, redis_client: Optional[Redis] = None) -> None:
        self._redis_url = redis_url
        self._namespace = namespace
        self._redis: Optional[Redis] = redis_client

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = Redis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)

    async def close(self) -> None:
        if self._redis is not None:
            close = getattr(self._redis, "aclose", None)
            if callable(close):
                await close()
            else:
                await self._redis.close()
            self._redis = None

    def queue_key(self, queue_name: str) -> str:
        return f"{self._namespace}:queue:{queue_name}"

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("QueueService is not connected")
        return self._redis

    @staticmethod
    def _json_dumps(payload: Any) -> str:
        def _default(obj: Any) -> str:
            if isinstance(obj, (datetime, date)):
                return obj.isoformat()
            if isinstance(obj, uuid.UUID):
                return str(obj)
            raise TypeError(f"Object of type {type(obj)!r} is not JSON serializable")

        return json.dumps(payload, default=_default)

    async def enqueue(self, queue_name: str, payload: dict[str, Any], *, job_id: Optional[uuid.UUID] = None) -> uuid.UUID:
        redis = self._require_redis()
        job_uuid = job_id or uuid.uuid4()
        job = {
            "id": str(job_uuid),
            "queue": queue_name,
            "payload": payload,
            "enqueued_at": int(time.time()),
        }
        await redis.rpush(self.queue_key(queue_name), self._json_dumps(job))
        return job_uuid

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[str]:
        redis = self._require_redis()
        return await redis.lrange(key, start, stop)
