from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, status

from .config import get_settings
from .database import get_session_factory
from .services.lifecycle import TradeLifecycle, build_lifecycle
from .services.notifications import QueueNotificationPort
from .services.queue import QueueService
from .services.rewards import HttpRewardPort, QueueRewardPort, RewardPort
from .services.store import TradeStore


_settings = get_settings()
_queue_service = QueueService(_settings.redis_url, namespace=_settings.queue_namespace)
_store = TradeStore(get_session_factory(), retry_budget=_settings.transaction_retry_budget)


def _build_reward_port() -> RewardPort:
    if _settings.reward_service_url:
        return HttpRewardPort(
            _settings.reward_service_url,
            _settings.reward_service_token,
            timeout=_settings.http_timeout_seconds,
        )
    return QueueRewardPort(_queue_service, _settings.reward_queue_name)


_lifecycle = build_lifecycle(
    _store,
    QueueNotificationPort(_queue_service, _settings.notification_queue_name),
    _build_reward_port(),
    _settings,
)


def get_lifecycle() -> TradeLifecycle:
    return _lifecycle


def get_actor_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    actor_id = (x_user_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return actor_id


async def connect_queue() -> None:
    await _queue_service.connect()


async def close_queue() -> None:
    await _queue_service.close()
