"""
Wholesale Service — イベント定義と発行

イベントは過去に起きた事実。永続化が確定した後 (commit 後) にだけ発行する。

ワイヤ形式:
    {"type": "new_order" | "order_updated", "order": <Order>}

クライアントは未知の type を無視すること。

発行先:
  - REDIS_URL 未設定: 同一プロセスの Broadcaster に直接渡す
  - REDIS_URL 設定時: Redis Pub/Sub の order_events チャネルに publish し、
    各ワーカーの subscriber.run_relay が自分の Broadcaster に流す
"""

import logging
from typing import Any, Literal

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .broadcaster import Broadcaster

logger = logging.getLogger(__name__)

CHANNEL = "order_events"

NEW_ORDER = "new_order"
ORDER_UPDATED = "order_updated"


class OrderEvent(BaseModel):
    type: Literal["new_order", "order_updated"]
    order: dict[str, Any]

    def to_message(self) -> str:
        return self.model_dump_json()


def order_created(order: dict) -> OrderEvent:
    """注文が作成された"""
    return OrderEvent(type=NEW_ORDER, order=order)


def order_status_changed(order: dict) -> OrderEvent:
    """注文のステータスが変わった"""
    return OrderEvent(type=ORDER_UPDATED, order=order)


class EventPublisher:
    """イベントをローカルの Broadcaster か Redis に流す。"""

    def __init__(
        self,
        broadcaster: Broadcaster,
        redis: aioredis.Redis | None = None,
        channel: str = CHANNEL,
    ) -> None:
        self.broadcaster = broadcaster
        self.redis = redis
        self.channel = channel

    async def publish(self, event: OrderEvent) -> None:
        """
        配送保証なし。失敗してもログに残すだけで呼び出し元には伝えない
        （注文自体はすでに確定しているため）。
        """
        message = event.to_message()
        if self.redis is None:
            delivered = await self.broadcaster.broadcast(message)
            logger.info("Broadcast %s to %d observer(s)", event.type, delivered)
            return
        try:
            await self.redis.publish(self.channel, message)
            logger.info("Published %s to %s", event.type, self.channel)
        except RedisError:
            logger.exception("Failed to publish %s", event.type)
