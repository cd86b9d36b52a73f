"""
Wholesale Service — Redis Pub/Sub リレー

複数ワーカーで動かす場合、WebSocket はワーカーごとに別の Broadcaster に
つながっている。どのワーカーで注文が作られても全クライアントに届くよう、
order_events チャネルを購読してローカルの Broadcaster に転送する。

注意: Redis Pub/Sub は fire-and-forget 方式。
購読していない間のイベントは失われる（クライアントは再取得で同期する）。
"""

import asyncio
import logging

import redis.asyncio as aioredis

from .broadcaster import Broadcaster
from .events import CHANNEL, OrderEvent

logger = logging.getLogger(__name__)


async def run_relay(
    redis_conn: aioredis.Redis,
    broadcaster: Broadcaster,
    shutdown_event: asyncio.Event,
    channel: str = CHANNEL,
) -> None:
    """
    channel を購読し、受信したイベントを broadcaster に流す。
    shutdown_event がセットされるまで待機し続ける。
    """
    pubsub = redis_conn.pubsub()
    await pubsub.subscribe(channel)
    logger.info("Subscribed to %s channel", channel)

    try:
        while not shutdown_event.is_set():
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message and message["type"] == "message":
                try:
                    event = OrderEvent.model_validate_json(message["data"])
                    delivered = await broadcaster.broadcast(event.to_message())
                    logger.info(
                        "Relayed %s to %d observer(s)", event.type, delivered
                    )
                except Exception:
                    logger.exception("Failed to relay event")
            else:
                await asyncio.sleep(0.1)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
