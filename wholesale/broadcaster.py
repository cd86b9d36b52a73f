"""
Wholesale Service — 通知ブロードキャスター

接続中の WebSocket (observer) の集合を保持し、注文イベントを全員に送る。

  ┌────────┐  POST /api/orders   ┌──────────┐  new_order      ┌──────────┐
  │ Sender │ ──────────────────▶ │ Service  │ ──────────────▶ │ Receiver │
  └────────┘                     │          │ ──────────────▶ │ Admin    │
                                 └──────────┘   (WebSocket)   └──────────┘

fire-and-forget / at-most-once。キューイングも再送もしない。
再接続したクライアントは GET /api/orders で全件を取り直す。

集合はアプリごとに 1 つ（テストではテストごとに 1 つ）作って注入する。
connect/disconnect と broadcast が競合しうるので asyncio.Lock で守り、
broadcast はスナップショットに対して送信する。
"""

import asyncio
import logging
from typing import Protocol

from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class Observer(Protocol):
    client_state: WebSocketState
    application_state: WebSocketState

    async def send_text(self, data: str) -> None: ...


class Broadcaster:
    def __init__(self) -> None:
        self._observers: set[Observer] = set()
        self._lock = asyncio.Lock()

    async def connect(self, observer: Observer) -> None:
        async with self._lock:
            self._observers.add(observer)
        logger.info("Observer connected (total=%d)", len(self._observers))

    async def disconnect(self, observer: Observer) -> None:
        async with self._lock:
            self._observers.discard(observer)
        logger.info("Observer disconnected (total=%d)", len(self._observers))

    async def count(self) -> int:
        async with self._lock:
            return len(self._observers)

    async def broadcast(self, message: str) -> int:
        """
        OPEN 状態の observer 全員に message を送る。

        準備ができていない observer は黙ってスキップし、
        送信に失敗した observer は集合から外す。送れた数を返す。
        """
        async with self._lock:
            snapshot = list(self._observers)

        delivered = 0
        for observer in snapshot:
            if not _is_open(observer):
                continue
            try:
                await observer.send_text(message)
                delivered += 1
            except Exception:
                logger.warning("Dropping observer after failed send", exc_info=True)
                await self.disconnect(observer)
        return delivered


def _is_open(observer: Observer) -> bool:
    return (
        observer.client_state == WebSocketState.CONNECTED
        and observer.application_state == WebSocketState.CONNECTED
    )
