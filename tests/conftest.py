"""共通フィクスチャ"""

import os
import tempfile
from pathlib import Path

import pytest

# wholesale.main はインポート時に環境変数を読むので先に設定する
_DB_PATH = Path(tempfile.mkdtemp(prefix="wholesale-tests-")) / "api.db"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["SEED_PRODUCTS"] = "0"
os.environ.pop("REDIS_URL", None)

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from starlette.websockets import WebSocketState  # noqa: E402

from wholesale import schema  # noqa: E402
from wholesale.main import app  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def client():
    """lifespan 付きの TestClient。テストごとに DB を作り直す。"""
    with TestClient(app) as c:
        yield c
    _DB_PATH.unlink(missing_ok=True)


def _login(client: TestClient, username: str) -> dict:
    resp = client.post(
        "/api/auth/login",
        json={"username": username, "password": f"{username}123"},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def login_as():
    """seed の既定ユーザーでログインする関数（パスワードは <username>123）"""
    return _login


@pytest.fixture
async def session(tmp_path):
    """コマンド・クエリの単体テスト用セッション"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}")
    await schema.create_all(engine)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as s:
        yield s
    await engine.dispose()


class RecordingPublisher:
    """発行されたイベントを記録するだけの publisher"""

    def __init__(self) -> None:
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def publisher():
    return RecordingPublisher()


class FakeObserver:
    """WebSocket の代わり。send_text の内容を記録する。"""

    def __init__(self, state=WebSocketState.CONNECTED, fail: bool = False) -> None:
        self.client_state = state
        self.application_state = state
        self.fail = fail
        self.sent: list[str] = []

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)


@pytest.fixture
def make_observer():
    """FakeObserver を作る関数"""
    return FakeObserver
