"""
Wholesale Service — FastAPI エントリーポイント

kg 単価で売る卸売の注文サービス。

  sender   ── POST /api/orders ──▶ ┌─────────┐ ── /ws (new_order) ──▶ receiver
                                   │ Service │
  receiver ── PATCH /api/orders ─▶ └─────────┘ ── /ws (order_updated) ▶ admin

書き込み (commands) と読み取り (queries) を分離し、
書き込みが commit された後でだけ WebSocket にイベントを流す。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Literal

import redis.asyncio as aioredis
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from starlette.middleware.sessions import SessionMiddleware

from . import commands, pricing, queries, schema, seed, stats
from .auth import ADMIN, RECEIVER, SENDER, require_role
from .broadcaster import Broadcaster
from .errors import AuthenticationError, NotFoundError, ValidationError, WholesaleError
from .events import EventPublisher
from .subscriber import run_relay

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./wholesale.db")
REDIS_URL = os.environ.get("REDIS_URL")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-key")
SEED_PRODUCTS = os.environ.get("SEED_PRODUCTS", "1") not in ("0", "false", "")
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.getLogger("wholesale").setLevel(LOG_LEVEL)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    起動時: テーブル作成、初期データ投入、Broadcaster の生成。
    REDIS_URL があればリレーをバックグラウンドタスクとして開始する。
    """
    await schema.create_all(engine)
    async with async_session() as session:
        await seed.seed_database(session, with_products=SEED_PRODUCTS)

    broadcaster = Broadcaster()
    redis_pool = (
        aioredis.from_url(REDIS_URL, decode_responses=True) if REDIS_URL else None
    )
    app.state.broadcaster = broadcaster
    app.state.publisher = EventPublisher(broadcaster, redis_pool)

    shutdown_event = asyncio.Event()
    relay_task = None
    if redis_pool is not None:
        relay_task = asyncio.create_task(
            run_relay(redis_pool, broadcaster, shutdown_event)
        )
    yield
    shutdown_event.set()
    if relay_task is not None:
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Wholesale Service", lifespan=lifespan)

app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    max_age=24 * 60 * 60,
    same_site="lax",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WholesaleError)
async def handle_domain_error(request: Request, exc: WholesaleError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ── Request Models ───────────────────────────────


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class LoginRequest(_Request):
    username: str = ""
    password: str = ""


class CreateProductRequest(_Request):
    name: str = ""
    price_per_kg: int = Field(0, alias="pricePerKg")
    image_url: str | None = Field(None, alias="imageUrl")


class UpdateProductRequest(_Request):
    name: str | None = None
    price_per_kg: int | None = Field(None, alias="pricePerKg")
    image_url: str | None = Field(None, alias="imageUrl")
    remove_image: bool = Field(False, alias="removeImage")


class QuoteRequest(_Request):
    mode: Literal["amount", "weight"]
    value: str | int | float | None = None
    product_id: int | None = Field(None, alias="productId")
    price_per_kg: float | None = Field(None, alias="pricePerKg")
    select_amount: int | None = Field(None, alias="selectAmount")


class CreateOrderRequest(_Request):
    items: Any = None


class UpdateStatusRequest(_Request):
    status: Any = None


# ── Auth ─────────────────────────────────────────


async def current_user(request: Request) -> dict:
    """セッションのユーザーを返す。無ければ AuthenticationError。"""
    user_id = request.session.get("user_id")
    if user_id is None:
        raise AuthenticationError("Not authenticated")
    async with async_session() as session:
        user = await queries.get_user(session, user_id)
    if not user:
        raise AuthenticationError("User not found")
    return user


@app.post("/api/auth/login")
async def login(req: LoginRequest, request: Request):
    async with async_session() as session:
        user = await commands.authenticate(session, req.username, req.password)
    request.session["user_id"] = user["id"]
    logger.info("User %s logged in", user["username"])
    return user


@app.post("/api/auth/logout")
async def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@app.get("/api/auth/me")
async def me(request: Request):
    return await current_user(request)


# ── Products ─────────────────────────────────────


@app.get("/api/products")
async def list_products(request: Request):
    await current_user(request)
    async with async_session() as session:
        return await queries.list_products(session)


@app.post("/api/products")
async def create_product(req: CreateProductRequest, request: Request):
    require_role(await current_user(request), SENDER, ADMIN)
    async with async_session() as session:
        return await commands.create_product(
            session, req.name, req.price_per_kg, req.image_url
        )


@app.patch("/api/products/{product_id}")
async def update_product(product_id: int, req: UpdateProductRequest, request: Request):
    require_role(await current_user(request), SENDER, ADMIN)
    async with async_session() as session:
        return await commands.update_product(
            session,
            product_id,
            name=req.name,
            price_per_kg=req.price_per_kg,
            image_url=req.image_url,
            remove_image=req.remove_image,
        )


@app.delete("/api/products/{product_id}")
async def delete_product(product_id: int, request: Request):
    require_role(await current_user(request), SENDER, ADMIN)
    async with async_session() as session:
        await commands.delete_product(session, product_id)
    return {"ok": True}


# ── Pricing ──────────────────────────────────────


@app.post("/api/pricing/quote")
async def quote(req: QuoteRequest, request: Request):
    """
    金額 / 重量の換算。確定できる場合は paidAmount と weightKg も返す。
    productId を指定すると商品の現在単価を使う。
    """
    await current_user(request)
    unit_price = req.price_per_kg
    if req.product_id is not None:
        async with async_session() as session:
            product = await queries.get_product(session, req.product_id)
        if not product:
            raise NotFoundError("Product not found")
        unit_price = product["pricePerKg"]

    if req.mode == "amount":
        result = pricing.quote_by_amount(req.value, unit_price)
    else:
        result = pricing.quote_by_weight(req.value, unit_price)
    if req.select_amount is not None:
        result = pricing.select_suggestion(result, req.select_amount)

    finalized = None
    if result.payable and result.amount > 0 and result.weight_kg > 0:
        paid_amount, weight_kg = pricing.finalize_quote(result)
        finalized = {"paidAmount": paid_amount, "weightKg": weight_kg}

    return {**result.model_dump(by_alias=True), "finalized": finalized}


# ── Orders ───────────────────────────────────────


@app.get("/api/orders")
async def list_orders(request: Request):
    """全注文（新しい順）"""
    await current_user(request)
    async with async_session() as session:
        return await queries.list_orders(session)


@app.get("/api/orders/{order_id}")
async def get_order(order_id: int, request: Request):
    await current_user(request)
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


@app.post("/api/orders")
async def create_order(req: CreateOrderRequest, request: Request):
    """注文作成 → new_order をブロードキャスト"""
    require_role(await current_user(request), SENDER, ADMIN)
    async with async_session() as session:
        return await commands.create_order(
            session, request.app.state.publisher, req.items
        )


@app.patch("/api/orders/{order_id}")
async def update_order(order_id: int, req: UpdateStatusRequest, request: Request):
    """ステータス変更 → order_updated をブロードキャスト"""
    require_role(await current_user(request), RECEIVER, ADMIN)
    if not req.status:
        raise ValidationError("Status required")
    async with async_session() as session:
        return await commands.update_order_status(
            session, request.app.state.publisher, order_id, req.status
        )


# ── Statistics ───────────────────────────────────


@app.get("/api/stats")
async def get_statistics(request: Request):
    require_role(await current_user(request), ADMIN)
    async with async_session() as session:
        return await stats.get_statistics(session)


# ── WebSocket ────────────────────────────────────


@app.websocket("/ws")
async def order_feed(websocket: WebSocket):
    """
    注文イベントの購読。クライアントからの送信は読み捨てる。
    accept より先に登録するので、accept 直後のイベントも取りこぼさない。
    """
    broadcaster: Broadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(websocket)
    try:
        await websocket.accept()
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(websocket)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "wholesale-service"}


def run() -> None:
    import uvicorn

    uvicorn.run(
        "wholesale.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
