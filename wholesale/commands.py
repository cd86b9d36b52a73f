"""
Wholesale Service — コマンドハンドラ (Write 側)

コマンドは状態を変更する操作。
  1. 入力を検証する（ストレージに触る前に弾く）
  2. 1 トランザクションで書き込み、commit する
  3. commit が成功した後でだけイベントを発行する

書き込みに失敗した場合は rollback して PersistenceError を送出する。
明細の一部だけが見える注文は決して残らない。
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import events, queries
from .aggregate import PENDING, STATUSES, OrderAggregate
from .auth import ROLES, SENDER, hash_password, verify_password
from .errors import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .events import EventPublisher
from .pricing import reconciles
from .schema import order_items, orders, products, users

logger = logging.getLogger(__name__)


async def _commit(session: AsyncSession, what: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError(f"Could not save {what}") from e


# ── 入力検証 ─────────────────────────────────────


def _field(raw: dict, snake: str, camel: str):
    """snake_case / camelCase どちらのキーでも受け付ける。"""
    if snake in raw:
        return raw[snake]
    return raw.get(camel)


def _as_int(value, name: str, index: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Item {index}: {name} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"Item {index}: {name} must be a whole number")
    return int(value)


def validate_item(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"Item {index}: must be an object")

    product_name = _field(raw, "product_name", "productName")
    if not isinstance(product_name, str) or not product_name.strip():
        raise ValidationError(f"Item {index}: productName is required")

    product_id = _as_int(_field(raw, "product_id", "productId"), "productId", index)

    price = _as_int(_field(raw, "price_per_kg", "pricePerKg"), "pricePerKg", index)
    if price <= 0:
        raise ValidationError(f"Item {index}: pricePerKg must be positive")

    paid = _as_int(_field(raw, "paid_amount", "paidAmount"), "paidAmount", index)
    if paid < 0:
        raise ValidationError(f"Item {index}: paidAmount must not be negative")

    weight = _field(raw, "weight_kg", "weightKg")
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        raise ValidationError(f"Item {index}: weightKg must be a number")
    if weight <= 0:
        raise ValidationError(f"Item {index}: weightKg must be positive")

    return {
        "product_id": product_id,
        "product_name": product_name.strip(),
        "price_per_kg": price,
        "paid_amount": paid,
        "weight_kg": float(weight),
    }


def validate_basket(items) -> list[dict]:
    if not items or not isinstance(items, list):
        raise ValidationError("Items required")
    return [validate_item(raw, i) for i, raw in enumerate(items)]


# ── 注文 ─────────────────────────────────────────


async def create_order(
    session: AsyncSession,
    publisher: EventPublisher,
    items: list,
) -> dict:
    """
    注文作成コマンド

    1. バスケットを検証（空・不正ならここで ValidationError）
    2. 注文ヘッダと全明細を 1 トランザクションで書き込む
    3. commit 後に new_order イベントを発行
    """
    lines = validate_basket(items)
    for line in lines:
        if not reconciles(line["paid_amount"], line["weight_kg"], line["price_per_kg"]):
            logger.warning(
                "Paid amount %d does not match %.3f kg of %s at %d/kg",
                line["paid_amount"],
                line["weight_kg"],
                line["product_name"],
                line["price_per_kg"],
            )

    now = datetime.now(timezone.utc)
    try:
        result = await session.execute(
            insert(orders).values(status=PENDING, created_at=now)
        )
        order_id = result.inserted_primary_key[0]
        await session.execute(
            insert(order_items),
            [{**line, "order_id": order_id} for line in lines],
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not save order") from e
    await _commit(session, "order")

    order = await queries.get_order(session, order_id)
    logger.info("Created order %s with %d item(s)", order_id, len(lines))
    await publisher.publish(events.order_created(order))
    return order


async def update_order_status(
    session: AsyncSession,
    publisher: EventPublisher,
    order_id: int,
    status: str,
) -> dict:
    """
    ステータス変更コマンド

    現状意味を持つのは completed だけ。completed_at を現在時刻で刻む。
    """
    if status not in STATUSES:
        raise ValidationError(f"Unknown order status: {status}")

    result = await session.execute(select(orders).where(orders.c.id == order_id))
    row = result.fetchone()
    if not row:
        raise NotFoundError("Order not found")

    agg = OrderAggregate.from_row(row)
    agg.change_status(status, datetime.now(timezone.utc))

    try:
        await session.execute(
            update(orders)
            .where(orders.c.id == order_id)
            .values(status=agg.status, completed_at=agg.completed_at)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not update order") from e
    await _commit(session, "order")

    order = await queries.get_order(session, order_id)
    logger.info("Order %s is now %s", order_id, agg.status)
    await publisher.publish(events.order_status_changed(order))
    return order


# ── 商品 ─────────────────────────────────────────


def _validate_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")
    return name.strip()


def _validate_price(price) -> int:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise ValidationError("Price must be a number")
    if isinstance(price, float) and not price.is_integer():
        raise ValidationError("Price must be a whole number")
    if price <= 0:
        raise ValidationError("Price must be positive")
    return int(price)


async def create_product(
    session: AsyncSession,
    name: str,
    price_per_kg: int,
    image_url: str | None = None,
) -> dict:
    values = {
        "name": _validate_name(name),
        "price_per_kg": _validate_price(price_per_kg),
        "image_url": image_url,
    }
    try:
        result = await session.execute(insert(products).values(**values))
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not save product") from e
    await _commit(session, "product")
    product_id = result.inserted_primary_key[0]
    logger.info("Created product %s (%s)", product_id, values["name"])
    return await queries.get_product(session, product_id)


async def update_product(
    session: AsyncSession,
    product_id: int,
    name: str | None = None,
    price_per_kg: int | None = None,
    image_url: str | None = None,
    remove_image: bool = False,
) -> dict:
    """
    部分更新。過去の注文明細はスナップショットなので変わらない。
    """
    values: dict = {}
    if name is not None:
        values["name"] = _validate_name(name)
    if price_per_kg is not None:
        values["price_per_kg"] = _validate_price(price_per_kg)
    if image_url is not None:
        values["image_url"] = image_url
    if remove_image:
        values["image_url"] = None

    if not values:
        product = await queries.get_product(session, product_id)
        if not product:
            raise NotFoundError("Product not found")
        return product

    try:
        result = await session.execute(
            update(products).where(products.c.id == product_id).values(**values)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not update product") from e
    if result.rowcount == 0:
        await session.rollback()
        raise NotFoundError("Product not found")
    await _commit(session, "product")
    return await queries.get_product(session, product_id)


async def delete_product(session: AsyncSession, product_id: int) -> None:
    """商品を削除する。注文明細へのカスケードはしない。"""
    try:
        result = await session.execute(
            delete(products).where(products.c.id == product_id)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not delete product") from e
    if result.rowcount == 0:
        await session.rollback()
        raise NotFoundError("Product not found")
    await _commit(session, "product")
    logger.info("Deleted product %s", product_id)


# ── ユーザー ─────────────────────────────────────


async def create_user(
    session: AsyncSession,
    username: str,
    password: str,
    role: str = SENDER,
) -> dict:
    if not username or not password:
        raise ValidationError("Username and password required")
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    try:
        result = await session.execute(
            insert(users).values(
                username=username,
                password_hash=hash_password(password),
                role=role,
            )
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ValidationError(f"Username '{username}' already exists") from e
    except SQLAlchemyError as e:
        await session.rollback()
        raise PersistenceError("Could not save user") from e
    return await queries.get_user(session, result.inserted_primary_key[0])


async def authenticate(session: AsyncSession, username: str, password: str) -> dict:
    if not username or not password:
        raise ValidationError("Username and password required")
    row = await queries.get_user_row(session, username)
    if not row or not verify_password(password, row.password_hash):
        raise AuthenticationError("Invalid credentials")
    return queries.user_to_dict(row)
