"""
Wholesale Service — クエリハンドラ (Read 側)

注文は明細を入れ子にして返す。注文合計 (total) は常に明細の
paidAmount の合計と一致する。
"""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .pricing import WEIGHT_DECIMALS
from .schema import order_items, orders, products, users


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    # SQLite はタイムゾーンを保存しないので UTC とみなす
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def item_to_dict(row) -> dict:
    return {
        "id": row.id,
        "orderId": row.order_id,
        "productId": row.product_id,
        "productName": row.product_name,
        "pricePerKg": row.price_per_kg,
        "paidAmount": row.paid_amount,
        "weightKg": row.weight_kg,
    }


def order_to_dict(row, items: list[dict]) -> dict:
    return {
        "id": row.id,
        "status": row.status,
        "createdAt": _iso(row.created_at),
        "completedAt": _iso(row.completed_at),
        "total": sum(item["paidAmount"] for item in items),
        "totalWeightKg": round(
            sum(item["weightKg"] for item in items), WEIGHT_DECIMALS
        ),
        "items": items,
    }


def product_to_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "pricePerKg": row.price_per_kg,
        "imageUrl": row.image_url,
    }


def user_to_dict(row) -> dict:
    return {"id": row.id, "username": row.username, "role": row.role}


# ── 注文 ─────────────────────────────────────────


async def get_order(session: AsyncSession, order_id: int) -> dict | None:
    result = await session.execute(select(orders).where(orders.c.id == order_id))
    row = result.fetchone()
    if not row:
        return None
    items = await session.execute(
        select(order_items)
        .where(order_items.c.order_id == order_id)
        .order_by(order_items.c.id)
    )
    return order_to_dict(row, [item_to_dict(i) for i in items.fetchall()])


async def list_orders(session: AsyncSession) -> list[dict]:
    """全注文を新しい順に、明細付きで返す。"""
    result = await session.execute(
        select(orders).order_by(orders.c.created_at.desc(), orders.c.id.desc())
    )
    order_rows = result.fetchall()
    items = await session.execute(select(order_items).order_by(order_items.c.id))

    by_order: dict[int, list[dict]] = {}
    for item in items.fetchall():
        by_order.setdefault(item.order_id, []).append(item_to_dict(item))

    return [order_to_dict(row, by_order.get(row.id, [])) for row in order_rows]


# ── 商品 ─────────────────────────────────────────


async def get_product(session: AsyncSession, product_id: int) -> dict | None:
    result = await session.execute(
        select(products).where(products.c.id == product_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return product_to_dict(row)


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(select(products).order_by(products.c.id))
    return [product_to_dict(row) for row in result.fetchall()]


# ── ユーザー ─────────────────────────────────────


async def get_user(session: AsyncSession, user_id: int) -> dict | None:
    result = await session.execute(select(users).where(users.c.id == user_id))
    row = result.fetchone()
    if not row:
        return None
    return user_to_dict(row)


async def get_user_row(session: AsyncSession, username: str):
    """認証用に password_hash を含む行をそのまま返す。"""
    result = await session.execute(select(users).where(users.c.username == username))
    return result.fetchone()
