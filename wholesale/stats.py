"""
Wholesale Service — 統計クエリ (admin ダッシュボード)

全注文・全明細を対象に集計する。
商品別の集計は明細にスナップショットされた商品名でまとめるため、
削除済みや改名前の商品も当時の名前で残る。
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import COMPLETED, PENDING
from .pricing import WEIGHT_DECIMALS
from .schema import order_items, orders, products


async def list_product_sales(session: AsyncSession) -> list[dict]:
    """商品別売上（金額の多い順）"""
    amount = func.sum(order_items.c.paid_amount).label("total_amount")
    result = await session.execute(
        select(
            order_items.c.product_name,
            func.sum(order_items.c.weight_kg).label("total_weight_kg"),
            amount,
            func.count(order_items.c.id).label("item_count"),
        )
        .group_by(order_items.c.product_name)
        .order_by(amount.desc(), order_items.c.product_name)
    )
    return [
        {
            "productName": row.product_name,
            "totalWeightKg": round(float(row.total_weight_kg), WEIGHT_DECIMALS),
            "totalAmount": int(row.total_amount),
            "count": row.item_count,
        }
        for row in result.fetchall()
    ]


async def get_statistics(session: AsyncSession) -> dict:
    """ダッシュボード概要"""
    totals = (
        await session.execute(
            select(
                func.coalesce(func.sum(order_items.c.paid_amount), 0),
                func.coalesce(func.sum(order_items.c.weight_kg), 0.0),
            )
        )
    ).one()
    status_counts = dict(
        (
            await session.execute(
                select(orders.c.status, func.count(orders.c.id)).group_by(
                    orders.c.status
                )
            )
        ).all()
    )
    product_count = (
        await session.execute(select(func.count(products.c.id)))
    ).scalar_one()

    return {
        "totalRevenue": int(totals[0]),
        "totalWeightKg": round(float(totals[1]), WEIGHT_DECIMALS),
        "totalOrders": sum(status_counts.values()),
        "pendingOrders": status_counts.get(PENDING, 0),
        "completedOrders": status_counts.get(COMPLETED, 0),
        "totalProducts": product_count,
        "productSales": await list_product_sales(session),
    }
