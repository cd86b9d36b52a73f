"""
Wholesale Service — 初期データ

起動時に既定ユーザーを作り、商品テーブルが空なら既定商品を登録する。
何度実行しても結果は同じ。
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from . import commands, queries
from .auth import ADMIN, RECEIVER, SENDER

logger = logging.getLogger(__name__)

DEFAULT_PRODUCTS = [
    ("Fstq akbary", 18500),
    ("Noky irany brzhaw", 4000),
    ("Mewzh ozbaki", 8000),
    ("Tekalay charas", 14000),
    ("Gulla barozha", 4500),
    ("Tekala taybat", 18000),
    ("Ganma shami", 4500),
    ("Muqarmsh", 4250),
    ("Kolaka kam xwe", 7000),
    ("Gwez sax", 6000),
    ("Alibaba sada", 4500),
    ("Badam swer", 14000),
    ("Fstq ahmady", 16500),
    ("Kolakay spi", 7500),
    ("Gazo sada", 15500),
]

DEFAULT_USERS = [
    ("sender", "sender123", SENDER),
    ("receiver", "receiver123", RECEIVER),
    ("admin", "admin123", ADMIN),
]


async def seed_database(session: AsyncSession, with_products: bool = True) -> None:
    for username, password, role in DEFAULT_USERS:
        if await queries.get_user_row(session, username) is None:
            await commands.create_user(session, username, password, role)
            logger.info("Created user: %s", username)

    if with_products and not await queries.list_products(session):
        for name, price in DEFAULT_PRODUCTS:
            await commands.create_product(session, name, price)
            logger.info("Created product: %s", name)

    logger.info("Database seeded")
