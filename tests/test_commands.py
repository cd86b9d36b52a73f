"""注文・商品・ユーザーのコマンドのテスト"""

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from wholesale import commands, queries
from wholesale.errors import (
    AuthenticationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from wholesale.schema import order_items, orders

pytestmark = pytest.mark.anyio


def _item(**overrides) -> dict:
    item = {
        "productId": 1,
        "productName": "Gulla barozha",
        "pricePerKg": 4500,
        "paidAmount": 1350,
        "weightKg": 0.3,
    }
    item.update(overrides)
    return item


async def _count(session, table) -> int:
    return (await session.execute(select(func.count()).select_from(table))).scalar_one()


# ── create_order ─────────────────────────────────


async def test_create_order_persists_pending_order(session, publisher):
    order = await commands.create_order(session, publisher, [_item()])

    assert order["id"] is not None
    assert order["status"] == "pending"
    assert order["completedAt"] is None
    assert order["createdAt"] is not None
    assert order["total"] == 1350
    assert order["items"][0]["weightKg"] == 0.3
    assert order["items"][0]["orderId"] == order["id"]

    assert [e.type for e in publisher.events] == ["new_order"]
    assert publisher.events[0].order == order


async def test_create_order_accepts_snake_case_items(session, publisher):
    item = {
        "product_id": 2,
        "product_name": "Gwez sax",
        "price_per_kg": 6000,
        "paid_amount": 3000,
        "weight_kg": 0.5,
    }
    order = await commands.create_order(session, publisher, [item])

    assert order["items"][0]["productName"] == "Gwez sax"


async def test_order_total_is_sum_of_items(session, publisher):
    order = await commands.create_order(
        session,
        publisher,
        [
            _item(),
            _item(productId=2, productName="Gwez sax", pricePerKg=6000, paidAmount=6000, weightKg=1),
        ],
    )

    assert order["total"] == sum(i["paidAmount"] for i in order["items"]) == 7350
    assert order["totalWeightKg"] == 1.3
    assert [i["productName"] for i in order["items"]] == ["Gulla barozha", "Gwez sax"]


async def test_empty_basket_is_rejected_before_persisting(session, publisher):
    with pytest.raises(ValidationError):
        await commands.create_order(session, publisher, [])
    with pytest.raises(ValidationError):
        await commands.create_order(session, publisher, None)

    assert await _count(session, orders) == 0
    assert publisher.events == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"weightKg": 0},
        {"weightKg": -0.5},
        {"weightKg": None},
        {"paidAmount": -1},
        {"paidAmount": 12.5},
        {"paidAmount": "1000"},
        {"pricePerKg": 0},
        {"productName": ""},
        {"productId": None},
    ],
)
async def test_malformed_item_is_rejected(session, publisher, overrides):
    with pytest.raises(ValidationError):
        await commands.create_order(session, publisher, [_item(), _item(**overrides)])

    assert await _count(session, orders) == 0


async def test_zero_paid_amount_is_allowed(session, publisher):
    order = await commands.create_order(
        session, publisher, [_item(paidAmount=0, weightKg=0.001)]
    )
    assert order["total"] == 0


async def test_failed_item_insert_leaves_no_partial_order(session, publisher, monkeypatch):
    real_execute = session.execute

    async def failing_execute(statement, *args, **kwargs):
        if getattr(statement, "table", None) is order_items:
            raise OperationalError("INSERT INTO order_items", {}, Exception("disk full"))
        return await real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(session, "execute", failing_execute)
    with pytest.raises(PersistenceError):
        await commands.create_order(session, publisher, [_item(), _item()])
    monkeypatch.undo()

    assert await queries.list_orders(session) == []
    assert await _count(session, order_items) == 0
    assert publisher.events == []


def _failing_commit(session, monkeypatch):
    async def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk full"))

    monkeypatch.setattr(session, "commit", failing_commit)


async def test_failed_commit_publishes_nothing(session, publisher, monkeypatch):
    _failing_commit(session, monkeypatch)
    with pytest.raises(PersistenceError):
        await commands.create_order(session, publisher, [_item()])
    monkeypatch.undo()

    assert await queries.list_orders(session) == []
    assert publisher.events == []


async def test_failed_status_commit_keeps_order_pending(session, publisher, monkeypatch):
    created = await commands.create_order(session, publisher, [_item()])

    _failing_commit(session, monkeypatch)
    with pytest.raises(PersistenceError):
        await commands.update_order_status(session, publisher, created["id"], "completed")
    monkeypatch.undo()

    order = await queries.get_order(session, created["id"])
    assert order["status"] == "pending"
    assert order["completedAt"] is None
    assert [e.type for e in publisher.events] == ["new_order"]


# ── list_orders ──────────────────────────────────


async def test_list_orders_newest_first_with_items(session, publisher):
    first = await commands.create_order(session, publisher, [_item()])
    second = await commands.create_order(session, publisher, [_item(), _item()])

    listed = await queries.list_orders(session)

    assert [o["id"] for o in listed] == [second["id"], first["id"]]
    assert len(listed[0]["items"]) == 2
    assert len(listed[1]["items"]) == 1


# ── update_order_status ──────────────────────────


async def test_complete_order(session, publisher):
    created = await commands.create_order(session, publisher, [_item()])

    updated = await commands.update_order_status(
        session, publisher, created["id"], "completed"
    )

    assert updated["status"] == "completed"
    assert updated["completedAt"] is not None
    assert datetime.fromisoformat(updated["completedAt"]) >= datetime.fromisoformat(
        created["createdAt"]
    )
    assert [e.type for e in publisher.events] == ["new_order", "order_updated"]
    assert publisher.events[-1].order == updated


async def test_update_missing_order_raises_not_found(session, publisher):
    with pytest.raises(NotFoundError):
        await commands.update_order_status(session, publisher, 999, "completed")
    assert publisher.events == []


async def test_completed_order_cannot_be_reverted(session, publisher):
    created = await commands.create_order(session, publisher, [_item()])
    await commands.update_order_status(session, publisher, created["id"], "completed")

    with pytest.raises(ValidationError):
        await commands.update_order_status(session, publisher, created["id"], "pending")

    order = await queries.get_order(session, created["id"])
    assert order["status"] == "completed"


async def test_unknown_status_is_rejected(session, publisher):
    created = await commands.create_order(session, publisher, [_item()])
    with pytest.raises(ValidationError):
        await commands.update_order_status(session, publisher, created["id"], "shipped")


async def test_completing_again_restamps(session, publisher):
    created = await commands.create_order(session, publisher, [_item()])
    first = await commands.update_order_status(
        session, publisher, created["id"], "completed"
    )
    second = await commands.update_order_status(
        session, publisher, created["id"], "completed"
    )

    assert second["status"] == "completed"
    assert datetime.fromisoformat(second["completedAt"]) >= datetime.fromisoformat(
        first["completedAt"]
    )


# ── 商品 ─────────────────────────────────────────


async def test_product_crud(session):
    product = await commands.create_product(session, "Badam swer", 14000)
    assert product == {
        "id": product["id"],
        "name": "Badam swer",
        "pricePerKg": 14000,
        "imageUrl": None,
    }

    updated = await commands.update_product(
        session, product["id"], price_per_kg=15000, image_url="/uploads/badam.jpg"
    )
    assert updated["pricePerKg"] == 15000
    assert updated["imageUrl"] == "/uploads/badam.jpg"

    cleared = await commands.update_product(session, product["id"], remove_image=True)
    assert cleared["imageUrl"] is None

    await commands.delete_product(session, product["id"])
    assert await queries.list_products(session) == []


@pytest.mark.parametrize("name, price", [("", 1000), ("Gazo", 0), ("Gazo", -5)])
async def test_invalid_product_is_rejected(session, name, price):
    with pytest.raises(ValidationError):
        await commands.create_product(session, name, price)


async def test_missing_product_raises_not_found(session):
    with pytest.raises(NotFoundError):
        await commands.update_product(session, 42, name="Gazo")
    with pytest.raises(NotFoundError):
        await commands.update_product(session, 42)
    with pytest.raises(NotFoundError):
        await commands.delete_product(session, 42)


async def test_line_items_keep_snapshot_after_product_changes(session, publisher):
    product = await commands.create_product(session, "Gulla barozha", 4500)
    order = await commands.create_order(
        session, publisher, [_item(productId=product["id"])]
    )

    await commands.update_product(
        session, product["id"], name="Gulla (new)", price_per_kg=5000
    )
    await commands.delete_product(session, product["id"])

    item = (await queries.get_order(session, order["id"]))["items"][0]
    assert item["productName"] == "Gulla barozha"
    assert item["pricePerKg"] == 4500


# ── ユーザー ─────────────────────────────────────


async def test_create_and_authenticate_user(session):
    user = await commands.create_user(session, "karwan", "secret", "receiver")
    assert user == {"id": user["id"], "username": "karwan", "role": "receiver"}

    assert await commands.authenticate(session, "karwan", "secret") == user
    with pytest.raises(AuthenticationError):
        await commands.authenticate(session, "karwan", "wrong")
    with pytest.raises(AuthenticationError):
        await commands.authenticate(session, "nobody", "secret")


async def test_duplicate_username_is_rejected(session):
    await commands.create_user(session, "karwan", "secret")
    with pytest.raises(ValidationError):
        await commands.create_user(session, "karwan", "other")


async def test_unknown_role_is_rejected(session):
    with pytest.raises(ValidationError):
        await commands.create_user(session, "karwan", "secret", "owner")
