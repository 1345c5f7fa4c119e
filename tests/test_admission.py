"""Tests for order admission."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import seed_shop
from lineshop import orders, products, shops
from lineshop.admission import (
    create_pending_order,
    make_buyer_display_id,
    start_of_day_millis,
)
from lineshop.errors import (
    DailyLimitExceeded,
    Forbidden,
    InsufficientInventory,
    InvalidQuantity,
    OutOfStock,
    ProductArchived,
    ShopClosed,
)
from lineshop.legacy import import_orders
from lineshop.models import OrderStatus


async def order_count(session, shop):
    return len(await orders.list_orders_for_shop(session, shop.shop_id))


async def test_create_pending_order_snapshot(session, open_shop):
    shop, product = open_shop

    order = await create_pending_order(
        session, shop, product, 2, "buyer-1", question_response="常温でお願いします"
    )

    assert order.status == OrderStatus.PENDING
    assert order.total == 1000
    assert order.shop_id == shop.shop_id
    assert order.buyer_user_id == "buyer-1"
    assert order.buyer_display_id == make_buyer_display_id("buyer-1")
    assert order.question_response == "常温でお願いします"
    assert order.created_at is not None and order.created_at == order.updated_at
    assert [i.to_document() for i in order.items] == [
        {"productId": product.id, "name": "クッキー", "unitPrice": 500, "quantity": 2}
    ]
    assert (await products.get_product(session, product.id)).inventory == 3


async def test_snapshot_survives_product_edit(session, open_shop):
    shop, product = open_shop
    order = await create_pending_order(session, shop, product, 1, "buyer-1")

    shop = await shops.update_shop_status(session, shop.owner_user_id, "preparing")
    await products.update_product(
        session, shop, product.id, products.ProductInput(name="新クッキー", price=800)
    )

    reloaded = await orders.get_order_for_shop(session, shop.shop_id, order.id)
    assert reloaded.items[0].name == "クッキー"
    assert reloaded.items[0].unit_price == 500
    assert reloaded.total == 500


async def test_identical_requests_create_distinct_orders(session, open_shop):
    shop, product = open_shop
    first = await create_pending_order(session, shop, product, 1, "buyer-1")
    second = await create_pending_order(session, shop, product, 1, "buyer-1")

    assert first.id != second.id
    for order in (first, second):
        assert order.total == sum(i.unit_price * i.quantity for i in order.items)


async def test_zero_quantity_creates_nothing(session, open_shop):
    shop, product = open_shop
    with pytest.raises(InvalidQuantity):
        await create_pending_order(session, shop, product, 0, "buyer-1")
    assert await order_count(session, shop) == 0


async def test_non_integer_quantity(session, open_shop):
    shop, product = open_shop
    with pytest.raises(InvalidQuantity):
        await create_pending_order(session, shop, product, 1.5, "buyer-1")


async def test_quantity_above_inventory(session, open_shop):
    shop, product = open_shop
    with pytest.raises(InsufficientInventory):
        await create_pending_order(session, shop, product, 4, "buyer-1")
    assert await order_count(session, shop) == 0


async def test_out_of_stock(session):
    shop, product = await seed_shop(session, inventory=0)
    with pytest.raises(OutOfStock):
        await create_pending_order(session, shop, product, 1, "buyer-1")


async def test_shop_must_be_open(session):
    shop, product = await seed_shop(session, open_shop=False)
    with pytest.raises(ShopClosed):
        await create_pending_order(session, shop, product, 1, "buyer-1")


async def test_product_must_belong_to_shop(session, open_shop):
    shop, _ = open_shop
    _, foreign = await seed_shop(session, owner="owner-2")
    with pytest.raises(Forbidden):
        await create_pending_order(session, shop, foreign, 1, "buyer-1")


async def test_archived_product_cannot_be_ordered(session):
    shop, product = await seed_shop(session, open_shop=False)
    await products.archive_product(session, shop, product.id)
    shop = await shops.update_shop_status(session, shop.owner_user_id, "open")
    product = await products.get_product(session, product.id)

    with pytest.raises(ProductArchived):
        await create_pending_order(session, shop, product, 1, "buyer-1")


async def test_tenth_order_of_the_day_succeeds(session, open_shop):
    shop, product = open_shop
    for _ in range(9):
        await create_pending_order(session, shop, product, 1, "buyer-1")

    tenth = await create_pending_order(session, shop, product, 1, "buyer-1")
    assert tenth.status == OrderStatus.PENDING


async def test_eleventh_order_of_the_day_is_rejected(session, open_shop):
    shop, product = open_shop
    for _ in range(10):
        await create_pending_order(session, shop, product, 1, "buyer-1")

    with pytest.raises(DailyLimitExceeded):
        await create_pending_order(session, shop, product, 1, "buyer-1")
    assert await order_count(session, shop) == 10

    other_buyer = await create_pending_order(session, shop, product, 1, "buyer-2")
    assert other_buyer.status == OrderStatus.PENDING


async def test_yesterdays_orders_do_not_count(session, open_shop):
    shop, product = open_shop
    yesterday = start_of_day_millis(timezone.utc) - 60_000
    await import_orders(
        session,
        [
            {
                "id": f"old-{i}",
                "shopId": shop.shop_id,
                "buyerUserId": "buyer-1",
                "items": [{"productId": product.id, "name": "クッキー", "unitPrice": 500, "quantity": 1}],
                "createdAt": yesterday,
            }
            for i in range(10)
        ],
    )

    order = await create_pending_order(session, shop, product, 1, "buyer-1", tz=timezone.utc)
    assert order.status == OrderStatus.PENDING


async def test_configurable_daily_limit(session, open_shop):
    shop, product = open_shop
    await create_pending_order(session, shop, product, 1, "buyer-1", daily_limit=1)
    with pytest.raises(DailyLimitExceeded):
        await create_pending_order(session, shop, product, 1, "buyer-1", daily_limit=1)


def test_start_of_day_uses_given_timezone():
    jst = timezone(timedelta(hours=9))
    # 2024-05-01 16:00 UTC is already 2024-05-02 01:00 in JST
    now = datetime(2024, 5, 1, 16, 0, tzinfo=timezone.utc)

    assert start_of_day_millis(timezone.utc, now) == int(
        datetime(2024, 5, 1, tzinfo=timezone.utc).timestamp() * 1000
    )
    assert start_of_day_millis(jst, now) == int(
        datetime(2024, 5, 2, tzinfo=jst).timestamp() * 1000
    )


def test_buyer_display_id_is_stable_and_opaque():
    display_id = make_buyer_display_id("U1234567890abcdef")
    assert display_id == make_buyer_display_id("U1234567890abcdef")
    assert display_id != make_buyer_display_id("U0000000000000000")
    assert len(display_id) == 12
    assert "U1234" not in display_id
