"""Tests for shops and products."""

import pytest

from conftest import seed_shop
from lineshop import products, shops
from lineshop.errors import (
    Forbidden,
    InvalidInput,
    InvalidQuantity,
    ProductNotFound,
    ShopClosed,
    ShopNotFound,
)
from lineshop.models import ShopStatus
from lineshop.products import ProductInput


async def test_get_or_create_shop_is_idempotent(session):
    first = await shops.get_or_create_shop(session, "owner-1")
    second = await shops.get_or_create_shop(session, "owner-1")

    assert first.shop_id == second.shop_id
    assert first.status == ShopStatus.PREPARING
    assert first.name == shops.DEFAULT_SHOP_NAME
    assert len(first.shop_id) == shops.SHOP_ID_LENGTH
    assert set(first.shop_id) <= set(shops.SHOP_ID_ALPHABET)


async def test_shop_lookup(session):
    shop = await shops.get_or_create_shop(session, "owner-1")
    assert (await shops.get_shop_by_public_id(session, shop.shop_id)).owner_user_id == "owner-1"
    assert await shops.get_shop_by_public_id(session, "zzzzzz") is None
    with pytest.raises(ShopNotFound):
        await shops.get_shop(session, "nobody")


async def test_update_shop_trims_and_validates(session):
    await shops.get_or_create_shop(session, "owner-1")
    shop = await shops.update_shop(session, "owner-1", "  パン屋  ", " ありがとう ")
    assert shop.name == "パン屋"
    assert shop.purchase_message == "ありがとう"

    with pytest.raises(InvalidInput):
        await shops.update_shop(session, "owner-1", "   ", "message")
    with pytest.raises(InvalidInput):
        await shops.update_shop(session, "owner-1", "name", "")


async def test_update_shop_status_validates(session):
    await shops.get_or_create_shop(session, "owner-1")
    with pytest.raises(InvalidInput):
        await shops.update_shop_status(session, "owner-1", "closed")
    shop = await shops.update_shop_status(session, "owner-1", "open")
    assert shop.is_open


async def test_create_product_requires_preparing(session, open_shop):
    shop, _ = open_shop
    with pytest.raises(ShopClosed):
        await products.create_product(
            session, shop, ProductInput(name="追加", price=100, inventory=1)
        )


async def test_create_product_validation(session):
    shop = await shops.get_or_create_shop(session, "owner-1")
    with pytest.raises(InvalidInput):
        await products.create_product(session, shop, ProductInput(name=" ", price=1, inventory=1))
    with pytest.raises(InvalidInput):
        await products.create_product(session, shop, ProductInput(name="a", inventory=1))
    with pytest.raises(InvalidInput):
        await products.create_product(session, shop, ProductInput(name="a", price=1, inventory=-1))


async def test_update_product_while_preparing(session):
    shop, product = await seed_shop(session, open_shop=False)
    updated = await products.update_product(
        session,
        shop,
        product.id,
        ProductInput(name=" 新しい名前 ", question_enabled=True, question_text="アレルギーは？"),
    )
    assert updated.name == "新しい名前"
    assert updated.question_enabled is True
    assert updated.question_text == "アレルギーは？"
    assert updated.price == product.price
    assert updated.inventory == product.inventory


async def test_update_product_with_inventory_is_all_or_nothing(session):
    shop, product = await seed_shop(session, open_shop=False)

    with pytest.raises(InvalidQuantity):
        await products.update_product(
            session, shop, product.id, ProductInput(name="改名", price=900, inventory=-1)
        )
    unchanged = await products.get_product(session, product.id)
    assert (unchanged.name, unchanged.price, unchanged.inventory) == ("クッキー", 500, 3)

    updated = await products.update_product(
        session, shop, product.id, ProductInput(name="改名", inventory=0)
    )
    assert (updated.name, updated.inventory) == ("改名", 0)


async def test_open_shop_locks_product_edits(session, open_shop):
    shop, product = open_shop
    with pytest.raises(ShopClosed):
        await products.update_product(session, shop, product.id, ProductInput(name="x"))
    with pytest.raises(ShopClosed):
        await products.archive_product(session, shop, product.id)


async def test_update_product_of_other_shop(session):
    _, product = await seed_shop(session, open_shop=False)
    other = await shops.get_or_create_shop(session, "owner-2")
    with pytest.raises(Forbidden):
        await products.update_product(session, other, product.id, ProductInput(name="x"))


async def test_archived_products_are_hidden(session):
    shop, product = await seed_shop(session, open_shop=False)
    kept = await products.create_product(
        session, shop, ProductInput(name="マフィン", price=300, inventory=2)
    )
    await products.archive_product(session, shop, product.id)

    listed = await products.list_products(session, shop.shop_id)
    assert [p.id for p in listed] == [kept.id]
    assert (await products.get_product(session, product.id)).is_archived is True


async def test_get_product_missing(session):
    with pytest.raises(ProductNotFound):
        await products.get_product(session, "missing")
