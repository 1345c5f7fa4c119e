"""Tests for the inventory ledger."""

import pytest

from conftest import seed_shop
from lineshop import products, shops
from lineshop.errors import (
    Forbidden,
    InsufficientInventory,
    InvalidQuantity,
    ProductNotFound,
    ShopClosed,
)
from lineshop.inventory import adjust_inventory, restock_product, set_inventory
from lineshop.store import transaction


async def test_adjust_inventory_add(session, open_shop):
    _, product = open_shop
    async with transaction(session):
        assert await adjust_inventory(session, product.id, 5) == 8
    assert (await products.get_product(session, product.id)).inventory == 8


async def test_adjust_inventory_remove_to_zero(session, open_shop):
    _, product = open_shop
    async with transaction(session):
        assert await adjust_inventory(session, product.id, -3) == 0
    assert (await products.get_product(session, product.id)).inventory == 0


async def test_adjust_inventory_never_goes_negative(session, open_shop):
    _, product = open_shop
    with pytest.raises(InsufficientInventory):
        async with transaction(session):
            await adjust_inventory(session, product.id, -4)
    assert (await products.get_product(session, product.id)).inventory == 3


async def test_adjust_inventory_missing_product(session):
    with pytest.raises(ProductNotFound):
        async with transaction(session):
            await adjust_inventory(session, "no-such-product", 1)


async def test_restock_while_open(session, open_shop):
    shop, product = open_shop
    updated = await restock_product(session, shop.shop_id, product.id, 10)
    assert updated.inventory == 13


async def test_restock_rejects_other_shop(session, open_shop):
    _, product = open_shop
    other, _ = await seed_shop(session, owner="owner-2")
    with pytest.raises(Forbidden):
        await restock_product(session, other.shop_id, product.id, 1)
    assert (await products.get_product(session, product.id)).inventory == 3


async def test_restock_below_zero_leaves_inventory(session, open_shop):
    shop, product = open_shop
    with pytest.raises(InsufficientInventory):
        await restock_product(session, shop.shop_id, product.id, -10)
    assert (await products.get_product(session, product.id)).inventory == 3


async def test_restock_requires_integer(session, open_shop):
    shop, product = open_shop
    with pytest.raises(InvalidQuantity):
        await restock_product(session, shop.shop_id, product.id, 1.5)


async def test_set_inventory_only_while_preparing(session, open_shop):
    shop, product = open_shop
    with pytest.raises(ShopClosed):
        await set_inventory(session, shop, product.id, 100)

    shop = await shops.update_shop_status(session, shop.owner_user_id, "preparing")
    updated = await set_inventory(session, shop, product.id, 100)
    assert updated.inventory == 100


async def test_set_inventory_rejects_negative(session):
    shop, product = await seed_shop(session, open_shop=False)
    with pytest.raises(InvalidQuantity):
        await set_inventory(session, shop, product.id, -1)
