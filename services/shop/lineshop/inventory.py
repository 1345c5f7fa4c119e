"""
Shop Service — 在庫台帳 (Inventory Ledger)

商品の在庫数の唯一の管理者。在庫数は決して負にならない。

adjust_inventory は「読んで・足して・書く」を1本の条件付き UPDATE で行う:
    UPDATE products SET inventory = inventory + :delta
    WHERE id = :id AND inventory + :delta >= 0
更新行数が 0 なら在庫不足（または商品なし）。同じ商品への同時更新は
行ロックで直列化されるため、負の在庫は書き込めない。

注文確定(orders.accept_order)と出店者の補充(restock_product)は
どちらもこの同じプリミティブを通す。
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    Forbidden,
    InsufficientInventory,
    InvalidQuantity,
    ProductNotFound,
    ShopClosed,
)
from .models import Product, Shop, ShopStatus, now_millis
from .store import fetch_one, transaction

logger = logging.getLogger(__name__)


async def adjust_inventory(session: AsyncSession, product_id: str, delta: int) -> int:
    """
    在庫を delta だけ相対的に増減し、新しい在庫数を返す。

    コミットしないので、より大きなトランザクションの1ステップとして使える。
    """
    result = await session.execute(
        text("""
            UPDATE products
            SET inventory = inventory + :delta, updated_at = :now
            WHERE id = :id AND inventory + :delta >= 0
        """),
        {"delta": delta, "now": now_millis(), "id": product_id},
    )
    row = await fetch_one(
        session, "SELECT inventory FROM products WHERE id = :id", {"id": product_id}
    )
    if row is None:
        raise ProductNotFound()
    if result.rowcount == 0:
        raise InsufficientInventory()
    return row["inventory"]


async def _get_owned_product(session: AsyncSession, shop_id: str, product_id: str) -> Product:
    row = await fetch_one(session, "SELECT * FROM products WHERE id = :id", {"id": product_id})
    if row is None:
        raise ProductNotFound()
    product = Product.from_row(row)
    if product.shop_id != shop_id:
        raise Forbidden("この商品の編集権限がありません")
    return product


async def restock_product(
    session: AsyncSession, shop_id: str, product_id: str, delta: int
) -> Product:
    """出店者による在庫の増減。ショップの公開状態に関係なく行える。"""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise InvalidQuantity("在庫の増減数は整数で指定してください")

    async with transaction(session):
        await _get_owned_product(session, shop_id, product_id)
        inventory = await adjust_inventory(session, product_id, delta)

    logger.info("Inventory adjusted: product=%s delta=%d inventory=%d", product_id, delta, inventory)
    return await _get_owned_product(session, shop_id, product_id)


def check_inventory_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise InvalidQuantity("在庫数は0以上の整数で指定してください")


async def replace_inventory(session: AsyncSession, product_id: str, quantity: int) -> None:
    """在庫数を上書きする。コミットはしない。"""
    await session.execute(
        text("UPDATE products SET inventory = :qty, updated_at = :now WHERE id = :id"),
        {"qty": quantity, "now": now_millis(), "id": product_id},
    )


async def set_inventory(
    session: AsyncSession,
    shop: Shop,
    product_id: str,
    quantity: int,
) -> Product:
    """在庫数の上書き。準備中のショップでのみ許可する。"""
    if shop.status != ShopStatus.PREPARING:
        raise ShopClosed("ショップ公開中は在庫数を上書きできません")
    check_inventory_quantity(quantity)

    async with transaction(session):
        await _get_owned_product(session, shop.shop_id, product_id)
        await replace_inventory(session, product_id, quantity)
    return await _get_owned_product(session, shop.shop_id, product_id)
