"""
Shop Service — 商品

商品の作成・名称や説明の変更・アーカイブは準備中 (preparing) のショップでのみ行える。
公開中 (open) のショップで変えられるのは在庫数だけで、それは inventory モジュールを通す。
"""

import logging
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, InvalidInput, ProductNotFound, ShopClosed
from .inventory import check_inventory_quantity, replace_inventory
from .models import Product, Shop, ShopStatus, now_millis
from .store import fetch_all, fetch_one, transaction

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name",
    "description",
    "price",
    "image_url",
    "question_enabled",
    "question_text",
)


class ProductInput(BaseModel):
    name: str | None = None
    description: str | None = None
    price: int | None = None
    inventory: int | None = None
    image_url: str | None = None
    question_enabled: bool | None = None
    question_text: str | None = None

    def sanitized(self) -> "ProductInput":
        data = self.model_dump()
        for key in ("name", "description", "question_text", "image_url"):
            if isinstance(data[key], str):
                data[key] = data[key].strip()
        return ProductInput(**data)


def _require_preparing(shop: Shop) -> None:
    if shop.status != ShopStatus.PREPARING:
        raise ShopClosed("ショップ公開中は商品を編集できません")


async def list_products(session: AsyncSession, shop_id: str) -> list[Product]:
    """アーカイブされていない商品を新しい順に返す。"""
    rows = await fetch_all(
        session,
        """
        SELECT * FROM products
        WHERE shop_id = :sid AND is_archived = :archived
        ORDER BY created_at DESC
        """,
        {"sid": shop_id, "archived": False},
    )
    return [Product.from_row(row) for row in rows]


async def get_product(session: AsyncSession, product_id: str) -> Product:
    row = await fetch_one(session, "SELECT * FROM products WHERE id = :id", {"id": product_id})
    if row is None:
        raise ProductNotFound()
    return Product.from_row(row)


async def get_product_for_shop(session: AsyncSession, shop_id: str, product_id: str) -> Product:
    product = await get_product(session, product_id)
    if product.shop_id != shop_id:
        raise Forbidden("この商品にアクセスできません")
    return product


async def create_product(session: AsyncSession, shop: Shop, data: ProductInput) -> Product:
    _require_preparing(shop)
    data = data.sanitized()

    if not data.name:
        raise InvalidInput("商品名を入力してください")
    if data.price is None or data.price < 0:
        raise InvalidInput("税込価格を入力してください")
    if data.inventory is None or data.inventory < 0:
        raise InvalidInput("在庫数を入力してください")

    product_id = uuid4().hex
    now = now_millis()
    async with transaction(session):
        await session.execute(
            text("""
                INSERT INTO products
                    (id, shop_id, name, description, price, inventory, image_url,
                     question_enabled, question_text, is_archived, created_at, updated_at)
                VALUES
                    (:id, :sid, :name, :description, :price, :inventory, :image_url,
                     :question_enabled, :question_text, :archived, :now, :now)
            """),
            {
                "id": product_id,
                "sid": shop.shop_id,
                "name": data.name,
                "description": data.description or "",
                "price": data.price,
                "inventory": data.inventory,
                "image_url": data.image_url or None,
                "question_enabled": bool(data.question_enabled),
                "question_text": data.question_text or None,
                "archived": False,
                "now": now,
            },
        )
    logger.info("Product created: shop=%s product=%s", shop.shop_id, product_id)
    return await get_product(session, product_id)


async def update_product(
    session: AsyncSession, shop: Shop, product_id: str, data: ProductInput
) -> Product:
    """
    商品情報を部分更新する。

    inventory を指定した場合は同じトランザクションで在庫数も上書きする。
    検証はすべて書き込み前に行うので、失敗時には何も変わらない。
    """
    _require_preparing(shop)
    data = data.sanitized()

    if data.name is not None and not data.name:
        raise InvalidInput("商品名を入力してください")
    if data.price is not None and data.price < 0:
        raise InvalidInput("税込価格を入力してください")
    if data.inventory is not None:
        check_inventory_quantity(data.inventory)

    updates = {
        field: getattr(data, field)
        for field in EDITABLE_FIELDS
        if getattr(data, field) is not None
    }

    async with transaction(session):
        await get_product_for_shop(session, shop.shop_id, product_id)
        if updates:
            assignments = ", ".join(f"{field} = :{field}" for field in updates)
            await session.execute(
                text(f"UPDATE products SET {assignments}, updated_at = :now WHERE id = :id"),
                {**updates, "now": now_millis(), "id": product_id},
            )
        if data.inventory is not None:
            await replace_inventory(session, product_id, data.inventory)
    return await get_product(session, product_id)


async def archive_product(session: AsyncSession, shop: Shop, product_id: str) -> None:
    """商品を論理削除する。注文のスナップショットは影響を受けない。"""
    _require_preparing(shop)
    async with transaction(session):
        await get_product_for_shop(session, shop.shop_id, product_id)
        await session.execute(
            text("UPDATE products SET is_archived = :archived, updated_at = :now WHERE id = :id"),
            {"archived": True, "now": now_millis(), "id": product_id},
        )
    logger.info("Product archived: shop=%s product=%s", shop.shop_id, product_id)
