"""
Shop Service — 注文受付 (Order Admission Controller)

購入者からの注文を pending として作成する入口。

トランザクションを開く前に次を順に確認する:
    ショップ公開中 → 商品がショップのもの → 販売停止でない → 在庫あり
    → 数量が正の整数 → 数量 ≤ 在庫 → 1日の購入上限

在庫はここでは確認するだけで減らさない（ソフト予約）。
購入上限は「読んでから判断」するベストエフォートの濫用防止で、
ほぼ同時のリクエストが両方通ることは許容する。
"""

import hashlib
import json
import logging
from datetime import datetime, time, timezone, tzinfo
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    DailyLimitExceeded,
    Forbidden,
    InsufficientInventory,
    InvalidQuantity,
    OutOfStock,
    ProductArchived,
    ShopClosed,
)
from .models import ORDER_SCHEMA_VERSION, Order, OrderItem, OrderStatus, Product, Shop, now_millis
from .store import fetch_one, transaction

logger = logging.getLogger(__name__)

DAILY_ORDER_LIMIT = 10
BUYER_DISPLAY_ID_LENGTH = 12


def make_buyer_display_id(buyer_user_id: str) -> str:
    """購入者 ID から復元不能な表示用 ID を作る。同じ購入者なら常に同じ値。"""
    return hashlib.sha256(buyer_user_id.encode()).hexdigest()[:BUYER_DISPLAY_ID_LENGTH]


def start_of_day_millis(tz: tzinfo, now: datetime | None = None) -> int:
    """tz における今日の 0 時をミリ秒で返す。"""
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    midnight = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    return int(midnight.timestamp() * 1000)


async def count_orders_since(session: AsyncSession, buyer_user_id: str, since: int) -> int:
    row = await fetch_one(
        session,
        """
        SELECT COUNT(*) AS n FROM orders
        WHERE buyer_user_id = :buyer AND created_at >= :since
        """,
        {"buyer": buyer_user_id, "since": since},
    )
    return row["n"] if row else 0


async def assert_daily_purchase_limit(
    session: AsyncSession,
    buyer_user_id: str,
    tz: tzinfo,
    limit: int = DAILY_ORDER_LIMIT,
) -> None:
    count = await count_orders_since(session, buyer_user_id, start_of_day_millis(tz))
    if count >= limit:
        raise DailyLimitExceeded()


def validate_order_request(shop: Shop, product: Product, quantity: int) -> None:
    if not shop.is_open:
        raise ShopClosed()
    if product.shop_id != shop.shop_id:
        raise Forbidden("商品がこのショップに属していません")
    if product.is_archived:
        raise ProductArchived()
    if product.inventory <= 0:
        raise OutOfStock()
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity()
    if quantity > product.inventory:
        raise InsufficientInventory("在庫数を超えています")


async def create_pending_order(
    session: AsyncSession,
    shop: Shop,
    product: Product,
    quantity: int,
    buyer_user_id: str,
    question_response: str | None = None,
    *,
    tz: tzinfo = timezone.utc,
    daily_limit: int = DAILY_ORDER_LIMIT,
) -> Order:
    """
    pending の注文を作成して返す。

    明細は作成時点の商品名・単価のスナップショットで、
    後から商品を編集しても既存の注文は変わらない。
    """
    validate_order_request(shop, product, quantity)
    await assert_daily_purchase_limit(session, buyer_user_id, tz, daily_limit)

    item = OrderItem(
        product_id=product.id,
        name=product.name,
        unit_price=product.price,
        quantity=quantity,
    )
    order_id = uuid4().hex
    now = now_millis()

    async with transaction(session):
        await session.execute(
            text("""
                INSERT INTO orders
                    (id, shop_id, buyer_user_id, buyer_display_id, status, items, total,
                     question_response, memo, closed, contact_pending, schema_version,
                     created_at, updated_at)
                VALUES
                    (:id, :sid, :buyer, :display_id, :status, :items, :total,
                     :question_response, :memo, :closed, :contact_pending, :version,
                     :now, :now)
            """),
            {
                "id": order_id,
                "sid": shop.shop_id,
                "buyer": buyer_user_id,
                "display_id": make_buyer_display_id(buyer_user_id),
                "status": OrderStatus.PENDING.value,
                "items": json.dumps([item.to_document()], ensure_ascii=False),
                "total": Order.compute_total([item]),
                "question_response": question_response,
                "memo": "",
                "closed": False,
                "contact_pending": False,
                "version": ORDER_SCHEMA_VERSION,
                "now": now,
            },
        )

    logger.info(
        "Order created: order=%s shop=%s product=%s quantity=%d",
        order_id, shop.shop_id, product.id, quantity,
    )
    row = await fetch_one(session, "SELECT * FROM orders WHERE id = :id", {"id": order_id})
    return Order.from_document(row)
