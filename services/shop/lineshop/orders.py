"""
Shop Service — 注文状態機械 (Order State Machine)

状態遷移:
    pending → accepted  (出店者が確定。在庫をここで引き落とす)
    pending → canceled  (出店者がキャンセル。在庫には触れない)
accepted / canceled は終端状態で、どの遷移も元に戻せない。

在庫は注文作成時には確認するだけ（ソフト予約）で、実際に減らすのは確定時。
同じ在庫を取り合う pending 注文が複数あれば、後から確定したほうが
InsufficientInventory で失敗する。

確定は1トランザクション:
    1. 注文を読み、ショップ一致と pending を確認
    2. 条件付き UPDATE (WHERE status = 'pending') で accepted へ遷移
    3. inventory.adjust_inventory で在庫を減算
どこで失敗してもロールバックされ、部分的な変更は残らない。
同じ注文への同時確定は 2 の条件で片方だけが成功する。
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import (
    Forbidden,
    InvalidInput,
    InvalidQuantity,
    InvalidState,
    MissingProductReference,
    OrderNotFound,
)
from .inventory import adjust_inventory
from .models import Order, OrderStatus, Shop, now_millis
from .shops import set_contact_pending_order
from .store import fetch_all, fetch_one, transaction

logger = logging.getLogger(__name__)

MEMO_MAX_LENGTH = 2000
ORDER_ACTIONS = ("accept", "cancel")

_TIMESTAMP_COLUMNS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.CANCELED: "canceled_at",
}


# ── 読み取り ─────────────────────────────────────


async def find_order(session: AsyncSession, order_id: str) -> Order | None:
    row = await fetch_one(session, "SELECT * FROM orders WHERE id = :id", {"id": order_id})
    return Order.from_document(row) if row else None


async def get_order_for_shop(session: AsyncSession, shop_id: str, order_id: str) -> Order:
    order = await find_order(session, order_id)
    if order is None:
        raise OrderNotFound()
    if order.shop_id != shop_id:
        raise Forbidden()
    return order


async def list_orders_for_shop(
    session: AsyncSession,
    shop_id: str,
    status: OrderStatus | str | None = None,
    limit: int = 100,
) -> list[Order]:
    """ショップの注文を新しい順に返す。"""
    sql = "SELECT * FROM orders WHERE shop_id = :sid"
    params: dict = {"sid": shop_id, "limit": limit}
    if status is not None:
        sql += " AND status = :status"
        params["status"] = OrderStatus(status).value
    sql += " ORDER BY created_at DESC LIMIT :limit"
    rows = await fetch_all(session, sql, params)
    return [Order.from_document(row) for row in rows]


# ── 状態遷移 ─────────────────────────────────────


async def _load_pending(session: AsyncSession, shop_id: str, order_id: str) -> Order:
    order = await get_order_for_shop(session, shop_id, order_id)
    if not order.is_pending:
        raise InvalidState()
    return order


async def _transition(session: AsyncSession, order_id: str, to: OrderStatus) -> None:
    """pending からの遷移。すでに他のトランザクションが遷移させていれば InvalidState。"""
    now = now_millis()
    column = _TIMESTAMP_COLUMNS[to]
    result = await session.execute(
        text(f"""
            UPDATE orders
            SET status = :to, {column} = :now, updated_at = :now
            WHERE id = :id AND status = :pending
        """),
        {"to": to.value, "now": now, "id": order_id, "pending": OrderStatus.PENDING.value},
    )
    if result.rowcount == 0:
        raise InvalidState()


async def accept_order(session: AsyncSession, shop_id: str, order_id: str) -> Order:
    """注文を確定し、同じトランザクションで在庫を引き落とす。"""
    async with transaction(session):
        order = await _load_pending(session, shop_id, order_id)

        item = order.first_item
        if item is None:
            raise MissingProductReference()
        if not item.product_id:
            raise MissingProductReference("商品情報に productId がありません")
        if item.quantity <= 0:
            raise InvalidQuantity("注文の数量が不正です")

        product = await fetch_one(
            session, "SELECT id FROM products WHERE id = :id", {"id": item.product_id}
        )
        if product is None:
            raise MissingProductReference("関連する商品が見つかりません")

        await _transition(session, order_id, OrderStatus.ACCEPTED)
        inventory = await adjust_inventory(session, item.product_id, -item.quantity)

    logger.info(
        "Order accepted: order=%s product=%s quantity=%d inventory=%d",
        order_id, item.product_id, item.quantity, inventory,
    )
    return await get_order_for_shop(session, shop_id, order_id)


async def cancel_order(session: AsyncSession, shop_id: str, order_id: str) -> Order:
    """注文をキャンセルする。作成時に在庫を確保していないので補償は不要。"""
    async with transaction(session):
        await _load_pending(session, shop_id, order_id)
        await _transition(session, order_id, OrderStatus.CANCELED)

    logger.info("Order canceled: order=%s", order_id)
    return await get_order_for_shop(session, shop_id, order_id)


async def update_order_status(
    session: AsyncSession, shop_id: str, order_id: str, action: str
) -> Order:
    if action == "accept":
        return await accept_order(session, shop_id, order_id)
    if action == "cancel":
        return await cancel_order(session, shop_id, order_id)
    raise InvalidInput("action は accept か cancel を指定してください")


# ── 管理用メタデータ（状態に関係なく更新できる） ─


async def update_order_meta(
    session: AsyncSession,
    shop_id: str,
    order_id: str,
    memo: str | None = None,
    closed: bool | None = None,
) -> Order:
    updates: dict = {}
    if isinstance(memo, str):
        updates["memo"] = memo[:MEMO_MAX_LENGTH]
    if isinstance(closed, bool):
        updates["closed"] = closed

    async with transaction(session):
        await get_order_for_shop(session, shop_id, order_id)
        assignments = "".join(f"{field} = :{field}, " for field in updates)
        await session.execute(
            text(f"UPDATE orders SET {assignments}updated_at = :now WHERE id = :id"),
            {**updates, "now": now_millis(), "id": order_id},
        )
    return await get_order_for_shop(session, shop_id, order_id)


# ── 購入者への連絡（1回だけのメッセージ中継） ───


async def _set_contact_pending(session: AsyncSession, order_id: str, pending: bool) -> None:
    await session.execute(
        text("UPDATE orders SET contact_pending = :pending, updated_at = :now WHERE id = :id"),
        {"pending": pending, "now": now_millis(), "id": order_id},
    )


async def mark_contact_pending(
    session: AsyncSession, owner_user_id: str, shop_id: str, order_id: str
) -> Order:
    """次に出店者が送るメッセージを、この注文の購入者へ中継するよう予約する。"""
    async with transaction(session):
        await get_order_for_shop(session, shop_id, order_id)
        await _set_contact_pending(session, order_id, True)
        await set_contact_pending_order(session, owner_user_id, order_id)
    return await get_order_for_shop(session, shop_id, order_id)


async def consume_contact_pending_order(session: AsyncSession, shop: Shop) -> Order | None:
    """
    予約済みの連絡先注文を取り出して予約を解除する。

    予約がなければ None。注文が消えている・別ショップのものなら予約だけ解除して None。
    """
    order_id = shop.contact_pending_order_id
    if not order_id:
        return None

    async with transaction(session):
        order = await find_order(session, order_id)
        if order is not None and order.shop_id == shop.shop_id:
            await _set_contact_pending(session, order_id, False)
        else:
            order = None
        await set_contact_pending_order(session, shop.owner_user_id, None)

    if order is None:
        return None
    return await get_order_for_shop(session, shop.shop_id, order_id)
