"""
Shop Service — ショップ

ショップは出店者の LINE ユーザー ID をキーに1件だけ持つ。
購入者には6文字の公開ショップ ID で参照される。
"""

import logging
import secrets

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidInput, ShopError, ShopNotFound
from .models import Shop, ShopStatus, now_millis
from .store import fetch_one, transaction

logger = logging.getLogger(__name__)

DEFAULT_SHOP_NAME = "新しいショップ"
DEFAULT_PURCHASE_MESSAGE = "ご購入ありがとうございます！支払い方法については追ってご連絡します。"

SHOP_ID_ALPHABET = "23456789abcdefghjkmnpqrstuvwxyz"
SHOP_ID_LENGTH = 6
SHOP_ID_ATTEMPTS = 10


def random_shop_id() -> str:
    return "".join(secrets.choice(SHOP_ID_ALPHABET) for _ in range(SHOP_ID_LENGTH))


async def _generate_unique_shop_id(session: AsyncSession) -> str:
    for _ in range(SHOP_ID_ATTEMPTS):
        candidate = random_shop_id()
        if await fetch_one(
            session, "SELECT 1 AS found FROM shops WHERE shop_id = :sid", {"sid": candidate}
        ) is None:
            return candidate
    raise ShopError("ショップIDの生成に失敗しました。時間をおいて再度お試しください")


async def find_shop(session: AsyncSession, owner_user_id: str) -> Shop | None:
    row = await fetch_one(
        session, "SELECT * FROM shops WHERE owner_user_id = :owner", {"owner": owner_user_id}
    )
    return Shop.from_row(row) if row else None


async def get_shop(session: AsyncSession, owner_user_id: str) -> Shop:
    shop = await find_shop(session, owner_user_id)
    if shop is None:
        raise ShopNotFound("ショップが見つかりません。先に /api/session で初期化してください")
    return shop


async def get_shop_by_public_id(session: AsyncSession, shop_id: str) -> Shop | None:
    row = await fetch_one(session, "SELECT * FROM shops WHERE shop_id = :sid", {"sid": shop_id})
    return Shop.from_row(row) if row else None


async def get_or_create_shop(session: AsyncSession, owner_user_id: str) -> Shop:
    """出店者のショップを返す。なければ preparing 状態で作成する。"""
    shop = await find_shop(session, owner_user_id)
    if shop is not None:
        return shop

    now = now_millis()
    async with transaction(session):
        shop_id = await _generate_unique_shop_id(session)
        await session.execute(
            text("""
                INSERT INTO shops
                    (owner_user_id, shop_id, name, purchase_message, status, created_at, updated_at)
                VALUES
                    (:owner, :sid, :name, :message, :status, :now, :now)
            """),
            {
                "owner": owner_user_id,
                "sid": shop_id,
                "name": DEFAULT_SHOP_NAME,
                "message": DEFAULT_PURCHASE_MESSAGE,
                "status": ShopStatus.PREPARING.value,
                "now": now,
            },
        )
    logger.info("Shop created: shop_id=%s", shop_id)
    return await get_shop(session, owner_user_id)


async def update_shop(
    session: AsyncSession,
    owner_user_id: str,
    name: str | None,
    purchase_message: str | None,
) -> Shop:
    if not name or not name.strip():
        raise InvalidInput("店舗名を入力してください")
    if not purchase_message or not purchase_message.strip():
        raise InvalidInput("購入時メッセージを入力してください")

    async with transaction(session):
        await get_shop(session, owner_user_id)
        await session.execute(
            text("""
                UPDATE shops
                SET name = :name, purchase_message = :message, updated_at = :now
                WHERE owner_user_id = :owner
            """),
            {
                "name": name.strip(),
                "message": purchase_message.strip(),
                "now": now_millis(),
                "owner": owner_user_id,
            },
        )
    return await get_shop(session, owner_user_id)


async def update_shop_status(
    session: AsyncSession, owner_user_id: str, status: ShopStatus | str
) -> Shop:
    try:
        status = ShopStatus(status)
    except ValueError:
        raise InvalidInput("status には preparing か open を指定してください") from None

    async with transaction(session):
        await get_shop(session, owner_user_id)
        await session.execute(
            text("UPDATE shops SET status = :status, updated_at = :now WHERE owner_user_id = :owner"),
            {"status": status.value, "now": now_millis(), "owner": owner_user_id},
        )
    logger.info("Shop status changed: owner=%s status=%s", owner_user_id, status.value)
    return await get_shop(session, owner_user_id)


async def set_contact_pending_order(
    session: AsyncSession, owner_user_id: str, order_id: str | None
) -> None:
    """連絡待ちの注文 ID を更新する。コミットは呼び出し側のトランザクションに任せる。"""
    await session.execute(
        text("""
            UPDATE shops
            SET contact_pending_order_id = :oid, updated_at = :now
            WHERE owner_user_id = :owner
        """),
        {"oid": order_id, "now": now_millis(), "owner": owner_user_id},
    )
