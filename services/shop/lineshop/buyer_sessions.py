"""
Shop Service — 購入セッション

購入者が LINE のトーク上で注文を組み立てる途中の状態を、
購入者の LINE ユーザー ID ごとに1件だけ保持する。
行がなければ idle とみなす。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BuyerSession, BuyerSessionState, now_millis
from .store import fetch_one, transaction


async def get_buyer_session(session: AsyncSession, buyer_user_id: str) -> BuyerSession:
    row = await fetch_one(
        session,
        "SELECT * FROM buyer_sessions WHERE buyer_user_id = :buyer",
        {"buyer": buyer_user_id},
    )
    if row is None:
        return BuyerSession(buyer_user_id=buyer_user_id)
    return BuyerSession.from_row(row)


async def save_buyer_session(
    session: AsyncSession,
    buyer_user_id: str,
    state: BuyerSessionState,
    shop_id: str | None = None,
    product_id: str | None = None,
    quantity: int | None = None,
    question_response: str | None = None,
) -> BuyerSession:
    """セッションを丸ごと置き換える。"""
    async with transaction(session):
        await session.execute(
            text("""
                INSERT INTO buyer_sessions
                    (buyer_user_id, state, shop_id, product_id, quantity,
                     question_response, updated_at)
                VALUES
                    (:buyer, :state, :sid, :pid, :quantity, :question_response, :now)
                ON CONFLICT (buyer_user_id) DO UPDATE SET
                    state = excluded.state,
                    shop_id = excluded.shop_id,
                    product_id = excluded.product_id,
                    quantity = excluded.quantity,
                    question_response = excluded.question_response,
                    updated_at = excluded.updated_at
            """),
            {
                "buyer": buyer_user_id,
                "state": state.value,
                "sid": shop_id,
                "pid": product_id,
                "quantity": quantity,
                "question_response": question_response,
                "now": now_millis(),
            },
        )
    return await get_buyer_session(session, buyer_user_id)


async def reset_buyer_session(session: AsyncSession, buyer_user_id: str) -> None:
    async with transaction(session):
        await session.execute(
            text("DELETE FROM buyer_sessions WHERE buyer_user_id = :buyer"),
            {"buyer": buyer_user_id},
        )
