"""
Shop Service — ストア

ショップ・商品・注文と、購入者のトーク上の購入セッションをテーブルとして持つ。
すべての書き込みは transaction() の中で行い、例外時は必ずロールバックする。
ドキュメントの正規化は models 側の from_document / from_row が担う。
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS shops (
        owner_user_id VARCHAR(64) PRIMARY KEY,
        shop_id VARCHAR(16) NOT NULL UNIQUE,
        name VARCHAR(200) NOT NULL,
        purchase_message TEXT NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'preparing',
        contact_pending_order_id VARCHAR(64),
        created_at BIGINT,
        updated_at BIGINT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id VARCHAR(64) PRIMARY KEY,
        shop_id VARCHAR(16) NOT NULL,
        name VARCHAR(200) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        price INTEGER NOT NULL CHECK (price >= 0),
        inventory INTEGER NOT NULL CHECK (inventory >= 0),
        image_url TEXT,
        question_enabled BOOLEAN NOT NULL DEFAULT FALSE,
        question_text TEXT,
        is_archived BOOLEAN NOT NULL DEFAULT FALSE,
        created_at BIGINT,
        updated_at BIGINT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(64) PRIMARY KEY,
        shop_id VARCHAR(16),
        buyer_user_id VARCHAR(64) NOT NULL,
        buyer_display_id VARCHAR(32) NOT NULL,
        status VARCHAR(16) NOT NULL,
        items TEXT NOT NULL,
        total INTEGER NOT NULL,
        question_response TEXT,
        memo TEXT,
        closed BOOLEAN NOT NULL DEFAULT FALSE,
        contact_pending BOOLEAN NOT NULL DEFAULT FALSE,
        schema_version INTEGER NOT NULL,
        created_at BIGINT,
        updated_at BIGINT,
        accepted_at BIGINT,
        canceled_at BIGINT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS buyer_sessions (
        buyer_user_id VARCHAR(64) PRIMARY KEY,
        state VARCHAR(32) NOT NULL,
        shop_id VARCHAR(16),
        product_id VARCHAR(64),
        quantity INTEGER,
        question_response TEXT,
        updated_at BIGINT
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_products_shop_id ON products (shop_id)",
    "CREATE INDEX IF NOT EXISTS ix_orders_shop_created ON orders (shop_id, created_at)",
    "CREATE INDEX IF NOT EXISTS ix_orders_buyer_created ON orders (buyer_user_id, created_at)",
]


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    1回の業務操作を1トランザクションとして実行する。

    ブロックを抜けたらコミット、例外なら部分的な書き込みを残さずロールバックする。
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def fetch_one(session: AsyncSession, sql: str, params: dict) -> dict | None:
    result = await session.execute(text(sql), params)
    row = result.mappings().first()
    return dict(row) if row else None


async def fetch_all(session: AsyncSession, sql: str, params: dict) -> list[dict]:
    result = await session.execute(text(sql), params)
    return [dict(row) for row in result.mappings().all()]
