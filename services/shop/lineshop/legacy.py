"""
Shop Service — 旧注文ドキュメントの取り込み

ドキュメント DB からエクスポートした注文 (JSON Lines) を読み込み、
Order.from_document で正規形に揃えてから orders テーブルへ保存する。
既に同じ ID の注文があればスキップする。

    python -m lineshop.legacy orders.jsonl
"""

import argparse
import asyncio
import json
import logging
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import store
from .config import Settings, configure_logging
from .errors import InvalidInput
from .models import Order, now_millis

logger = logging.getLogger(__name__)


async def import_orders(session: AsyncSession, documents: Iterable[dict]) -> int:
    """
    取り込んだ件数を返す。

    ID のないドキュメントは警告を出して読み飛ばし、残りの取り込みは続ける。
    """
    imported = 0
    async with store.transaction(session):
        for index, doc in enumerate(documents, start=1):
            try:
                order = Order.from_document(doc)
            except InvalidInput as e:
                logger.warning("Skip document #%d: %s", index, e.message)
                continue
            exists = await store.fetch_one(
                session, "SELECT 1 AS found FROM orders WHERE id = :id", {"id": order.id}
            )
            if exists:
                logger.info("Skip existing order: %s", order.id)
                continue

            created_at = order.created_at or now_millis()
            await session.execute(
                text("""
                    INSERT INTO orders
                        (id, shop_id, buyer_user_id, buyer_display_id, status, items, total,
                         question_response, memo, closed, contact_pending, schema_version,
                         created_at, updated_at, accepted_at, canceled_at)
                    VALUES
                        (:id, :sid, :buyer, :display_id, :status, :items, :total,
                         :question_response, :memo, :closed, :contact_pending, :version,
                         :created_at, :updated_at, :accepted_at, :canceled_at)
                """),
                {
                    "id": order.id,
                    "sid": order.shop_id,
                    "buyer": order.buyer_user_id,
                    "display_id": order.buyer_display_id,
                    "status": order.status.value,
                    "items": json.dumps(
                        [item.to_document() for item in order.items], ensure_ascii=False
                    ),
                    "total": order.total,
                    "question_response": order.question_response,
                    "memo": order.memo,
                    "closed": order.closed,
                    "contact_pending": order.contact_pending,
                    "version": order.schema_version,
                    "created_at": created_at,
                    "updated_at": order.updated_at or created_at,
                    "accepted_at": order.accepted_at,
                    "canceled_at": order.canceled_at,
                },
            )
            imported += 1
    return imported


def read_jsonl(path: str) -> list[dict]:
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


async def _run(path: str) -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    engine = store.create_engine(settings.database_url)
    try:
        await store.create_schema(engine)
        async_session = store.create_session_factory(engine)
        async with async_session() as session:
            count = await import_orders(session, read_jsonl(path))
        logger.info("Imported %d orders from %s", count, path)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="旧注文ドキュメントを取り込む")
    parser.add_argument("path", help="JSON Lines 形式のエクスポートファイル")
    args = parser.parse_args(argv)
    asyncio.run(_run(args.path))


if __name__ == "__main__":
    main()
