"""
Shop Service — 通知

注文の状態変化をコミット後に外部へ知らせる。
  1. Redis Pub/Sub の order_events チャネルへイベントを発行
  2. LINE Messaging API で出店者・購入者へプッシュ

通知は fire-and-forget。失敗はログに残すだけで、注文の状態遷移を
失敗させたりロールバックさせたりしない。
"""

import json
import logging

import redis.asyncio as aioredis
from pydantic import BaseModel

from . import events
from .line import LineMessagingClient, text_message
from .models import Order, Shop, now_millis

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


# ── メッセージ本文 ───────────────────────────────


def format_items(order: Order) -> str:
    return "\n".join(
        f"{item.name} × {item.quantity}（{item.unit_price:,}円）" for item in order.items
    )


def format_total(order: Order) -> str:
    return f"{order.total:,}円"


def _items_section(order: Order) -> str:
    return f"\n{format_items(order)}" if order.items else " -"


def new_order_message(order: Order) -> dict:
    """出店者向け: 確定・キャンセル・連絡のボタン付き新規注文通知"""
    body = (
        "新しい注文が入りました\n"
        f"注文ID: {order.id}\n"
        f"購入者ID: {order.buyer_display_id}\n"
        f"商品:{_items_section(order)}\n"
        f"合計: {format_total(order)}\n"
    )
    if order.question_response:
        body += f"質問への回答:\n{order.question_response}\n"

    def postback(label: str, action: str, display_text: str) -> dict:
        return {
            "type": "postback",
            "label": label,
            "data": f"action={action}&orderId={order.id}",
            "displayText": display_text,
        }

    return {
        "type": "template",
        "altText": "新しい注文が届きました",
        "template": {
            "type": "buttons",
            "text": body[:1200],
            "actions": [
                postback("注文確定", "accept", "注文を確定します"),
                postback("キャンセル", "cancel", "注文をキャンセルします"),
                postback("連絡する", "contact", "購入者に連絡します"),
            ],
        },
    }


def accepted_message(order: Order, shop: Shop) -> dict:
    return text_message(
        "注文が確定しました。\n"
        f"注文ID: {order.id}\n"
        f"商品:{_items_section(order)}\n"
        f"合計: {format_total(order)}\n\n"
        f"{shop.purchase_message}"
    )


# ── Notifier ─────────────────────────────────────


class Notifier:
    """Redis と LINE への通知。どちらも省略可能。"""

    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        line: LineMessagingClient | None = None,
    ):
        self.redis = redis
        self.line = line

    async def _publish(self, event: BaseModel) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(
                ORDER_EVENTS_CHANNEL,
                json.dumps(
                    {"event_type": type(event).__name__, "data": event.model_dump()},
                    default=str,
                ),
            )
        except Exception:
            logger.exception("Failed to publish %s", type(event).__name__)

    async def _push(self, to: str, messages: list[dict], purpose: str) -> None:
        if self.line is None or not to:
            return
        try:
            await self.line.push_message(to, messages)
        except Exception:
            logger.exception("Failed to push LINE message (%s)", purpose)

    async def order_created(self, order: Order, shop: Shop) -> None:
        item = order.first_item
        await self._publish(
            events.OrderCreated(
                order_id=order.id,
                shop_id=shop.shop_id,
                buyer_display_id=order.buyer_display_id,
                product_id=item.product_id if item else None,
                quantity=item.quantity if item else 0,
                total=order.total,
                timestamp=now_millis(),
            )
        )
        await self._push(shop.owner_user_id, [new_order_message(order)], "new order")

    async def order_accepted(self, order: Order, shop: Shop) -> None:
        item = order.first_item
        await self._publish(
            events.OrderAccepted(
                order_id=order.id,
                shop_id=shop.shop_id,
                product_id=item.product_id if item else None,
                quantity=item.quantity if item else 0,
                timestamp=now_millis(),
            )
        )
        await self._push(order.buyer_user_id, [accepted_message(order, shop)], "accepted")

    async def order_canceled(self, order: Order, shop: Shop) -> None:
        await self._publish(
            events.OrderCanceled(order_id=order.id, shop_id=shop.shop_id, timestamp=now_millis())
        )
        await self._push(
            order.buyer_user_id,
            [text_message("出店者によってキャンセルされました。")],
            "canceled",
        )

    async def contact_requested(self, order: Order, shop: Shop) -> None:
        await self._publish(
            events.ContactRequested(order_id=order.id, shop_id=shop.shop_id, timestamp=now_millis())
        )
        await self._push(
            order.buyer_user_id,
            [text_message("出店者から連絡が届きます。こちらのチャットで返信してください。")],
            "contact request",
        )
        await self._push(
            shop.owner_user_id,
            [
                text_message(
                    f"注文ID {order.id} の購入者へメッセージを送る準備ができました。"
                    "1回だけメッセージを送信できます。"
                )
            ],
            "contact confirmation",
        )

    async def contact_relayed(self, order: Order, shop: Shop, message: str) -> None:
        await self._push(
            order.buyer_user_id,
            [text_message(f"出店者からメッセージが届きました。\n{message}")],
            "contact relay",
        )
        await self._publish(
            events.ContactSent(order_id=order.id, shop_id=shop.shop_id, timestamp=now_millis())
        )
        await self._push(
            shop.owner_user_id,
            [text_message(f"注文ID {order.id} へのメッセージを送信しました。")],
            "contact sent",
        )
