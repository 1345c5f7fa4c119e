"""
Shop Service — LINE Webhook

出店者のトーク画面からの操作を処理する。
  - postback action=accept / cancel  → 注文の確定・キャンセル
  - postback action=contact          → 購入者への1回限りの連絡を予約
  - テキストメッセージ               → 予約があれば購入者へ中継

それ以外のテキストと buyer-* の postback は購入者のトーク購入フロー
(purchase_flow) に渡す。
"""

import logging
from datetime import timezone, tzinfo
from urllib.parse import parse_qs

from sqlalchemy.ext.asyncio import AsyncSession

from . import orders, shops
from .admission import DAILY_ORDER_LIMIT
from .errors import ShopError
from .line import LineMessagingClient
from .notifications import Notifier
from .purchase_flow import BUYER_ACTIONS, BuyerPurchaseFlow

logger = logging.getLogger(__name__)


async def _reply(line: LineMessagingClient | None, reply_token: str | None, text: str) -> None:
    if line is None or not reply_token:
        return
    try:
        await line.reply_text(reply_token, text)
    except Exception:
        logger.exception("Failed to reply to LINE event")


async def handle_text_message(
    session: AsyncSession,
    notifier: Notifier,
    line: LineMessagingClient | None,
    owner_user_id: str,
    reply_token: str | None,
    text: str,
) -> bool:
    """出店者の連絡予約があればメッセージを中継する。予約がなければ False。"""
    shop = await shops.find_shop(session, owner_user_id)
    if shop is None:
        return False
    order = await orders.consume_contact_pending_order(session, shop)
    if order is None:
        return False

    message = (text or "").strip()
    if not message:
        await _reply(line, reply_token, "メッセージが空でした。もう一度入力してください。")
        return True

    await notifier.contact_relayed(order, shop, message)
    await _reply(line, reply_token, "購入者へメッセージを送信しました。")
    return True


async def handle_postback(
    session: AsyncSession,
    notifier: Notifier,
    line: LineMessagingClient | None,
    owner_user_id: str,
    reply_token: str | None,
    data: str,
    flow: BuyerPurchaseFlow | None = None,
) -> None:
    params = {key: values[0] for key, values in parse_qs(data or "").items()}
    action = params.get("action")
    if not action:
        await _reply(line, reply_token, "操作が不正です")
        return
    if action in BUYER_ACTIONS:
        if flow is not None:
            await flow.handle_postback(owner_user_id, reply_token, action, params)
        return
    order_id = params.get("orderId")
    if not order_id:
        await _reply(line, reply_token, "注文IDが不正です")
        return

    try:
        shop = await shops.get_or_create_shop(session, owner_user_id)

        if action == "accept":
            order = await orders.accept_order(session, shop.shop_id, order_id)
            await notifier.order_accepted(order, shop)
            await _reply(line, reply_token, "注文を確定しました。")
        elif action == "cancel":
            order = await orders.cancel_order(session, shop.shop_id, order_id)
            await notifier.order_canceled(order, shop)
            await _reply(line, reply_token, "注文をキャンセルしました。")
        elif action == "contact":
            order = await orders.mark_contact_pending(
                session, owner_user_id, shop.shop_id, order_id
            )
            await notifier.contact_requested(order, shop)
            await _reply(
                line,
                reply_token,
                "購入者に送るメッセージをこのチャットに入力してください。（1回のみ）",
            )
        else:
            await _reply(line, reply_token, "未対応のアクションです")
    except ShopError as e:
        logger.info("Postback rejected: action=%s order=%s kind=%s", action, order_id, e.kind)
        await _reply(line, reply_token, f"操作に失敗しました: {e.message}")


async def handle_events(
    session: AsyncSession,
    notifier: Notifier,
    line: LineMessagingClient | None,
    events: list[dict],
    *,
    tz: tzinfo = timezone.utc,
    daily_limit: int = DAILY_ORDER_LIMIT,
) -> None:
    flow = BuyerPurchaseFlow(session, notifier, line, tz=tz, daily_limit=daily_limit)
    for event in events:
        source = event.get("source") or {}
        if source.get("type") != "user" or not source.get("userId"):
            continue
        user_id = source["userId"]
        reply_token = event.get("replyToken")

        if event.get("type") == "message":
            message = event.get("message") or {}
            if message.get("type") != "text":
                continue
            text = message.get("text", "")
            if not await handle_text_message(
                session, notifier, line, user_id, reply_token, text
            ):
                await flow.handle_text(user_id, reply_token, text)
        elif event.get("type") == "postback":
            data = (event.get("postback") or {}).get("data", "")
            await handle_postback(session, notifier, line, user_id, reply_token, data, flow)
