"""
Shop Service — トークでの購入フロー

購入者が LINE のトーク上でショップ ID を送ってから注文が作成されるまでの状態機械。

  idle / choosingProduct  ショップ ID の入力 → 商品一覧を返す
  choosingProduct         商品を選ぶ (postback)      → choosingQuantity
  choosingQuantity        数量を選ぶ・入力する       → answeringQuestion または confirming
  answeringQuestion       質問への回答を入力         → confirming
  confirming              「注文確定」(postback)     → admission.create_pending_order → idle

どの状態でも「リセット」「キャンセル」「中止」または buyer-cancel-flow で idle に戻る。
注文作成の検証（公開中・在庫・1日の上限）は admission がすべて行い、
ここでは会話の状態だけを管理する。
"""

import logging
from datetime import timezone, tzinfo

from sqlalchemy.ext.asyncio import AsyncSession

from . import products, shops
from .admission import DAILY_ORDER_LIMIT, create_pending_order
from .buyer_sessions import get_buyer_session, reset_buyer_session, save_buyer_session
from .errors import ShopError
from .line import LineMessagingClient, text_message
from .models import BuyerSession, BuyerSessionState, Product, Shop
from .notifications import Notifier

logger = logging.getLogger(__name__)

BUYER_ACTIONS = frozenset(
    {"buyer-select-product", "buyer-set-quantity", "buyer-confirm-order", "buyer-cancel-flow"}
)
RESET_WORDS = ("リセット", "キャンセル", "中止")
QUICK_QUANTITIES = (1, 2, 3, 4, 5)
# LINE のクイックリプライは最大13件
MAX_PRODUCT_CHOICES = 13

RESET_REPLY = "操作をキャンセルしました。ショップIDを入力してください。"


# ── メッセージ ───────────────────────────────────


def _postback_item(label: str, data: str, display_text: str) -> dict:
    return {
        "type": "action",
        "action": {
            "type": "postback",
            "label": label[:20],
            "data": data,
            "displayText": display_text,
        },
    }


def product_selection_message(shop: Shop, items: list[Product]) -> dict:
    lines = [f"{shop.name}の商品"]
    lines += [f"・{p.name} {p.price:,}円（在庫 {p.inventory}）" for p in items]
    return {
        "type": "text",
        "text": "\n".join(lines),
        "quickReply": {
            "items": [
                _postback_item(
                    p.name,
                    f"action=buyer-select-product&shopId={shop.shop_id}&productId={p.id}",
                    f"{p.name} を選択する",
                )
                for p in items[:MAX_PRODUCT_CHOICES]
            ]
        },
    }


def quantity_prompt_message(shop: Shop, product: Product) -> dict:
    items = [
        _postback_item(
            str(n),
            f"action=buyer-set-quantity&quantity={n}&productId={product.id}&shopId={shop.shop_id}",
            f"{product.name} を {n}個で注文",
        )
        for n in QUICK_QUANTITIES
    ]
    items.append(
        {"type": "action", "action": {"type": "message", "label": "その他の数量", "text": "数量を入力"}}
    )
    return {
        "type": "text",
        "text": f"{product.name} の数量を教えてください。",
        "quickReply": {"items": items},
    }


def confirmation_message(
    shop: Shop, product: Product, quantity: int, question_response: str | None = None
) -> dict:
    body = f"注文内容の確認\n{product.name}\n数量: {quantity}個\n合計: {product.price * quantity:,}円"
    if question_response:
        body += f"\n質問回答: {question_response}"
    return {
        "type": "template",
        "altText": "注文内容を確認してください",
        "template": {
            "type": "buttons",
            "text": body[:160],
            "actions": [
                {
                    "type": "postback",
                    "label": "注文確定",
                    "data": f"action=buyer-confirm-order&productId={product.id}&shopId={shop.shop_id}",
                    "displayText": "注文を確定する",
                },
                {
                    "type": "postback",
                    "label": "やり直す",
                    "data": "action=buyer-cancel-flow",
                    "displayText": "注文をキャンセルする",
                },
            ],
        },
    }


def _parse_quantity(raw: str | None) -> int | None:
    try:
        quantity = int((raw or "").strip())
    except ValueError:
        return None
    return quantity if quantity > 0 else None


# ── 状態機械 ─────────────────────────────────────


class BuyerPurchaseFlow:
    """1件の Webhook イベントを処理する間だけ使う購入フロー"""

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier,
        line: LineMessagingClient | None,
        *,
        tz: tzinfo = timezone.utc,
        daily_limit: int = DAILY_ORDER_LIMIT,
    ):
        self.session = session
        self.notifier = notifier
        self.line = line
        self.tz = tz
        self.daily_limit = daily_limit

    async def _reply(self, reply_token: str | None, messages: list[dict]) -> None:
        if self.line is None or not reply_token:
            return
        try:
            await self.line.reply_message(reply_token, messages)
        except Exception:
            logger.exception("Failed to reply to buyer")

    async def _reply_text(self, reply_token: str | None, text: str) -> None:
        await self._reply(reply_token, [text_message(text)])

    async def _active_shop(self, shop_id: str) -> Shop | None:
        shop = await shops.get_shop_by_public_id(self.session, shop_id)
        if shop is None or not shop.is_open:
            return None
        return shop

    async def _listed_product(self, shop_id: str, product_id: str) -> Product | None:
        for product in await products.list_products(self.session, shop_id):
            if product.id == product_id:
                return product
        return None

    # ── テキストメッセージ ──

    async def handle_text(self, buyer_user_id: str, reply_token: str | None, text: str) -> None:
        text = (text or "").strip()
        if not text:
            await self._reply_text(reply_token, "文字を入力してください。")
            return

        if text in RESET_WORDS:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, RESET_REPLY)
            return

        current = await get_buyer_session(self.session, buyer_user_id)

        if current.state in (BuyerSessionState.IDLE, BuyerSessionState.CHOOSING_PRODUCT):
            await self.start_shop_selection(buyer_user_id, reply_token, text)
        elif current.state == BuyerSessionState.CHOOSING_QUANTITY:
            quantity = _parse_quantity(text)
            if quantity is None:
                await self._reply_text(reply_token, "数量は1以上の整数で入力してください。")
                return
            await self.select_quantity(buyer_user_id, reply_token, current, quantity)
        elif current.state == BuyerSessionState.ANSWERING_QUESTION:
            await self.answer_question(buyer_user_id, reply_token, current, text)
        else:
            await self._reply_text(reply_token, "「注文確定」ボタンから確定してください。")

    async def start_shop_selection(
        self, buyer_user_id: str, reply_token: str | None, shop_id: str
    ) -> None:
        shop = await self._active_shop(shop_id)
        if shop is None:
            await self._reply_text(reply_token, "ショップが見つからないか、現在は公開されていません。")
            return

        items = await products.list_products(self.session, shop.shop_id)
        if not items:
            await self._reply_text(reply_token, "現在、購入可能な商品がありません。")
            return

        await save_buyer_session(
            self.session, buyer_user_id, BuyerSessionState.CHOOSING_PRODUCT, shop_id=shop.shop_id
        )
        await self._reply(
            reply_token,
            [product_selection_message(shop, items), text_message("購入したい商品を選択してください。")],
        )

    async def select_quantity(
        self,
        buyer_user_id: str,
        reply_token: str | None,
        current: BuyerSession,
        quantity: int,
    ) -> None:
        if not current.shop_id or not current.product_id:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "セッションが無効になりました。最初からやり直してください。")
            return

        shop = await self._active_shop(current.shop_id)
        if shop is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "ショップが利用できません。")
            return

        product = await self._listed_product(shop.shop_id, current.product_id)
        if product is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "商品が見つかりません。")
            return

        if quantity > product.inventory:
            await self._reply_text(reply_token, f"在庫が不足しています（在庫: {product.inventory}）。")
            return

        if product.question_enabled:
            await save_buyer_session(
                self.session,
                buyer_user_id,
                BuyerSessionState.ANSWERING_QUESTION,
                shop_id=shop.shop_id,
                product_id=product.id,
                quantity=quantity,
            )
            await self._reply_text(
                reply_token, product.question_text or "購入時の質問への回答を入力してください。"
            )
            return

        await save_buyer_session(
            self.session,
            buyer_user_id,
            BuyerSessionState.CONFIRMING,
            shop_id=shop.shop_id,
            product_id=product.id,
            quantity=quantity,
        )
        await self._reply(reply_token, [confirmation_message(shop, product, quantity)])

    async def answer_question(
        self, buyer_user_id: str, reply_token: str | None, current: BuyerSession, answer: str
    ) -> None:
        shop = await self._active_shop(current.shop_id) if current.shop_id else None
        if shop is None or not current.product_id or not current.quantity:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "セッション情報が不正です。最初からやり直してください。")
            return

        product = await self._listed_product(shop.shop_id, current.product_id)
        if product is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "商品が見つかりませんでした。最初からやり直してください。")
            return

        await save_buyer_session(
            self.session,
            buyer_user_id,
            BuyerSessionState.CONFIRMING,
            shop_id=shop.shop_id,
            product_id=product.id,
            quantity=current.quantity,
            question_response=answer,
        )
        await self._reply(reply_token, [confirmation_message(shop, product, current.quantity, answer)])

    # ── postback ──

    async def handle_postback(
        self, buyer_user_id: str, reply_token: str | None, action: str, params: dict[str, str]
    ) -> None:
        if action == "buyer-cancel-flow":
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, RESET_REPLY)
            return

        current = await get_buyer_session(self.session, buyer_user_id)

        if action == "buyer-select-product":
            await self.select_product(
                buyer_user_id,
                reply_token,
                params.get("shopId") or current.shop_id,
                params.get("productId"),
            )
        elif action == "buyer-set-quantity":
            quantity = _parse_quantity(params.get("quantity"))
            if quantity is None:
                await self._reply_text(reply_token, "数量が不正です。")
                return
            await self.select_quantity(buyer_user_id, reply_token, current, quantity)
        elif action == "buyer-confirm-order":
            await self.confirm_order(buyer_user_id, reply_token, current)

    async def select_product(
        self,
        buyer_user_id: str,
        reply_token: str | None,
        shop_id: str | None,
        product_id: str | None,
    ) -> None:
        if not shop_id or not product_id:
            await self._reply_text(reply_token, "商品情報が取得できませんでした。")
            return

        shop = await self._active_shop(shop_id)
        if shop is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "ショップが利用できません。")
            return

        product = await self._listed_product(shop.shop_id, product_id)
        if product is None:
            await self._reply_text(reply_token, "商品が見つかりません。")
            return

        await save_buyer_session(
            self.session,
            buyer_user_id,
            BuyerSessionState.CHOOSING_QUANTITY,
            shop_id=shop.shop_id,
            product_id=product.id,
        )
        await self._reply(reply_token, [quantity_prompt_message(shop, product)])

    async def confirm_order(
        self, buyer_user_id: str, reply_token: str | None, current: BuyerSession
    ) -> None:
        """確認済みのセッションから pending の注文を作る。成否にかかわらずセッションは破棄する。"""
        if (
            current.state != BuyerSessionState.CONFIRMING
            or not current.shop_id
            or not current.product_id
            or not current.quantity
        ):
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "セッションが無効です。最初からやり直してください。")
            return

        shop = await shops.get_shop_by_public_id(self.session, current.shop_id)
        if shop is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "ショップが見つかりません。")
            return

        product = await self._listed_product(shop.shop_id, current.product_id)
        if product is None:
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, "商品が見つかりません。")
            return

        try:
            order = await create_pending_order(
                self.session,
                shop,
                product,
                current.quantity,
                buyer_user_id,
                current.question_response,
                tz=self.tz,
                daily_limit=self.daily_limit,
            )
        except ShopError as e:
            logger.info("Buyer order rejected: shop=%s kind=%s", shop.shop_id, e.kind)
            await reset_buyer_session(self.session, buyer_user_id)
            await self._reply_text(reply_token, f"注文に失敗しました: {e.message}")
            return

        await reset_buyer_session(self.session, buyer_user_id)
        await self.notifier.order_created(order, shop)
        await self._reply(
            reply_token,
            [
                text_message(
                    f"注文を受け付けました。\n注文ID: {order.id}\n出店者からの連絡をお待ちください。"
                ),
                text_message("在庫状況によってキャンセルとなる場合があります。"),
            ],
        )
