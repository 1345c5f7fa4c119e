"""
Shop Service — ドメインモデル

ショップ・商品・注文の正規形。

ストレージから読み出したドキュメントは必ず from_document / from_row を
通してここで正規化する。注文ドキュメントには過去の形式
（単一商品フィールド、questionAnswer など）が混在しているため、
Order.from_document がすべての旧形式を現行の形 (SCHEMA_VERSION) に揃える。
コアロジックは正規形だけを扱う。
"""

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .errors import InvalidInput

ORDER_SCHEMA_VERSION = 2


class ShopStatus(str, Enum):
    PREPARING = "preparing"
    OPEN = "open"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELED = "canceled"


# ── 正規化ヘルパー ───────────────────────────────


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def to_millis(value: Any) -> int | None:
    """数値・datetime・ISO 文字列・{_seconds, _nanoseconds} をミリ秒に変換する。"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        try:
            return to_millis(datetime.fromisoformat(value))
        except ValueError:
            return None
    if isinstance(value, Mapping) and isinstance(value.get("_seconds"), (int, float)):
        nanos = value.get("_nanoseconds")
        nanos = nanos if isinstance(nanos, (int, float)) else 0
        return int(value["_seconds"] * 1000 + nanos // 1_000_000)
    return None


def _pick(doc: Mapping[str, Any], *keys: str) -> Any:
    """最初に見つかった None でない値を返す。"""
    for key in keys:
        value = doc.get(key)
        if value is not None:
            return value
    return None


def _to_number(value: Any, default: int | None) -> int | None:
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# ── ショップ・商品 ───────────────────────────────


class Shop(BaseModel):
    owner_user_id: str
    shop_id: str
    name: str
    purchase_message: str
    status: ShopStatus = ShopStatus.PREPARING
    contact_pending_order_id: str | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @property
    def is_open(self) -> bool:
        return self.status == ShopStatus.OPEN

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Shop":
        return cls(
            owner_user_id=row["owner_user_id"],
            shop_id=row["shop_id"],
            name=row["name"],
            purchase_message=row["purchase_message"],
            status=row["status"],
            contact_pending_order_id=row.get("contact_pending_order_id"),
            created_at=to_millis(row.get("created_at")),
            updated_at=to_millis(row.get("updated_at")),
        )

    def to_public(self) -> dict:
        return {
            "ownerUserId": self.owner_user_id,
            "shopId": self.shop_id,
            "name": self.name,
            "purchaseMessage": self.purchase_message,
            "status": self.status.value,
            "contactPendingOrderId": self.contact_pending_order_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class Product(BaseModel):
    id: str
    shop_id: str
    name: str
    description: str = ""
    price: int = Field(ge=0)
    inventory: int = Field(ge=0)
    image_url: str | None = None
    question_enabled: bool = False
    question_text: str | None = None
    is_archived: bool = False
    created_at: int | None = None
    updated_at: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        return cls(
            id=row["id"],
            shop_id=row["shop_id"],
            name=row["name"],
            description=row.get("description") or "",
            price=row["price"],
            inventory=row["inventory"],
            image_url=row.get("image_url"),
            question_enabled=bool(row.get("question_enabled")),
            question_text=row.get("question_text"),
            is_archived=bool(row.get("is_archived")),
            created_at=to_millis(row.get("created_at")),
            updated_at=to_millis(row.get("updated_at")),
        )

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "shopId": self.shop_id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "inventory": self.inventory,
            "imageUrl": self.image_url,
            "questionEnabled": self.question_enabled,
            "questionText": self.question_text,
            "isArchived": self.is_archived,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


# ── 購入者のトーク上の購入セッション ─────────────


class BuyerSessionState(str, Enum):
    IDLE = "idle"
    CHOOSING_PRODUCT = "choosingProduct"
    CHOOSING_QUANTITY = "choosingQuantity"
    ANSWERING_QUESTION = "answeringQuestion"
    CONFIRMING = "confirming"


class BuyerSession(BaseModel):
    buyer_user_id: str
    state: BuyerSessionState = BuyerSessionState.IDLE
    shop_id: str | None = None
    product_id: str | None = None
    quantity: int | None = None
    question_response: str | None = None
    updated_at: int | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BuyerSession":
        try:
            state = BuyerSessionState(row.get("state"))
        except ValueError:
            state = BuyerSessionState.IDLE
        return cls(
            buyer_user_id=row["buyer_user_id"],
            state=state,
            shop_id=row.get("shop_id"),
            product_id=row.get("product_id"),
            quantity=row.get("quantity"),
            question_response=row.get("question_response"),
            updated_at=to_millis(row.get("updated_at")),
        )


# ── 注文 ─────────────────────────────────────────


class OrderItem(BaseModel):
    """注文時点の商品スナップショット"""

    product_id: str | None = None
    name: str
    unit_price: int
    quantity: int

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity

    @classmethod
    def from_document(cls, raw: Any, index: int) -> "OrderItem":
        if not isinstance(raw, Mapping):
            return cls(name=f"商品{index + 1}", unit_price=0, quantity=0)
        product_id = _pick(raw, "productId", "product_id")
        name = raw.get("name")
        return cls(
            product_id=product_id if isinstance(product_id, str) else None,
            name=name if isinstance(name, str) else f"商品{index + 1}",
            unit_price=_to_number(_pick(raw, "unitPrice", "unit_price"), 0),
            quantity=_to_number(raw.get("quantity"), 0),
        )

    def to_document(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "unitPrice": self.unit_price,
            "quantity": self.quantity,
        }


class Order(BaseModel):
    id: str
    shop_id: str | None
    buyer_user_id: str = ""
    buyer_display_id: str = "unknown"
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderItem] = Field(default_factory=list)
    total: int = 0
    question_response: str | None = None
    memo: str | None = None
    closed: bool = False
    contact_pending: bool = False
    schema_version: int = ORDER_SCHEMA_VERSION
    created_at: int | None = None
    updated_at: int | None = None
    accepted_at: int | None = None
    canceled_at: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    @property
    def first_item(self) -> OrderItem | None:
        return self.items[0] if self.items else None

    @staticmethod
    def compute_total(items: list[OrderItem]) -> int:
        return sum(item.subtotal for item in items)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], order_id: str | None = None) -> "Order":
        """
        保存済み・インポートされた注文ドキュメントを正規形に変換する。

        camelCase (旧ドキュメント) と snake_case (テーブル行) のどちらも受け付ける。
        """
        if not order_id and doc.get("id") is None:
            raise InvalidInput("注文IDがありません")

        items_raw = doc.get("items")
        if isinstance(items_raw, str):
            items_raw = json.loads(items_raw)
        if not isinstance(items_raw, list):
            items_raw = []
        items = [OrderItem.from_document(raw, i) for i, raw in enumerate(items_raw)]

        if not items:
            legacy = _legacy_single_item(doc)
            if legacy is not None:
                items = [legacy]

        total_raw = doc.get("total")
        if isinstance(total_raw, (int, float)) and not isinstance(total_raw, bool):
            total = _to_number(total_raw, 0)
        else:
            total = cls.compute_total(items)

        status_raw = doc.get("status")
        try:
            status = OrderStatus(status_raw)
        except ValueError:
            status = OrderStatus.PENDING

        shop_id = _pick(doc, "shopId", "shop_id")
        buyer_user_id = _pick(doc, "buyerUserId", "buyer_user_id")
        display_id = _pick(doc, "buyerDisplayId", "buyer_display_id")

        return cls(
            id=order_id or str(doc["id"]),
            shop_id=shop_id if isinstance(shop_id, str) else None,
            buyer_user_id=buyer_user_id if isinstance(buyer_user_id, str) else "",
            buyer_display_id=display_id if isinstance(display_id, str) else "unknown",
            status=status,
            items=items,
            total=total,
            question_response=_optional_text(
                _pick(doc, "questionResponse", "question_response", "questionAnswer")
            ),
            memo=_optional_text(doc.get("memo")),
            closed=bool(doc.get("closed")),
            contact_pending=bool(_pick(doc, "contactPending", "contact_pending")),
            created_at=to_millis(_pick(doc, "createdAt", "created_at")),
            updated_at=to_millis(_pick(doc, "updatedAt", "updated_at")),
            accepted_at=to_millis(_pick(doc, "acceptedAt", "accepted_at")),
            canceled_at=to_millis(_pick(doc, "canceledAt", "canceled_at")),
        )

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "shopId": self.shop_id,
            "buyerUserId": self.buyer_user_id,
            "buyerDisplayId": self.buyer_display_id,
            "status": self.status.value,
            "total": self.total,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "acceptedAt": self.accepted_at,
            "canceledAt": self.canceled_at,
            "items": [item.to_document() for item in self.items],
            "questionResponse": self.question_response,
            "memo": self.memo,
            "closed": self.closed,
            "contactPending": self.contact_pending,
        }


def _legacy_single_item(doc: Mapping[str, Any]) -> OrderItem | None:
    """items 配列を持たない旧形式 (productId / qty / priceTaxIncl) を1明細に変換する。"""
    product_id = _pick(doc, "productId", "product_id")
    name = _pick(doc, "productName", "product")
    quantity_raw = _pick(doc, "quantity", "qty")
    unit_price = _to_number(_pick(doc, "unitPrice", "priceTaxIncl"), 0)
    # 数量がなければ 1 とみなす。0 や数値にならない値は明細の有無の判定では偽として扱う
    quantity = 1 if quantity_raw is None else _to_number(quantity_raw, None)

    if not (quantity or unit_price or product_id):
        return None
    return OrderItem(
        product_id=product_id if isinstance(product_id, str) else None,
        name=name if isinstance(name, str) else "商品1",
        unit_price=unit_price,
        quantity=quantity if quantity and quantity > 0 else 1,
    )
