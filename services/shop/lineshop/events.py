"""
Shop Service — イベント定義

コミット後に order_events チャネルへ発行する事実。
イベントは過去形で命名し、不変(immutable)として扱う。
"""

from pydantic import BaseModel


class OrderCreated(BaseModel):
    """注文が作成された（pending）"""
    order_id: str
    shop_id: str
    buyer_display_id: str
    product_id: str | None
    quantity: int
    total: int
    timestamp: int


class OrderAccepted(BaseModel):
    """注文が確定された（在庫を引き落とし済み）"""
    order_id: str
    shop_id: str
    product_id: str | None
    quantity: int
    timestamp: int


class OrderCanceled(BaseModel):
    """注文がキャンセルされた（在庫には影響しない）"""
    order_id: str
    shop_id: str
    timestamp: int


class ContactRequested(BaseModel):
    """出店者が購入者への連絡を予約した"""
    order_id: str
    shop_id: str
    timestamp: int


class ContactSent(BaseModel):
    """出店者のメッセージを購入者へ中継した"""
    order_id: str
    shop_id: str
    timestamp: int
