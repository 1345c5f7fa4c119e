"""Tests for post-commit notifications."""

import base64
import hashlib
import hmac
import json
import logging

from conftest import FakeLine, FakeRedis
from lineshop.line import verify_signature
from lineshop.models import Order, OrderItem, Shop
from lineshop.notifications import ORDER_EVENTS_CHANNEL, Notifier, new_order_message


def make_shop():
    return Shop(
        owner_user_id="owner-1",
        shop_id="abc234",
        name="パン屋",
        purchase_message="お振込先は追ってご連絡します。",
        status="open",
    )


def make_order(**overrides):
    data = dict(
        id="order-1",
        shop_id="abc234",
        buyer_user_id="buyer-1",
        buyer_display_id="0123456789ab",
        items=[OrderItem(product_id="p1", name="クッキー", unit_price=1500, quantity=2)],
        total=3000,
        question_response="常温で",
    )
    data.update(overrides)
    return Order(**data)


async def test_order_created_publishes_and_pushes_to_owner():
    redis, line = FakeRedis(), FakeLine()
    await Notifier(redis, line).order_created(make_order(), make_shop())

    channel, raw = redis.published[0]
    event = json.loads(raw)
    assert channel == ORDER_EVENTS_CHANNEL
    assert event["event_type"] == "OrderCreated"
    assert event["data"]["order_id"] == "order-1"
    assert event["data"]["quantity"] == 2

    to, messages = line.pushed[0]
    assert to == "owner-1"
    assert messages[0]["type"] == "template"


def test_new_order_message_content():
    message = new_order_message(make_order())
    body = message["template"]["text"]
    assert "注文ID: order-1" in body
    assert "クッキー × 2（1,500円）" in body
    assert "合計: 3,000円" in body
    assert "質問への回答:\n常温で" in body
    assert [a["data"] for a in message["template"]["actions"]] == [
        "action=accept&orderId=order-1",
        "action=cancel&orderId=order-1",
        "action=contact&orderId=order-1",
    ]


async def test_order_accepted_includes_purchase_message():
    line = FakeLine()
    await Notifier(line=line).order_accepted(make_order(status="accepted"), make_shop())

    to, messages = line.pushed[0]
    assert to == "buyer-1"
    assert messages[0]["text"].endswith("お振込先は追ってご連絡します。")


async def test_contact_relay_messages():
    line = FakeLine()
    await Notifier(line=line).contact_relayed(make_order(), make_shop(), "明日発送します")

    assert line.pushed[0][0] == "buyer-1"
    assert "明日発送します" in line.pushed[0][1][0]["text"]
    assert line.pushed[1][0] == "owner-1"


async def test_failures_are_logged_not_raised(caplog):
    class BrokenLine(FakeLine):
        async def push_message(self, to, messages):
            raise RuntimeError("LINE is down")

    notifier = Notifier(FakeRedis(fail=True), BrokenLine())
    with caplog.at_level(logging.ERROR, logger="lineshop.notifications"):
        await notifier.order_canceled(make_order(), make_shop())

    assert "Failed to publish OrderCanceled" in caplog.text
    assert "Failed to push LINE message (canceled)" in caplog.text


def test_verify_signature():
    body = b'{"events": []}'
    signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()
    assert verify_signature("secret", body, signature)
    assert not verify_signature("secret", body, "bogus")
    assert not verify_signature("", body, signature)
    assert not verify_signature("secret", body, None)
