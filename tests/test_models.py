"""Tests for order document normalization."""

from datetime import datetime, timezone

import pytest

from lineshop.errors import InvalidInput
from lineshop.models import ORDER_SCHEMA_VERSION, Order, OrderStatus, to_millis


def test_canonical_document():
    order = Order.from_document(
        {
            "id": "o1",
            "shopId": "abc234",
            "buyerUserId": "U1",
            "buyerDisplayId": "d1",
            "status": "accepted",
            "items": [{"productId": "p1", "name": "クッキー", "unitPrice": 500, "quantity": 2}],
            "total": 1000,
            "questionResponse": "はい",
            "memo": "",
            "closed": False,
            "createdAt": 1_700_000_000_000,
        }
    )
    assert order.status == OrderStatus.ACCEPTED
    assert order.items[0].product_id == "p1"
    assert order.total == 1000
    assert order.question_response == "はい"
    assert order.schema_version == ORDER_SCHEMA_VERSION


def test_legacy_single_item_fields():
    order = Order.from_document(
        {
            "id": "o2",
            "shopId": "abc234",
            "productId": "p9",
            "productName": "旧商品",
            "qty": 3,
            "priceTaxIncl": "250",
        }
    )
    assert len(order.items) == 1
    item = order.items[0]
    assert (item.product_id, item.name, item.quantity, item.unit_price) == ("p9", "旧商品", 3, 250)
    assert order.total == 750


def test_legacy_product_alias_and_default_quantity():
    order = Order.from_document({"id": "o3", "product": "名前だけ", "unitPrice": 100})
    assert order.items[0].name == "名前だけ"
    assert order.items[0].quantity == 1
    assert order.total == 100


def test_document_without_any_item_fields():
    order = Order.from_document({"id": "o4", "shopId": "abc234"})
    assert [i.to_document() for i in order.items] == [
        {"productId": None, "name": "商品1", "unitPrice": 0, "quantity": 1}
    ]
    assert order.total == 0


def test_legacy_zero_quantity_never_yields_empty_item():
    order = Order.from_document({"id": "o6", "quantity": 0, "productName": "旧商品"})
    assert order.items == []
    assert order.total == 0

    order = Order.from_document({"id": "o7", "qty": 0, "productId": "p1", "priceTaxIncl": 300})
    assert [(i.quantity, i.unit_price) for i in order.items] == [(1, 300)]


def test_document_without_id_is_rejected():
    with pytest.raises(InvalidInput):
        Order.from_document({"shopId": "abc234", "qty": 1})


def test_malformed_items_are_named_by_position():
    order = Order.from_document(
        {"id": "o5", "items": ["garbage", {"quantity": "2", "unitPrice": 10}]}
    )
    assert [i.name for i in order.items] == ["商品1", "商品2"]
    assert order.items[0].quantity == 0
    assert order.items[1].quantity == 2
    assert order.total == 20


def test_question_answer_alias():
    order = Order.from_document({"id": "o6", "questionAnswer": 42})
    assert order.question_response == "42"


def test_unknown_status_and_missing_ids():
    order = Order.from_document({"id": "o7", "status": "shipped"})
    assert order.status == OrderStatus.PENDING
    assert order.buyer_display_id == "unknown"
    assert order.buyer_user_id == ""
    assert order.shop_id is None


def test_items_json_text_from_table_row():
    order = Order.from_document(
        {
            "id": "o8",
            "shop_id": "abc234",
            "buyer_user_id": "U1",
            "buyer_display_id": "d1",
            "status": "canceled",
            "items": '[{"productId": "p1", "name": "A", "unitPrice": 100, "quantity": 1}]',
            "total": 100,
            "closed": 1,
            "contact_pending": 0,
            "created_at": 1,
            "canceled_at": 2,
        }
    )
    assert order.shop_id == "abc234"
    assert order.closed is True
    assert order.contact_pending is False
    assert order.canceled_at == 2


def test_to_millis_variants():
    dt = datetime(2024, 1, 1, tzinfo=timezone.utc)
    expected = int(dt.timestamp() * 1000)
    assert to_millis(expected) == expected
    assert to_millis(dt) == expected
    assert to_millis("2024-01-01T00:00:00+00:00") == expected
    assert to_millis({"_seconds": expected // 1000, "_nanoseconds": 5_000_000}) == expected + 5
    assert to_millis("not a date") is None
    assert to_millis(None) is None
