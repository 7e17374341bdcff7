"""Unit tests for order normalization."""
from datetime import datetime, timezone

import pytest

from src.adsync_core.schemas.metrics import (
    LineItem,
    OrderAdjustment,
    RawOrder,
    Refund,
    RefundLineItem,
    RefundShippingLine,
    TaxLine,
)
from src.adsync_core.shopify.normalizer import (
    classify_payment,
    normalize_order,
    raw_order_from_node,
)
from src.adsync_core.transport.exceptions import FatalError


CREATED = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)


def _order(**kwargs) -> RawOrder:
    defaults = {"id": "1001", "created_at": CREATED}
    defaults.update(kwargs)
    return RawOrder(**defaults)


def _line_item() -> LineItem:
    return LineItem(quantity=2, unit_price=50.0, tax_lines=[TaxLine(price=5.0)])


def test_gross_sales_subtracts_tax_without_refunds():
    """Line-item tax is subtracted when the order has no refunds."""
    normalized = normalize_order(_order(line_items=[_line_item()]))

    assert normalized.gross_sales == pytest.approx(95.0)
    assert normalized.total_taxes == pytest.approx(5.0)


def test_gross_sales_keeps_tax_when_order_has_refunds():
    """Refunded orders keep tax in gross sales and report no taxes."""
    refund = Refund(refund_line_items=[RefundLineItem(subtotal=10.0, tax=1.0)])

    normalized = normalize_order(_order(line_items=[_line_item()], refunds=[refund]))

    assert normalized.gross_sales == pytest.approx(100.0)
    assert normalized.total_taxes == 0.0


def test_gross_sales_without_line_items_uses_subtotal_plus_discounts():
    """Orders without line items use subtotal plus discounts."""
    normalized = normalize_order(_order(subtotal_price=80.0, total_discounts=20.0))

    assert normalized.gross_sales == pytest.approx(100.0)
    assert normalized.total_taxes == 0.0


def test_refund_amount_sums_lines_shipping_and_adjustments():
    """Refund amount includes lines, shipping and adjustments."""
    refunds = [
        Refund(
            refund_line_items=[
                RefundLineItem(subtotal=40.0, tax=4.0),
                RefundLineItem(subtotal=10.0, tax=1.0),
            ],
            refund_shipping_lines=[RefundShippingLine(amount=5.0, tax=0.5)],
            order_adjustments=[OrderAdjustment(amount=-2.0, reason="restock fee")],
        ),
        Refund(refund_line_items=[RefundLineItem(subtotal=20.0, tax=2.0)]),
    ]

    normalized = normalize_order(_order(refunds=refunds))

    assert normalized.refund_amount == pytest.approx(80.5)
    assert normalized.refund_count == 2


def test_no_refunds_means_zero_refund():
    """Orders without refunds report zero refund."""
    normalized = normalize_order(_order())

    assert normalized.refund_amount == 0.0
    assert normalized.refund_count == 0


@pytest.mark.parametrize(
    "gateways, expected",
    [
        (["Cash on Delivery (COD)"], (True, False)),
        (["cash_on_delivery"], (True, False)),
        (["shopify_payments", "COD"], (True, False)),
        (["shopify_payments"], (False, True)),
        ([], (False, False)),
    ],
)
def test_classify_payment(gateways, expected):
    """COD tokens are matched case-insensitively."""
    assert classify_payment(gateways) == expected


def test_cancelled_flag_from_cancelled_at():
    """cancelled_at marks the order cancelled."""
    normalized = normalize_order(_order(cancelled_at=CREATED))

    assert normalized.cancelled is True


def test_raw_order_from_node_reads_money_sets_and_prefers_legacy_id():
    """GraphQL nodes map to RawOrder using shop money amounts."""
    node = {
        "id": "gid://shopify/Order/555",
        "legacyResourceId": "555",
        "createdAt": "2024-01-02T10:00:00Z",
        "test": False,
        "cancelledAt": None,
        "totalPriceSet": {"shopMoney": {"amount": "105.00"}},
        "subtotalPriceSet": {"shopMoney": {"amount": "100.00"}},
        "totalDiscountsSet": {"shopMoney": {"amount": "0.00"}},
        "totalTaxSet": None,
        "paymentGatewayNames": ["shopify_payments", None],
        "lineItems": {
            "edges": [
                {
                    "node": {
                        "quantity": 2,
                        "originalUnitPriceSet": {"shopMoney": {"amount": "60.00"}},
                        "discountedUnitPriceSet": {"shopMoney": {"amount": "50.00"}},
                        "taxLines": [{"priceSet": {"shopMoney": {"amount": "5.00"}}}],
                    }
                },
                {
                    "node": {
                        "quantity": 1,
                        "originalUnitPriceSet": {"shopMoney": {"amount": "10.00"}},
                        "discountedUnitPriceSet": None,
                        "taxLines": [],
                    }
                },
            ]
        },
        "refunds": [
            {
                "createdAt": "2024-01-03T08:00:00Z",
                "refundLineItems": {
                    "edges": [
                        {
                            "node": {
                                "subtotalSet": {"shopMoney": {"amount": "50.00"}},
                                "totalTaxSet": {"shopMoney": {"amount": "5.00"}},
                            }
                        }
                    ]
                },
                "refundShippingLines": {"edges": []},
                "orderAdjustments": {"edges": []},
            }
        ],
    }

    raw = raw_order_from_node(node)

    assert raw.id == "555"
    assert raw.created_at == datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
    assert raw.total_price == 105.0
    assert raw.total_tax == 0.0
    assert raw.payment_gateway_names == ["shopify_payments"]
    assert [item.unit_price for item in raw.line_items] == [50.0, 10.0]
    assert raw.refunds[0].refund_line_items[0].subtotal == 50.0
    assert normalize_order(raw).refund_amount == pytest.approx(55.0)


@pytest.mark.parametrize(
    "node",
    [
        {"legacyResourceId": "7"},
        {"legacyResourceId": "7", "createdAt": None},
        {"legacyResourceId": "7", "createdAt": "yesterday"},
        {"createdAt": "2024-01-02T10:00:00Z"},
    ],
)
def test_raw_order_from_node_malformed_node_is_fatal(node):
    """Unparseable order nodes surface as FatalError, not KeyError/ValueError."""
    with pytest.raises(FatalError, match="Malformed order node"):
        raw_order_from_node(node)
