"""Order normalization: GraphQL order nodes to computation-ready orders.

Gross sales rule: when an order has any refund, line-item tax is not
subtracted from gross sales and the order contributes no taxes.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..schemas.metrics import (
    LineItem,
    NormalizedOrder,
    OrderAdjustment,
    RawOrder,
    Refund,
    RefundLineItem,
    RefundShippingLine,
    TaxLine,
)
from ..transport.exceptions import FatalError


logger = logging.getLogger(__name__)


COD_GATEWAY_TOKENS = ("cod", "cash on delivery", "cash_on_delivery")


def _safe_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _money(node: Optional[dict], key: str) -> float:
    """Read ``node[key].shopMoney.amount`` as float (0 when missing)."""
    if not node:
        return 0.0
    money_set = node.get(key) or {}
    shop_money = money_set.get("shopMoney") or {}
    return _safe_float(shop_money.get("amount"))


def _edges(node: Optional[dict], key: str) -> list[dict]:
    if not node:
        return []
    connection = node.get(key) or {}
    return [edge.get("node") or {} for edge in connection.get("edges") or []]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def raw_order_from_node(node: dict) -> RawOrder:
    """Build a RawOrder from an ``orders.edges[].node`` GraphQL payload.

    Raises:
        FatalError: When the node is missing required fields or holds
            values that cannot be parsed
    """
    try:
        return _build_raw_order(node)
    except (KeyError, TypeError, ValueError) as exc:
        # pydantic ValidationError is a ValueError
        order_ref = node.get("legacyResourceId") or node.get("id") or "<unknown>"
        raise FatalError(f"Malformed order node {order_ref}: {exc!r}") from exc


def _build_raw_order(node: dict) -> RawOrder:
    order_id = node.get("legacyResourceId") or node["id"]

    line_items = []
    for item in _edges(node, "lineItems"):
        unit_price = _money(item, "discountedUnitPriceSet") or _money(
            item, "originalUnitPriceSet"
        )
        line_items.append(
            LineItem(
                quantity=int(item.get("quantity") or 0),
                unit_price=unit_price,
                tax_lines=[
                    TaxLine(price=_money(tax, "priceSet"))
                    for tax in item.get("taxLines") or []
                ],
            )
        )

    refunds = []
    for refund in node.get("refunds") or []:
        refunds.append(
            Refund(
                created_at=parse_timestamp(refund.get("createdAt")),
                refund_line_items=[
                    RefundLineItem(
                        subtotal=_money(line, "subtotalSet"),
                        tax=_money(line, "totalTaxSet"),
                    )
                    for line in _edges(refund, "refundLineItems")
                ],
                refund_shipping_lines=[
                    RefundShippingLine(
                        amount=_money(line, "subtotalAmountSet"),
                        tax=_money(line, "taxAmountSet"),
                    )
                    for line in _edges(refund, "refundShippingLines")
                ],
                order_adjustments=[
                    OrderAdjustment(
                        amount=_money(adjustment, "amountSet"),
                        reason=adjustment.get("reason"),
                    )
                    for adjustment in _edges(refund, "orderAdjustments")
                ],
            )
        )

    return RawOrder(
        id=str(order_id),
        created_at=parse_timestamp(node["createdAt"]),
        cancelled_at=parse_timestamp(node.get("cancelledAt")),
        test=bool(node.get("test")),
        total_price=_money(node, "totalPriceSet"),
        subtotal_price=_money(node, "subtotalPriceSet"),
        total_discounts=_money(node, "totalDiscountsSet"),
        total_tax=_money(node, "totalTaxSet"),
        line_items=line_items,
        payment_gateway_names=[
            name for name in node.get("paymentGatewayNames") or [] if name
        ],
        refunds=refunds,
    )


def calculate_gross_sales_and_taxes(
    order: RawOrder, has_refunds: bool
) -> tuple[float, float]:
    """Return (gross_sales, total_taxes) for an order.

    With line items, each item contributes ``unit_price * quantity`` minus its
    tax lines; taxes are skipped entirely for orders with refunds. Without line
    items, gross sales fall back to ``subtotal_price + total_discounts``.
    """
    if not order.line_items:
        return order.subtotal_price + order.total_discounts, 0.0

    gross_sales = 0.0
    total_taxes = 0.0
    for item in order.line_items:
        unit_total = item.unit_price * item.quantity
        tax_total = 0.0
        if not has_refunds:
            tax_total = sum(tax.price for tax in item.tax_lines)
        total_taxes += tax_total
        gross_sales += unit_total - tax_total

    return gross_sales, total_taxes


def refund_total(refund: Refund) -> float:
    """Line subtotal + line tax + shipping amount + shipping tax + adjustments."""
    lines = sum(line.subtotal + line.tax for line in refund.refund_line_items)
    shipping = sum(line.amount + line.tax for line in refund.refund_shipping_lines)
    adjustments = sum(adjustment.amount for adjustment in refund.order_adjustments)
    return lines + shipping + adjustments


def calculate_refund_amount(order: RawOrder) -> tuple[float, int]:
    """Return (refund_amount, refund_count) summed across all refunds."""
    if not order.refunds:
        return 0.0, 0
    amount = sum(refund_total(refund) for refund in order.refunds)
    return amount, len(order.refunds)


def classify_payment(gateway_names: list[str]) -> tuple[bool, bool]:
    """Return (is_cod, is_prepaid) from payment gateway names."""
    is_cod = any(
        token in name.lower()
        for name in gateway_names
        if name
        for token in COD_GATEWAY_TOKENS
    )
    is_prepaid = not is_cod and len(gateway_names) > 0
    return is_cod, is_prepaid


def normalize_order(order: RawOrder) -> NormalizedOrder:
    """Project a RawOrder into the flat shape used for daily aggregation."""
    has_refunds = len(order.refunds) > 0
    gross_sales, total_taxes = calculate_gross_sales_and_taxes(order, has_refunds)
    refund_amount, refund_count = calculate_refund_amount(order)
    is_cod, is_prepaid = classify_payment(order.payment_gateway_names)

    if has_refunds:
        logger.debug(
            "Order %s has %s refunds totalling %.2f, taxes excluded",
            order.id,
            refund_count,
            refund_amount,
        )

    return NormalizedOrder(
        id=order.id,
        created_at=order.created_at,
        cancelled=order.cancelled_at is not None,
        gross_sales=gross_sales,
        total_taxes=total_taxes,
        discount_amount=order.total_discounts,
        subtotal_price=order.subtotal_price,
        total_price=order.total_price,
        refund_amount=refund_amount,
        refund_count=refund_count,
        is_cod=is_cod,
        is_prepaid=is_prepaid,
        payment_gateway_names=list(order.payment_gateway_names),
    )
