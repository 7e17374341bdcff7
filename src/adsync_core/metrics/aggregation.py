"""Bucket normalized orders into per-date commerce partials.

Dates are calendar days in the store's IANA timezone, never UTC or server
local time.
"""
import logging
from typing import Optional
from zoneinfo import ZoneInfo

from ..schemas.metrics import CommerceDailyMetrics, DateWindow, NormalizedOrder
from .debug_log import LoggerRegistry
from .refunds import RefundReconciler


logger = logging.getLogger(__name__)


class CommerceAggregator:
    """Folds normalized orders into CommerceDailyMetrics keyed by local date."""

    def __init__(
        self,
        reconciler: Optional[RefundReconciler] = None,
        logger_registry: Optional[LoggerRegistry] = None,
    ) -> None:
        self.reconciler = reconciler
        self.logger_registry = logger_registry

    def aggregate(
        self,
        brand_id: str,
        orders: list[NormalizedOrder],
        window: DateWindow,
        tz: ZoneInfo,
    ) -> dict[str, CommerceDailyMetrics]:
        """Aggregate orders created inside ``window`` by store-local date.

        Refund totals are reconciled for every order carrying refunds.
        """
        daily: dict[str, CommerceDailyMetrics] = {}
        refunds_processed = 0

        for order in orders:
            local_day = order.created_at.astimezone(tz).date()
            if not window.contains(local_day):
                logger.debug(
                    "Order %s on %s outside %s, skipping", order.id, local_day, window
                )
                continue

            day_key = local_day.isoformat()
            bucket = daily.setdefault(day_key, CommerceDailyMetrics())

            if self.reconciler is not None and order.refund_amount > 0:
                self.reconciler.reconcile(
                    brand_id, order, order.refund_amount, order.refund_count
                )
                refunds_processed += order.refund_count

            if self.logger_registry is not None:
                self.logger_registry.get_or_create(day_key).debug(
                    "Order %s (Date: %s): Payment Gateways: [%s] | isCOD: %s | "
                    "isPrepaid: %s | Cancelled: %s",
                    order.id,
                    day_key,
                    ", ".join(order.payment_gateway_names),
                    order.is_cod,
                    order.is_prepaid,
                    order.cancelled,
                )

            bucket.gross_sales += order.gross_sales
            bucket.total_taxes += order.total_taxes
            bucket.discount_amount += order.discount_amount
            bucket.subtotal_price += order.subtotal_price
            bucket.total_price += order.total_price
            bucket.refund_amount += order.refund_amount

            if order.cancelled:
                bucket.cancelled_order_count += 1
            else:
                bucket.order_count += 1
                if order.is_cod:
                    bucket.cod_order_count += 1
                elif order.is_prepaid:
                    bucket.prepaid_order_count += 1

        logger.info(
            "Aggregated %s orders into %s days for %s (%s refunds processed)",
            len(orders),
            len(daily),
            window,
            refunds_processed,
        )
        return daily
