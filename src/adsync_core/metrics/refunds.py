"""Refund reconciliation against the order refund store."""
import logging
from typing import Optional

from ..schemas.metrics import NormalizedOrder
from .store import MetricsStore


logger = logging.getLogger(__name__)


class RefundReconciler:
    """Keeps one refund record per (brand, order) holding the latest totals.

    Amounts are overwritten, never accumulated, so re-running a window
    converges on the same stored values.
    """

    def __init__(self, store: MetricsStore) -> None:
        self.store = store

    def reconcile(
        self,
        brand_id: Optional[str],
        order: NormalizedOrder,
        refund_amount: float,
        refund_count: int,
    ) -> bool:
        """Record the order's refund totals.

        Returns:
            True when the store was written
        """
        if not brand_id or refund_amount <= 0:
            return False

        try:
            self.store.ensure_refund_record(brand_id, order.id, order.created_at)
            self.store.set_refund_record(brand_id, order.id, refund_amount, refund_count)
        except Exception as exc:
            logger.error(
                "Failed to store refund for order %s (brand=%s): %s",
                order.id,
                brand_id,
                exc,
            )
            return False

        logger.debug(
            "Refund for order %s set to %.2f across %s refunds",
            order.id,
            refund_amount,
            refund_count,
        )
        return True
