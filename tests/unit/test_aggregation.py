"""Unit tests for CommerceAggregator."""
from datetime import date, datetime, timezone
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from src.adsync_core.metrics.aggregation import CommerceAggregator
from src.adsync_core.metrics.debug_log import LoggerRegistry
from src.adsync_core.schemas.metrics import DateWindow, NormalizedOrder


def _order(order_id: str, created_at: datetime, **kwargs) -> NormalizedOrder:
    defaults = {"id": order_id, "created_at": created_at, "total_price": 100.0}
    defaults.update(kwargs)
    return NormalizedOrder(**defaults)


@pytest.fixture
def window():
    return DateWindow(start=date(2024, 1, 1), end=date(2024, 1, 3))


def test_orders_bucketed_by_store_local_date(window):
    """Orders land on the date they were placed in the store's timezone."""
    # 20:00 UTC on Jan 1 is already Jan 2 in Kolkata (+05:30)
    orders = [
        _order("1", datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)),
        _order("2", datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)),
    ]

    daily = CommerceAggregator().aggregate(
        "b1", orders, window, ZoneInfo("Asia/Kolkata")
    )

    assert sorted(daily) == ["2024-01-01", "2024-01-02"]
    assert daily["2024-01-01"].order_count == 1
    assert daily["2024-01-02"].order_count == 1


def test_counts_cod_prepaid_and_cancelled(window):
    """COD, prepaid and cancelled orders are counted per day."""
    created = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    orders = [
        _order("1", created, is_cod=True),
        _order("2", created, is_prepaid=True),
        _order("3", created, is_prepaid=True),
        _order("4", created, is_cod=True, cancelled=True),
    ]

    day = CommerceAggregator().aggregate("b1", orders, window, ZoneInfo("UTC"))[
        "2024-01-01"
    ]

    assert day.order_count == 3
    assert day.cancelled_order_count == 1
    assert day.cod_order_count == 1
    assert day.prepaid_order_count == 2
    assert day.total_price == 400.0


def test_orders_outside_window_are_skipped(window):
    """Orders whose local date falls outside the window are ignored."""
    orders = [_order("1", datetime(2024, 1, 3, 0, 0, tzinfo=timezone.utc))]

    daily = CommerceAggregator().aggregate("b1", orders, window, ZoneInfo("UTC"))

    assert daily == {}


def test_refunded_orders_are_reconciled(window):
    """Refunded orders are written to the refund store."""
    reconciler = MagicMock()
    refunded = _order(
        "1",
        datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        refund_amount=25.0,
        refund_count=2,
    )
    plain = _order("2", datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc))

    daily = CommerceAggregator(reconciler=reconciler).aggregate(
        "b1", [refunded, plain], window, ZoneInfo("UTC")
    )

    reconciler.reconcile.assert_called_once_with("b1", refunded, 25.0, 2)
    assert daily["2024-01-01"].refund_amount == 25.0


def test_payment_decisions_written_to_per_date_debug_log(window, tmp_path):
    """Payment classification lines go to the matching date's debug log."""
    registry = LoggerRegistry(tmp_path)
    orders = [
        _order(
            "1",
            datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc),
            is_cod=True,
            payment_gateway_names=["Cash on Delivery (COD)"],
        )
    ]

    CommerceAggregator(logger_registry=registry).aggregate(
        "b1", orders, window, ZoneInfo("UTC")
    )
    registry.close()

    content = (tmp_path / "payment_debug_2024_01_02.log").read_text()
    assert "Order 1" in content
    assert "isCOD: True" in content
