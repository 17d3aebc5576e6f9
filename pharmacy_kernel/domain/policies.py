"""
Policies -- pure inventory rules.

Responsibility:
    The fixed alerting, reorder and status rules of the engine, expressed as
    pure functions over plain values.  Thresholds come from EngineConfig;
    the rules themselves do not change.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Services call these
    functions with values read under lock; selectors call them to project
    statuses on read.

Rules:
    Expiry severity      first band whose limit >= days remaining
    Reorder severity     remaining == 0 -> critical
                         remaining <= reorder_point // divisor -> high
                         remaining <= reorder_point -> medium
    Automatic order      remaining <= reorder_point // divisor
    Stock status         RECALLED, EXPIRED, CRITICAL_EXPIRY, NEAR_EXPIRY,
                         LOW_STOCK, OK (first match wins)
    Reorder status       REORDER_NOW (stock <= minimum),
                         REORDER_SOON (stock <= reorder point), OK
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID

from pharmacy_kernel.config import ExpiryBands

TWO_PLACES = Decimal("0.01")


class StockStatus(str, Enum):
    RECALLED = "RECALLED"
    EXPIRED = "EXPIRED"
    CRITICAL_EXPIRY = "CRITICAL_EXPIRY"
    NEAR_EXPIRY = "NEAR_EXPIRY"
    LOW_STOCK = "LOW_STOCK"
    OK = "OK"


class ReorderStatus(str, Enum):
    REORDER_NOW = "REORDER_NOW"
    REORDER_SOON = "REORDER_SOON"
    OK = "OK"


def expiry_severity(days_remaining: int, bands: ExpiryBands, default: str | None = None) -> str | None:
    """Severity of the first band covering ``days_remaining``, else ``default``."""
    for max_days, severity in bands:
        if days_remaining <= max_days:
            return severity
    return default


def receipt_expiry_message(
    medicine_name: str,
    batch_number: str,
    days_remaining: int,
    bands: ExpiryBands,
) -> str | None:
    """
    Message for an expiry alert raised when a batch is received.

    The tightest band names the exact day count; wider bands name their limit.
    Returns None when the batch falls outside every band.
    """
    for index, (max_days, _severity) in enumerate(bands):
        if days_remaining <= max_days:
            if index == 0:
                return f"{medicine_name} (Batch: {batch_number}) expires in {days_remaining} days"
            return f"{medicine_name} (Batch: {batch_number}) expires within {max_days} days"
    return None


def scan_expiry_message(medicine_name: str, batch_number: str, days_remaining: int) -> str:
    return f"{medicine_name} (Batch: {batch_number}) expires in {days_remaining} days"


def reorder_threshold(reorder_point: int, divisor: int) -> int:
    return reorder_point // divisor


def reorder_severity(remaining: int, reorder_point: int, divisor: int) -> str | None:
    """Severity of a reorder alert, or None when stock is above the reorder point."""
    if remaining > reorder_point:
        return None
    if remaining == 0:
        return "critical"
    if remaining <= reorder_threshold(reorder_point, divisor):
        return "high"
    return "medium"


def needs_auto_order(remaining: int, reorder_point: int, divisor: int) -> bool:
    return remaining <= reorder_threshold(reorder_point, divisor)


def reorder_message(medicine_name: str, remaining: int) -> str:
    return f"Stock below reorder point for {medicine_name}. Current: {remaining}"


def recall_message(medicine_name: str, batch_number: str, reason: str) -> str:
    return f"URGENT RECALL: {medicine_name} (Batch: {batch_number}) - {reason}"


def build_order_number(prefix: str, order_date: date, medicine_id: UUID) -> str:
    return f"{prefix}-{order_date:%Y%m%d}-{medicine_id}"


def classify_stock_status(
    *,
    is_recalled: bool,
    expiry_date: date,
    quantity: int,
    minimum_stock_level: int,
    today: date,
    critical_expiry_days: int = 7,
    near_expiry_days: int = 30,
) -> StockStatus:
    if is_recalled:
        return StockStatus.RECALLED
    days = (expiry_date - today).days
    if days <= 0:
        return StockStatus.EXPIRED
    if days <= critical_expiry_days:
        return StockStatus.CRITICAL_EXPIRY
    if days <= near_expiry_days:
        return StockStatus.NEAR_EXPIRY
    if quantity <= minimum_stock_level:
        return StockStatus.LOW_STOCK
    return StockStatus.OK


def classify_reorder_status(total_stock: int, minimum_stock_level: int, reorder_point: int) -> ReorderStatus:
    if total_stock <= minimum_stock_level:
        return ReorderStatus.REORDER_NOW
    if total_stock <= reorder_point:
        return ReorderStatus.REORDER_SOON
    return ReorderStatus.OK


def quantize_rating(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def overall_rating(quality: int, delivery: int, communication: int) -> Decimal:
    """Mean of the three scores, to 2 decimal places."""
    return quantize_rating(Decimal(quality + delivery + communication) / Decimal(3))


def mean_rating(ratings: list[Decimal]) -> Decimal | None:
    if not ratings:
        return None
    return quantize_rating(sum(ratings, Decimal(0)) / Decimal(len(ratings)))


def on_time_delivery_rate(on_time: int, delivered: int) -> Decimal | None:
    """Percentage of delivered orders that arrived on or before the expected date."""
    if delivered == 0:
        return None
    return quantize_rating(Decimal(on_time) * Decimal(100) / Decimal(delivered))
