"""Daily order analytics with percentile statistics."""

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from orderdesk.core.exceptions import SchemaDriftHandled
from orderdesk.models.analytics import AnalyticsDayBucket, OrdersAnalytics
from orderdesk.models.orders import PaymentLog, utcnow
from orderdesk.services.item_recalculator import round2
from orderdesk.services.order_service import OrderService
from orderdesk.services.schema_capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)

ANALYTICS_TIMEZONE = "UTC"
RANGE_DAYS = {"30d": 30, "90d": 90, "180d": 180, "365d": 365}
DEFAULT_RANGE = "90d"

SCHOOL_ALIASES = ("school", "sola", "šola", "vrtec")
INDIVIDUAL_ALIASES = ("individual", "person", "fizicna", "fizična")


def percentile(values: Sequence[float], rank: float) -> Optional[float]:
    """Linear-interpolation percentile; ``None`` for an empty sequence.

    >>> percentile([10, 20, 30, 40], 0.5)
    25.0
    """
    if not values:
        return None
    ordered = sorted(values)
    index = (len(ordered) - 1) * rank
    lower_index = int(index)
    upper_index = min(lower_index + 1, len(ordered) - 1)
    weight = index - lower_index
    if weight == 0 or lower_index == upper_index:
        return float(ordered[lower_index])
    lower = ordered[lower_index]
    upper = ordered[upper_index]
    return float(lower + (upper - lower) * weight)


def normalize_range(value: Optional[str]) -> str:
    return value if value in RANGE_DAYS else DEFAULT_RANGE


def parse_day(value: Optional[str]) -> Optional[date]:
    """``YYYY-MM-DD`` to a date; anything else is ignored."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def resolve_window(
    range_value: str,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """Inclusive first and last day of the analytics window."""
    end = parse_day(date_to) or today or utcnow().date()
    start = parse_day(date_from) or end - timedelta(days=RANGE_DAYS[range_value] - 1)
    if start > end:
        start, end = end, start
    return start, end


def customer_bucket(customer_type: Optional[str]) -> str:
    value = (customer_type or "").strip().lower()
    if value in SCHOOL_ALIASES:
        return "school"
    if value in INDIVIDUAL_ALIASES:
        return "individual"
    return "company"


def status_label(status: Optional[str]) -> str:
    return (status or "").strip() or "unknown"


def _rounded(value) -> float:
    return float(round2(Decimal(str(value))))


class AnalyticsService:
    """Service for aggregating finalized orders into daily buckets."""

    def __init__(self, session: Session, capabilities: Optional[SchemaCapabilities] = None):
        self.session = session
        self.capabilities = capabilities or SchemaCapabilities.full()

    def fetch_paid_timestamps(self, order_ids: List[int]) -> Dict[int, datetime]:
        """First ``paid`` payment event per order.

        Raises SchemaDriftHandled when the payment log cannot be read.
        """
        if not order_ids:
            return {}
        if not self.capabilities.supports_payment_log():
            raise SchemaDriftHandled("Payment log table is not available.")
        try:
            rows = self.session.exec(
                select(PaymentLog.order_id, func.min(PaymentLog.created_at))
                .where(PaymentLog.order_id.in_(order_ids), PaymentLog.new_status == "paid")
                .group_by(PaymentLog.order_id)
            ).all()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise SchemaDriftHandled(f"Payment log is not readable: {e}") from e
        return {order_id: paid_at for order_id, paid_at in rows if paid_at is not None}

    def aggregate(
        self,
        range_value: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        today: Optional[date] = None,
    ) -> OrdersAnalytics:
        range_value = normalize_range(range_value)
        start, end = resolve_window(range_value, date_from, date_to, today)

        orders = OrderService(self.session, capabilities=self.capabilities).fetch_orders(
            date_from=datetime.combine(start, time.min),
            date_to=datetime.combine(end, time.max),
        )
        try:
            paid_at = self.fetch_paid_timestamps([order.id for order in orders])
        except SchemaDriftHandled as e:
            logger.warning("Lead times unavailable: %s", e.message)
            paid_at = {}

        buckets: Dict[str, dict] = {}
        day = start
        while day <= end:
            buckets[day.isoformat()] = {
                "bucket": AnalyticsDayBucket(date=day.isoformat()),
                "revenue": Decimal("0"),
                "values": [],
                "lead_hours": [],
            }
            day += timedelta(days=1)

        for order in orders:
            slot = buckets.get(order.created_at.date().isoformat())
            if slot is None:
                continue
            bucket = slot["bucket"]
            total = order.total or Decimal("0")

            bucket.order_count += 1
            slot["revenue"] += total
            slot["values"].append(float(total))

            status = status_label(order.status)
            bucket.status_buckets[status] = bucket.status_buckets.get(status, 0) + 1
            if status == "cancelled":
                bucket.cancelled_count += 1

            payment_status = status_label(order.payment_status)
            bucket.payment_status_buckets[payment_status] = (
                bucket.payment_status_buckets.get(payment_status, 0) + 1
            )
            if payment_status == "paid":
                bucket.paid_count += 1

            bucket.customer_type_buckets[customer_bucket(order.customer_type)] += 1

            paid = paid_at.get(order.id)
            if paid is not None:
                lead_hours = (paid - order.created_at).total_seconds() / 3600
                if lead_hours >= 0:
                    slot["lead_hours"].append(lead_hours)

        days = []
        for slot in buckets.values():
            bucket = slot["bucket"]
            count = bucket.order_count
            bucket.revenue_total = _rounded(slot["revenue"])
            if count:
                bucket.aov = _rounded(slot["revenue"] / count)
                bucket.payment_success_rate = _rounded(bucket.paid_count * 100 / count)
                bucket.cancellation_rate = _rounded(bucket.cancelled_count * 100 / count)
            bucket.median_order_value = _rounded(percentile(slot["values"], 0.5) or 0)

            p50 = percentile(slot["lead_hours"], 0.5)
            p90 = percentile(slot["lead_hours"], 0.9)
            bucket.lead_time_p50_hours = None if p50 is None else _rounded(p50)
            bucket.lead_time_p90_hours = None if p90 is None else _rounded(p90)
            days.append(bucket)

        logger.debug("Aggregated %d orders into %d days", len(orders), len(days))
        return OrdersAnalytics(
            timezone=ANALYTICS_TIMEZONE,
            range=range_value,
            grouping="day",
            date_from=start.isoformat(),
            date_to=end.isoformat(),
            days=days,
        )
