"""Derived analytics shapes; nothing here is persisted."""

from typing import Dict, List, Optional

from sqlmodel import Field, SQLModel


class AnalyticsDayBucket(SQLModel):
    """Aggregates for one UTC calendar day."""
    date: str
    order_count: int = 0
    revenue_total: float = 0.0
    aov: float = 0.0
    median_order_value: float = 0.0
    cancelled_count: int = 0
    paid_count: int = 0
    payment_success_rate: float = 0.0
    cancellation_rate: float = 0.0
    status_buckets: Dict[str, int] = Field(default_factory=dict)
    payment_status_buckets: Dict[str, int] = Field(default_factory=dict)
    customer_type_buckets: Dict[str, int] = Field(
        default_factory=lambda: {"company": 0, "school": 0, "individual": 0}
    )
    lead_time_p50_hours: Optional[float] = None
    lead_time_p90_hours: Optional[float] = None


class OrdersAnalytics(SQLModel):
    """Daily buckets over an inclusive window."""
    timezone: str = "UTC"
    range: str
    grouping: str = "day"
    date_from: str = Field(alias="from")
    date_to: str = Field(alias="to")
    days: List[AnalyticsDayBucket] = Field(default_factory=list)

    model_config = {"populate_by_name": True}
