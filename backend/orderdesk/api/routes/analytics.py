"""Order analytics API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from orderdesk.api.deps import get_capabilities, get_db
from orderdesk.models.analytics import OrdersAnalytics
from orderdesk.services import AnalyticsService, SchemaCapabilities

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/analytics", tags=["analytics"])


@router.get("/orders", response_model=OrdersAnalytics)
def orders_analytics(
    range_value: Optional[str] = Query(default=None, alias="range"),
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrdersAnalytics:
    """
    Daily order buckets for a range such as ``30d`` or an explicit ``from``/``to`` window.
    """
    try:
        return AnalyticsService(session, capabilities).aggregate(range_value, date_from, date_to)
    except Exception as e:
        logger.error("Analytics aggregation failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
