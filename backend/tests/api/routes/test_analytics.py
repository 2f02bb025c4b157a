from datetime import datetime

from fastapi.testclient import TestClient
from sqlalchemy import update
from sqlmodel import Session

from orderdesk.models.orders import Order

from tests.utils.test_utils import assert_response_success, create_test_order


class TestAnalyticsAPI:
    """Test cases for the analytics endpoint."""

    def test_orders_analytics_window(self, client: TestClient, db: Session):
        order = create_test_order(db)
        db.exec(update(Order).where(Order.id == order.id).values(created_at=datetime(2025, 3, 2, 10, 0)))
        db.commit()

        response = client.get(
            "/api/v1/admin/analytics/orders",
            params={"range": "30d", "from": "2025-03-01", "to": "2025-03-03"},
        )
        assert_response_success(response)

        data = response.json()
        assert data["timezone"] == "UTC"
        assert data["range"] == "30d"
        assert data["grouping"] == "day"
        assert data["from"] == "2025-03-01"
        assert data["to"] == "2025-03-03"
        assert [day["order_count"] for day in data["days"]] == [0, 1, 0]
        assert data["days"][1]["revenue_total"] == 1.22
        assert data["days"][1]["lead_time_p50_hours"] is None

    def test_orders_analytics_defaults(self, client: TestClient):
        response = client.get("/api/v1/admin/analytics/orders", params={"range": "bogus"})
        assert_response_success(response)

        data = response.json()
        assert data["range"] == "90d"
        assert len(data["days"]) == 90
        assert all(day["order_count"] == 0 for day in data["days"])
