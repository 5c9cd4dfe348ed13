from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from loyaltyapi.core.exceptions import (
    DuplicateIssuanceError,
    InsufficientBalanceError,
    NotFoundError,
)
from loyaltyapi.database.session import get_db
from loyaltyapi.deps import get_balance_service, get_point_service
from loyaltyapi.main import create_app
from loyaltyapi.models.points import EntryKind, EntryStatus
from loyaltyapi.schemas.points import (
    CustomerBalanceResponse,
    MerchantLiabilityResponse,
    PointsEntry,
    PointsListResponse,
)
from tests.conftest import CUSTOMER_ID, MERCHANT_ID


def _entry(**overrides) -> PointsEntry:
    data = dict(
        id=1,
        kind=EntryKind.ISSUE,
        status=EntryStatus.PENDING,
        restaurant_id=MERCHANT_ID,
        customer_id=None,
        line_items=[{"name": "Burger", "unit_price": "12.50", "quantity": 2, "points": 250}],
        total_price=Decimal("25.00"),
        total_points=250,
        points_per_dollar=Decimal("10"),
        qr_code="QR_" + "0" * 32,
        created_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return PointsEntry(**data)


@pytest.fixture
def point_service():
    return Mock()


@pytest.fixture
def balance_service():
    return Mock()


@pytest.fixture
def client(test_settings, point_service, balance_service):
    """서비스를 모의 객체로 대체한 테스트 클라이언트"""
    app = create_app(test_settings)
    app.dependency_overrides[get_point_service] = lambda: point_service
    app.dependency_overrides[get_balance_service] = lambda: balance_service
    return TestClient(app)


class TestPointRoutes:
    """포인트 라우터 테스트"""

    def test_create_entry(self, client, point_service):
        # Given
        point_service.create_entry.return_value = _entry()

        # When
        response = client.post(
            "/api/v1/points",
            json={
                "restaurant_id": MERCHANT_ID,
                "line_items": [{"name": "Burger", "unit_price": "12.50", "quantity": 2}],
            },
        )

        # Then
        assert response.status_code == 201
        data = response.json()
        assert data["total_points"] == 250
        assert data["qr_code"].startswith("QR_")
        request = point_service.create_entry.call_args.args[0]
        assert request.kind == EntryKind.ISSUE
        assert request.line_items[0].unit_price == Decimal("12.50")

    def test_create_entry_rejects_empty_line_items(self, client, point_service):
        response = client.post(
            "/api/v1/points", json={"restaurant_id": MERCHANT_ID, "line_items": []}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"
        point_service.create_entry.assert_not_called()

    def test_create_entry_rejects_non_positive_price(self, client, point_service):
        response = client.post(
            "/api/v1/points",
            json={
                "restaurant_id": MERCHANT_ID,
                "line_items": [{"name": "Burger", "unit_price": "0", "quantity": 1}],
            },
        )

        assert response.status_code == 422
        point_service.create_entry.assert_not_called()

    def test_get_entry_not_found(self, client, point_service):
        point_service.get_entry.side_effect = NotFoundError("Points entry 99 not found")

        response = client.get("/api/v1/points/99")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND_001"

    def test_get_entry_by_qr_code(self, client, point_service):
        point_service.get_entry_by_qr_code.return_value = _entry()

        response = client.get("/api/v1/points/qr/QR_abc")

        assert response.status_code == 200
        point_service.get_entry_by_qr_code.assert_called_once_with("QR_abc")

    def test_scan_qr_code(self, client, point_service):
        point_service.scan_qr_code.return_value = _entry(
            status=EntryStatus.COMPLETED,
            customer_id=CUSTOMER_ID,
            completed_at=datetime(2024, 1, 15, 12, 5, tzinfo=timezone.utc),
        )

        response = client.post("/api/v1/points/scan/QR_abc", json={"customer_id": CUSTOMER_ID})

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        point_service.scan_qr_code.assert_called_once_with("QR_abc", customer_id=CUSTOMER_ID)

    def test_scan_without_body(self, client, point_service):
        point_service.scan_qr_code.return_value = _entry(status=EntryStatus.COMPLETED)

        response = client.post("/api/v1/points/scan/QR_abc")

        assert response.status_code == 200
        point_service.scan_qr_code.assert_called_once_with("QR_abc", customer_id=None)

    def test_scan_already_issued_returns_conflict(self, client, point_service):
        point_service.scan_qr_code.side_effect = DuplicateIssuanceError()

        response = client.post("/api/v1/points/scan/QR_abc")

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "POINTS_ALREADY_ISSUED"
        assert "already been issued" in error["message"]

    def test_complete_redeem_with_insufficient_balance(self, client, point_service):
        point_service.complete_entry.side_effect = InsufficientBalanceError(
            details={"required": 2500, "available": 1000}
        )

        response = client.post("/api/v1/points/1/complete", json={"customer_id": CUSTOMER_ID})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["available"] == 1000

    def test_update_entry(self, client, point_service):
        point_service.update_entry.return_value = _entry(notes="no onions")

        response = client.patch("/api/v1/points/1", json={"notes": "no onions"})

        assert response.status_code == 200
        entry_id, request = point_service.update_entry.call_args.args
        assert entry_id == 1
        assert request.notes == "no onions"

    def test_update_entry_requires_a_field(self, client, point_service):
        response = client.patch("/api/v1/points/1", json={})

        assert response.status_code == 422
        point_service.update_entry.assert_not_called()

    def test_list_restaurant_points(self, client, point_service):
        point_service.list_restaurant_entries.return_value = PointsListResponse(
            entries=[_entry()], total_count=1, limit=10, offset=0, has_next=False
        )

        response = client.get(
            f"/api/v1/restaurants/{MERCHANT_ID}/points",
            params={"status": "pending", "limit": 10},
        )

        assert response.status_code == 200
        assert response.json()["total_count"] == 1
        point_service.list_restaurant_entries.assert_called_once_with(
            MERCHANT_ID, status=EntryStatus.PENDING, limit=10, offset=0
        )

    def test_share_points(self, client, point_service):
        point_service.share_points.side_effect = InsufficientBalanceError()

        response = client.post(
            "/api/v1/points/share",
            json={"sender_id": CUSTOMER_ID, "recipient_id": 11, "points": 100},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BALANCE_001"

    def test_customer_balance(self, client, balance_service):
        balance_service.get_customer_balance.return_value = CustomerBalanceResponse(
            customer_id=CUSTOMER_ID, balance=1000, total_issued=1500, total_redeemed=500
        )

        response = client.get(f"/api/v1/customers/{CUSTOMER_ID}/balance")

        assert response.status_code == 200
        assert response.json()["balance"] == 1000

    def test_restaurant_liability(self, client, balance_service):
        balance_service.merchant_unpaid_liability.return_value = MerchantLiabilityResponse(
            restaurant_id=MERCHANT_ID,
            unpaid_points=1500,
            unpaid_entry_count=3,
            amount=Decimal("150.00"),
        )

        response = client.get(f"/api/v1/restaurants/{MERCHANT_ID}/liability")

        assert response.status_code == 200
        assert response.json()["unpaid_points"] == 1500


class TestPointFlow:
    """실제 서비스와 SQLite 를 사용한 생성 -> 스캔 -> 중복 스캔 흐름"""

    @pytest.fixture
    def live_client(self, test_settings, db, accounts):
        app = create_app(test_settings)

        def _get_db():
            yield db

        app.dependency_overrides[get_db] = _get_db
        return TestClient(app)

    def test_create_scan_and_rescan(self, live_client):
        created = live_client.post(
            "/api/v1/points",
            json={
                "restaurant_id": MERCHANT_ID,
                "line_items": [{"name": "Burger", "unit_price": "12.50", "quantity": 2}],
            },
        )
        assert created.status_code == 201
        qr_code = created.json()["qr_code"]

        first = live_client.post(f"/api/v1/points/scan/{qr_code}", json={"customer_id": CUSTOMER_ID})
        second = live_client.post(f"/api/v1/points/scan/{qr_code}", json={"customer_id": CUSTOMER_ID})
        balance = live_client.get(f"/api/v1/customers/{CUSTOMER_ID}/balance")
        health = live_client.get("/health")

        assert first.status_code == 200
        assert first.json()["status"] == "completed"
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "POINTS_ALREADY_ISSUED"
        assert balance.json()["balance"] == 250
        assert health.json()["status"] == "healthy"
