from decimal import Decimal
from unittest.mock import patch

import pytest

from loyaltyapi.core.exceptions import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from loyaltyapi.models.points import EntryKind, EntryStatus, PointsLedger
from loyaltyapi.schemas.points import PointsShareRequest
from loyaltyapi.services.balance_service import BalanceService
from loyaltyapi.services.point_service import PointService
from tests.conftest import CUSTOMER_ID, MERCHANT_ID, SECOND_CUSTOMER_ID


@pytest.fixture
def balance_service(db, accounts, rate_policy):
    return BalanceService(db, rate_policy)


@pytest.fixture
def point_service(db, accounts, test_settings, rate_policy, notifier):
    return PointService(db, test_settings, rate_policy, notifier)


def _transfer_rows(db):
    return db.query(PointsLedger).filter(PointsLedger.transfer_ref.isnot(None)).all()


class TestBalanceService:
    def test_customer_balance_is_issue_minus_redeem(self, balance_service, ledger_factory):
        ledger_factory(total_points=1200)
        ledger_factory(total_points=300, restaurant_id=2)
        ledger_factory(kind=EntryKind.REDEEM, total_points=500)
        # pending 항목은 잔액에 포함되지 않음
        ledger_factory(total_points=9999, status=EntryStatus.PENDING)

        response = balance_service.get_customer_balance(CUSTOMER_ID)

        assert response.balance == 1000
        assert response.total_issued == 1500
        assert response.total_redeemed == 500
        assert balance_service.customer_balance(CUSTOMER_ID) == 1000

    def test_customer_without_entries_has_zero_balance(self, balance_service):
        assert balance_service.customer_balance(SECOND_CUSTOMER_ID) == 0

    def test_sufficient_for_redeem(self, balance_service, ledger_factory):
        ledger_factory(total_points=2500)

        assert balance_service.sufficient_for_redeem(CUSTOMER_ID, 2500) is True
        assert balance_service.sufficient_for_redeem(CUSTOMER_ID, 2501) is False

    def test_merchant_unpaid_liability(self, balance_service, ledger_factory):
        ledger_factory(total_points=400)
        ledger_factory(total_points=600)
        ledger_factory(total_points=500, customer_id=None)
        ledger_factory(kind=EntryKind.REDEEM, total_points=2500)
        ledger_factory(total_points=700, status=EntryStatus.PENDING)

        liability = balance_service.merchant_unpaid_liability(MERCHANT_ID)

        assert liability.unpaid_points == 1500
        assert liability.unpaid_entry_count == 3
        assert liability.amount == Decimal("150.00")

    def test_lock_customer_is_noop_on_sqlite(self, balance_service):
        balance_service.lock_customer(CUSTOMER_ID)


class TestSharePoints:
    def test_share_creates_linked_pair(self, point_service, ledger_factory, db):
        # Given
        ledger_factory(total_points=500)

        # When
        result = point_service.share_points(
            PointsShareRequest(sender_id=CUSTOMER_ID, recipient_id=SECOND_CUSTOMER_ID, points=100)
        )

        # Then
        assert result.transfer_ref.startswith("TR_")
        assert result.sender_balance == 400
        assert result.sender_entry.kind == EntryKind.REDEEM
        assert result.recipient_entry.kind == EntryKind.ISSUE
        for entry in (result.sender_entry, result.recipient_entry):
            assert entry.status == EntryStatus.COMPLETED
            assert entry.restaurant_id is None
            assert entry.total_points == 100
            assert entry.transfer_ref == result.transfer_ref
            assert entry.qr_code is None

        balances = point_service.balance_service
        assert balances.customer_balance(CUSTOMER_ID) == 400
        assert balances.customer_balance(SECOND_CUSTOMER_ID) == 100
        assert len(point_service.points_repo.get_transfer_entries(result.transfer_ref)) == 2

    def test_share_with_insufficient_balance_creates_nothing(
        self, point_service, ledger_factory, db
    ):
        ledger_factory(total_points=50)

        with pytest.raises(InsufficientBalanceError):
            point_service.share_points(
                PointsShareRequest(
                    sender_id=CUSTOMER_ID, recipient_id=SECOND_CUSTOMER_ID, points=100
                )
            )

        assert _transfer_rows(db) == []
        assert point_service.balance_service.customer_balance(CUSTOMER_ID) == 50

    def test_share_never_creates_only_one_side(self, point_service, ledger_factory, db):
        ledger_factory(total_points=500)
        original_create = point_service.points_repo.create_entry
        calls = []

        def fail_on_second_insert(**kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise RuntimeError("connection lost")
            return original_create(**kwargs)

        with patch.object(
            point_service.points_repo, "create_entry", side_effect=fail_on_second_insert
        ):
            with pytest.raises(RuntimeError):
                point_service.share_points(
                    PointsShareRequest(
                        sender_id=CUSTOMER_ID, recipient_id=SECOND_CUSTOMER_ID, points=100
                    )
                )

        assert len(calls) == 2
        assert _transfer_rows(db) == []
        assert point_service.balance_service.customer_balance(CUSTOMER_ID) == 500

    def test_share_with_self_is_rejected(self, point_service):
        with pytest.raises(ValidationError):
            point_service.share_points(
                PointsShareRequest(sender_id=CUSTOMER_ID, recipient_id=CUSTOMER_ID, points=10)
            )

    def test_share_with_non_positive_points_is_rejected(self, point_service):
        request = PointsShareRequest.model_construct(
            sender_id=CUSTOMER_ID, recipient_id=SECOND_CUSTOMER_ID, points=0
        )

        with pytest.raises(ValidationError):
            point_service.share_points(request)

    def test_share_with_unknown_recipient(self, point_service, ledger_factory):
        ledger_factory(total_points=500)

        with pytest.raises(NotFoundError):
            point_service.share_points(
                PointsShareRequest(sender_id=CUSTOMER_ID, recipient_id=777, points=10)
            )
