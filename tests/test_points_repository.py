from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from loyaltyapi.core.exceptions import LedgerIntegrityError
from loyaltyapi.models.points import EntryKind, EntryStatus
from loyaltyapi.repositories.payment_repository import PaymentRepository
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.schemas.payments import MerchantPayoutProfile
from tests.conftest import CUSTOMER_ID, MERCHANT_ID, SECOND_CUSTOMER_ID, SECOND_MERCHANT_ID


@pytest.fixture
def repo(db, accounts):
    return PointsRepository(db)


@pytest.fixture
def payment(db, accounts):
    profile = MerchantPayoutProfile(
        restaurant_id=MERCHANT_ID, restaurant_name="Burger Barn", payment_method_id="pm_burger"
    )
    return PaymentRepository(db).create_debit(
        profile, Decimal("10.00"), 100, [], external_reference="pi_1", description="test"
    )


class TestPointsRepository:
    def test_qr_code_is_unique(self, repo, ledger_factory):
        ledger_factory(status=EntryStatus.PENDING, qr_code="QR_same")

        with pytest.raises(IntegrityError):
            repo.create_entry(
                kind=EntryKind.ISSUE,
                restaurant_id=MERCHANT_ID,
                line_items=[],
                total_price=Decimal("1.00"),
                total_points=10,
                points_per_dollar=Decimal("10"),
                qr_code="QR_same",
            )

    def test_complete_if_pending_succeeds_only_once(self, repo, ledger_factory):
        entry = ledger_factory(status=EntryStatus.PENDING, customer_id=None)
        now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

        first = repo.complete_if_pending(entry.id, now, customer_id=CUSTOMER_ID)
        second = repo.complete_if_pending(entry.id, now, customer_id=CUSTOMER_ID)

        assert first is True
        assert second is False
        stored = repo.get_entry(entry.id)
        assert stored.status == EntryStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.customer_id == CUSTOMER_ID

    def test_complete_does_not_overwrite_existing_customer(self, repo, ledger_factory):
        entry = ledger_factory(status=EntryStatus.PENDING, customer_id=CUSTOMER_ID)

        repo.complete_if_pending(entry.id, datetime.now(timezone.utc), customer_id=999)

        assert repo.get_entry(entry.id).customer_id == CUSTOMER_ID

    def test_complete_with_expected_customer_rejects_other_customer(self, repo, ledger_factory):
        entry = ledger_factory(
            kind=EntryKind.REDEEM, status=EntryStatus.PENDING, customer_id=SECOND_CUSTOMER_ID
        )
        now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

        mismatched = repo.complete_if_pending(
            entry.id, now, customer_id=CUSTOMER_ID, expected_customer_id=CUSTOMER_ID
        )
        matched = repo.complete_if_pending(
            entry.id,
            now,
            customer_id=SECOND_CUSTOMER_ID,
            expected_customer_id=SECOND_CUSTOMER_ID,
        )

        assert mismatched is False
        assert matched is True
        assert repo.get_entry(entry.id).customer_id == SECOND_CUSTOMER_ID

    def test_query_by_restaurant_paginates_newest_first(self, repo, ledger_factory):
        ids = [ledger_factory(total_points=i).id for i in range(1, 6)]
        ledger_factory(restaurant_id=SECOND_MERCHANT_ID)

        entries, total = repo.query_by_restaurant(MERCHANT_ID, limit=2, offset=1)

        assert total == 5
        assert [e.id for e in entries] == [ids[3], ids[2]]

    def test_query_by_restaurant_status_filter(self, repo, ledger_factory):
        ledger_factory()
        pending = ledger_factory(status=EntryStatus.PENDING)

        entries, total = repo.query_by_restaurant(MERCHANT_ID, status=EntryStatus.PENDING)

        assert total == 1
        assert entries[0].id == pending.id

    def test_customer_totals_only_count_completed(self, repo, ledger_factory):
        ledger_factory(total_points=500)
        ledger_factory(total_points=300)
        ledger_factory(kind=EntryKind.REDEEM, total_points=200)
        ledger_factory(kind=EntryKind.REDEEM, total_points=1000, status=EntryStatus.PENDING)

        totals = repo.get_customer_totals(CUSTOMER_ID)

        assert totals[EntryKind.ISSUE] == 800
        assert totals[EntryKind.REDEEM] == 200

    def test_mark_paid_sets_flag_and_settlement(self, repo, ledger_factory, payment):
        a = ledger_factory(total_points=400)
        b = ledger_factory(total_points=600)

        updated = repo.mark_paid([a.id, b.id], payment.id)

        assert updated == 2
        for entry_id in (a.id, b.id):
            stored = repo.get_entry(entry_id)
            assert stored.paid is True
            assert stored.settlement_id == payment.id
        assert repo.get_unpaid_liability(MERCHANT_ID) == (0, 0)

    def test_mark_paid_is_all_or_nothing(self, repo, ledger_factory, payment):
        a = ledger_factory(total_points=400)
        b = ledger_factory(total_points=600)
        pending = ledger_factory(status=EntryStatus.PENDING)

        with pytest.raises(LedgerIntegrityError):
            repo.mark_paid([a.id, b.id, pending.id], payment.id)

        for entry_id in (a.id, b.id, pending.id):
            stored = repo.get_entry(entry_id)
            assert stored.paid is False
            assert stored.settlement_id is None

    def test_mark_paid_rejects_already_paid_entries(self, repo, ledger_factory, payment):
        paid = ledger_factory(paid=True, settlement_id=payment.id)
        fresh = ledger_factory()

        with pytest.raises(LedgerIntegrityError):
            repo.mark_paid([paid.id, fresh.id], payment.id)

        assert repo.get_entry(fresh.id).paid is False

    def test_unpaid_issue_entries_exclude_redeem_pending_and_paid(
        self, repo, ledger_factory, payment
    ):
        wanted = ledger_factory(total_points=400)
        ledger_factory(kind=EntryKind.REDEEM)
        ledger_factory(status=EntryStatus.PENDING)
        ledger_factory(paid=True, settlement_id=payment.id)

        entries = repo.get_unpaid_issue_entries(MERCHANT_ID, lock=True)

        assert [e.id for e in entries] == [wanted.id]
        assert repo.get_unpaid_liability(MERCHANT_ID) == (400, 1)
