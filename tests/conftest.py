from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from loyaltyapi.config import Settings
from loyaltyapi.models.account import APPROVED, CLIENT_ACCOUNT_TYPE, MERCHANT_ACCOUNT_TYPE, Account
from loyaltyapi.models.base import Base
from loyaltyapi.models.payments import Payment  # noqa: F401
from loyaltyapi.models.points import EntryKind, EntryStatus, PointsLedger
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.rate_policy import PointsRatePolicy

MERCHANT_ID = 1
SECOND_MERCHANT_ID = 2
UNAPPROVED_MERCHANT_ID = 3
CUSTOMER_ID = 10
SECOND_CUSTOMER_ID = 11
INTERNAL_TOKEN = "test-internal-token"


@pytest.fixture
def test_settings():
    """외부 .env 에 영향받지 않는 테스트 설정"""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SETTLEMENT_SCHEDULER_ENABLED=False,
        REDIS_ENABLED=False,
        AUTH_TOKEN=INTERNAL_TOKEN,
        STRIPE_SECRET_KEY="sk_test_123",
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def accounts(db):
    """가맹점 3곳(1곳 미승인)과 고객 2명"""
    db.add_all(
        [
            Account(
                id=MERCHANT_ID,
                email="owner@burgerbarn.test",
                account_type=MERCHANT_ACCOUNT_TYPE,
                restaurant_name="Burger Barn",
                approval_status=APPROVED,
                stripe_customer_id="cus_burger",
                default_payment_card_id="pm_burger",
                payment_cards=[{"id": "pm_burger", "brand": "visa", "last4": "4242"}],
            ),
            Account(
                id=SECOND_MERCHANT_ID,
                email="owner@tacotown.test",
                account_type=MERCHANT_ACCOUNT_TYPE,
                restaurant_name="Taco Town",
                approval_status=APPROVED,
                stripe_customer_id="cus_taco",
                default_payment_card_id="pm_taco",
                payment_cards=[{"id": "pm_taco", "brand": "mastercard", "last4": "5555"}],
            ),
            Account(
                id=UNAPPROVED_MERCHANT_ID,
                email="owner@pending.test",
                account_type=MERCHANT_ACCOUNT_TYPE,
                restaurant_name="Pending Pizza",
                approval_status=0,
                default_payment_card_id="pm_pending",
                payment_cards=[],
            ),
            Account(id=CUSTOMER_ID, email="alice@test", account_type=CLIENT_ACCOUNT_TYPE),
            Account(id=SECOND_CUSTOMER_ID, email="bob@test", account_type=CLIENT_ACCOUNT_TYPE),
        ]
    )
    db.commit()


@pytest.fixture
def rate_policy():
    return PointsRatePolicy(issue=Decimal("10"), redeem=Decimal("500"))


@pytest.fixture
def notifier():
    return Mock(spec=NotificationService)


@pytest.fixture
def ledger_factory(db):
    """원장 항목을 직접 삽입하는 헬퍼 (기본값: 완료된 issue 항목)"""

    def _create(**overrides):
        values = dict(
            kind=EntryKind.ISSUE,
            status=EntryStatus.COMPLETED,
            restaurant_id=MERCHANT_ID,
            customer_id=CUSTOMER_ID,
            line_items=[],
            total_price=Decimal("0.00"),
            total_points=100,
            points_per_dollar=Decimal("10"),
            completed_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
        )
        values.update(overrides)
        if values["status"] == EntryStatus.PENDING:
            values["completed_at"] = None
        entry = PointsLedger(**values)
        db.add(entry)
        db.commit()
        return entry

    return _create
