"""
계정 저장소 조회 리포지토리 (읽기 전용)

users 테이블은 계정 서비스가 소유합니다. 이 리포지토리는 정산 대상 가맹점 목록,
가맹점 결제 수단, 고객 존재 여부만 조회하며 어떤 쓰기 메서드도 제공하지 않습니다.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import ExternalServiceError
from loyaltyapi.models.account import (
    APPROVED,
    CLIENT_ACCOUNT_TYPE,
    MERCHANT_ACCOUNT_TYPE,
    Account,
)
from loyaltyapi.schemas.payments import MerchantPayoutProfile

logger = logging.getLogger(__name__)


class AccountRepository:
    def __init__(self, db: Session):
        self.db = db

    def _settleable_query(self):
        return self.db.query(Account).filter(
            Account.account_type == MERCHANT_ACCOUNT_TYPE,
            Account.approval_status == APPROVED,
            Account.default_payment_card_id.isnot(None),
        )

    def list_settleable_merchant_ids(self) -> List[int]:
        """승인되었고 기본 결제 수단이 등록된 가맹점 ID 목록"""
        try:
            rows = self._settleable_query().with_entities(Account.id).order_by(Account.id).all()
        except OperationalError as e:
            logger.error(f"Account store unavailable while listing merchants: {e}")
            raise ExternalServiceError("Account store unavailable") from e
        return [row[0] for row in rows]

    def get_payout_profile(self, restaurant_id: int) -> Optional[MerchantPayoutProfile]:
        """정산 청구에 사용할 가맹점 결제 정보. 정산 대상이 아니면 None"""
        try:
            account = self._settleable_query().filter(Account.id == restaurant_id).first()
        except OperationalError as e:
            logger.error(f"Account store unavailable for merchant {restaurant_id}: {e}")
            raise ExternalServiceError("Account store unavailable") from e

        if account is None:
            return None

        card = next(
            (
                c
                for c in (account.payment_cards or [])
                if c.get("id") == account.default_payment_card_id
            ),
            {},
        )
        return MerchantPayoutProfile(
            restaurant_id=account.id,
            restaurant_name=account.restaurant_name,
            stripe_customer_id=account.stripe_customer_id,
            payment_method_id=account.default_payment_card_id,
            card_last4=card.get("last4"),
            card_brand=card.get("brand"),
        )

    def customer_exists(self, customer_id: int) -> bool:
        try:
            return (
                self.db.query(Account.id)
                .filter(
                    Account.id == customer_id,
                    Account.account_type == CLIENT_ACCOUNT_TYPE,
                )
                .first()
                is not None
            )
        except OperationalError as e:
            logger.error(f"Account store unavailable for customer {customer_id}: {e}")
            raise ExternalServiceError("Account store unavailable") from e
