from sqlalchemy import text
from sqlalchemy.orm import Session

from loyaltyapi.models.points import EntryKind
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.schemas.points import CustomerBalanceResponse, MerchantLiabilityResponse
from loyaltyapi.services.rate_policy import PointsRatePolicy
import logging

logger = logging.getLogger(__name__)


class BalanceService:
    """원장에서 고객 잔액과 가맹점 미정산 포인트를 계산하는 서비스 (캐시 없음)"""

    def __init__(self, db: Session, rate_policy: PointsRatePolicy):
        self.db = db
        self.rate_policy = rate_policy
        self.points_repo = PointsRepository(db)

    def lock_customer(self, customer_id: int) -> None:
        """잔액 확인과 이후 쓰기를 고객 단위로 직렬화 (현재 트랜잭션 종료 시 해제)

        PostgreSQL 에서는 트랜잭션 범위 advisory lock 을 사용합니다.
        SQLite 는 쓰기 트랜잭션 자체가 직렬화되므로 별도 잠금이 없습니다.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        self.db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": customer_id}
        )

    def customer_balance(self, customer_id: int) -> int:
        totals = self.points_repo.get_customer_totals(customer_id)
        return totals[EntryKind.ISSUE] - totals[EntryKind.REDEEM]

    def get_customer_balance(self, customer_id: int) -> CustomerBalanceResponse:
        totals = self.points_repo.get_customer_totals(customer_id)
        issued = totals[EntryKind.ISSUE]
        redeemed = totals[EntryKind.REDEEM]
        return CustomerBalanceResponse(
            customer_id=customer_id,
            balance=issued - redeemed,
            total_issued=issued,
            total_redeemed=redeemed,
        )

    def sufficient_for_redeem(self, customer_id: int, points: int) -> bool:
        return self.customer_balance(customer_id) >= points

    def merchant_unpaid_liability(self, restaurant_id: int) -> MerchantLiabilityResponse:
        points, count = self.points_repo.get_unpaid_liability(restaurant_id)
        return MerchantLiabilityResponse(
            restaurant_id=restaurant_id,
            unpaid_points=points,
            unpaid_entry_count=count,
            amount=self.rate_policy.amount_for_points(points),
        )
