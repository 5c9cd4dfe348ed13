"""
가맹점 정산 배치 서비스

매일 밤 정산 대상 가맹점마다:
1. 미정산(paid=false) completed issue 항목 조회 (정산 중 행 잠금)
2. 포인트 합계를 적립 비율로 나눈 금액을 결제 대행사로 청구
3. 성공 시 completed 정산 기록 생성과 원장 지급 처리를 한 트랜잭션으로 커밋
4. 청구 실패 시 failed 기록만 남기고 항목은 다음 배치에서 재시도
5. 청구 성공 후 원장 반영 실패 시 환불을 시도하고 reversal 기록을 남긴 뒤
   ReconciliationError 로 운영자에게 알림
   (환불까지 실패한 항목은 운영자가 처리할 때까지 청구 대상에서 제외)

가맹점 단위 실패는 배치 전체를 중단시키지 않습니다.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from loyaltyapi.config import Settings
from loyaltyapi.core.exceptions import (
    ExternalServiceError,
    PaymentFailedError,
    ReconciliationError,
)
from loyaltyapi.repositories.account_repository import AccountRepository
from loyaltyapi.repositories.payment_repository import PaymentRepository
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.schemas.payments import (
    ChargeResult,
    MerchantPayoutProfile,
    PaymentHistoryGroup,
    PaymentHistoryTransaction,
)
from loyaltyapi.schemas.settlement import (
    MerchantSettlementOutcome,
    MerchantSettlementStatus,
    SettlementBatchResult,
    SettlementError,
)
from loyaltyapi.models.payments import PaymentKind
from loyaltyapi.services.payment_gateway import PaymentGateway
from loyaltyapi.services.rate_policy import PointsRatePolicy
from loyaltyapi.utils.timezone_utils import format_display_date, to_utc, utc_now

logger = logging.getLogger(__name__)


class SettlementService:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        rate_policy: PointsRatePolicy,
        payment_gateway: PaymentGateway,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.db = db
        self.settings = settings
        self.rate_policy = rate_policy
        self.payment_gateway = payment_gateway
        self.session_factory = session_factory
        self.payment_repo = PaymentRepository(db)

    # ------------------------------------------------------------------
    # 배치
    # ------------------------------------------------------------------

    def run_batch(self) -> SettlementBatchResult:
        """정산 대상 가맹점 전체에 대해 정산을 실행하고 요약을 반환"""
        started_at = utc_now()
        merchant_ids = AccountRepository(self.db).list_settleable_merchant_ids()
        # 조회 트랜잭션 종료
        self.db.rollback()
        logger.info(f"Settlement batch started for {len(merchant_ids)} merchants")

        max_workers = self.settings.SETTLEMENT_MAX_WORKERS
        if max_workers > 1 and self.session_factory is not None and len(merchant_ids) > 1:
            with ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="settlement"
            ) as pool:
                outcomes = list(pool.map(self._settle_in_new_session, merchant_ids))
        else:
            outcomes = [self._settle_safely(self.db, rid) for rid in merchant_ids]

        result = self._summarize(started_at, outcomes)
        logger.info(
            f"Settlement batch finished: processed={result.processed_count} "
            f"success={result.success_count} failed={result.failure_count} "
            f"skipped={result.skipped_count} reconciliation={result.reconciliation_count} "
            f"amount={result.total_amount}"
        )
        return result

    def _settle_in_new_session(self, restaurant_id: int) -> MerchantSettlementOutcome:
        db = self.session_factory()
        try:
            return self._settle_safely(db, restaurant_id)
        finally:
            db.close()

    def _settle_safely(self, db: Session, restaurant_id: int) -> MerchantSettlementOutcome:
        try:
            return self.settle_merchant(restaurant_id, db=db)
        except ReconciliationError as e:
            return MerchantSettlementOutcome(
                restaurant_id=restaurant_id,
                status=MerchantSettlementStatus.RECONCILIATION_ERROR,
                payment_id=e.details.get("reversal_payment_id"),
                amount=Decimal(str(e.details.get("amount", "0.00"))),
                points=e.details.get("points", 0),
                entry_count=len(e.details.get("entry_ids", [])),
                message=str(e),
            )
        except Exception as e:
            db.rollback()
            logger.exception(f"Settlement failed for merchant {restaurant_id}: {e}")
            return MerchantSettlementOutcome(
                restaurant_id=restaurant_id,
                status=MerchantSettlementStatus.ERROR,
                message=str(e),
            )

    def _summarize(
        self, started_at: datetime, outcomes: List[MerchantSettlementOutcome]
    ) -> SettlementBatchResult:
        result = SettlementBatchResult(started_at=started_at, finished_at=utc_now())
        for outcome in outcomes:
            result.outcomes.append(outcome)
            if outcome.status == MerchantSettlementStatus.SKIPPED:
                result.skipped_count += 1
                continue

            result.processed_count += 1
            if outcome.payment_id is not None:
                result.payment_ids.append(outcome.payment_id)

            if outcome.status == MerchantSettlementStatus.COMPLETED:
                result.success_count += 1
                result.total_amount += outcome.amount
                result.total_points += outcome.points
                continue

            result.failure_count += 1
            reconciliation = outcome.status == MerchantSettlementStatus.RECONCILIATION_ERROR
            if reconciliation:
                result.reconciliation_count += 1
            result.errors.append(
                SettlementError(
                    restaurant_id=outcome.restaurant_id,
                    message=outcome.message or outcome.status.value,
                    reconciliation=reconciliation,
                )
            )
        return result

    # ------------------------------------------------------------------
    # 가맹점 단위 정산
    # ------------------------------------------------------------------

    @staticmethod
    def _idempotency_key_prefix(restaurant_id: int, entry_ids: Sequence[int]) -> str:
        digest = hashlib.sha256(
            ",".join(str(i) for i in sorted(entry_ids)).encode()
        ).hexdigest()[:24]
        return f"settle_{restaurant_id}_{digest}_"

    def _idempotency_key(
        self, payment_repo: PaymentRepository, restaurant_id: int, entry_ids: Sequence[int]
    ) -> str:
        """
        청구 시도별 Idempotency-Key

        같은 항목 집합이라도 결제 대행사가 결과를 저장한 이전 시도(카드 거절, 환불된 청구)가
        있으면 번호를 올려 새 청구로 처리됩니다. 대행사에 도달하지 못한 실패는 번호를 올리지
        않으므로 다음 재시도는 같은 키로 중복 청구 없이 이어집니다.
        """
        prefix = self._idempotency_key_prefix(restaurant_id, entry_ids)
        return f"{prefix}{payment_repo.count_used_keys(prefix)}"

    def settle_merchant(
        self, restaurant_id: int, db: Optional[Session] = None
    ) -> MerchantSettlementOutcome:
        """
        가맹점 1곳 정산 (청구 -> 기록 -> 지급 처리 순서로 직렬 수행)

        Returns:
            MerchantSettlementOutcome: completed / failed / skipped

        Raises:
            ReconciliationError: 청구는 성공했으나 원장 반영에 실패한 경우
        """
        db = db or self.db
        points_repo = PointsRepository(db)
        payment_repo = PaymentRepository(db)

        profile = AccountRepository(db).get_payout_profile(restaurant_id)
        if profile is None:
            db.rollback()
            return MerchantSettlementOutcome(
                restaurant_id=restaurant_id,
                status=MerchantSettlementStatus.SKIPPED,
                message="No payout method on file",
            )

        entries = points_repo.get_unpaid_issue_entries(restaurant_id, lock=True)
        held = payment_repo.held_entry_ids(restaurant_id)
        if held:
            logger.warning(
                f"Merchant {restaurant_id}: {len(held)} entries held for manual reconciliation"
            )
            entries = [entry for entry in entries if entry.id not in held]
        entry_ids = [entry.id for entry in entries]
        total_points = sum(entry.total_points for entry in entries)
        amount = self.rate_policy.amount_for_points(total_points)

        if not entries or amount <= 0:
            # 잠금 해제
            db.rollback()
            return MerchantSettlementOutcome(
                restaurant_id=restaurant_id,
                status=MerchantSettlementStatus.SKIPPED,
                points=total_points,
                entry_count=len(entry_ids),
                message="Nothing to settle",
            )

        description = f"Loyalty points settlement ({total_points} points)"
        idempotency_key = self._idempotency_key(payment_repo, restaurant_id, entry_ids)
        try:
            charge = self.payment_gateway.charge(
                profile,
                amount,
                self.settings.SETTLEMENT_CURRENCY,
                idempotency_key=idempotency_key,
                description=description,
            )
        except (PaymentFailedError, ExternalServiceError) as e:
            failed = payment_repo.create_failed(
                profile,
                amount,
                total_points,
                entry_ids,
                failure_reason=str(e),
                description=description,
                # 거절은 대행사에 저장되므로 다음 시도는 새 키를 사용
                idempotency_key=idempotency_key if isinstance(e, PaymentFailedError) else None,
            )
            logger.warning(
                f"Charge failed for merchant {restaurant_id} ({amount}): {e}. "
                f"{len(entry_ids)} entries left unpaid for the next run"
            )
            return MerchantSettlementOutcome(
                restaurant_id=restaurant_id,
                status=MerchantSettlementStatus.FAILED,
                payment_id=failed.id,
                amount=amount,
                points=total_points,
                entry_count=len(entry_ids),
                message=str(e),
            )

        try:
            payment = payment_repo.create_debit(
                profile,
                amount,
                total_points,
                entry_ids,
                external_reference=charge.confirmation_id,
                description=description,
                idempotency_key=idempotency_key,
                commit=False,
            )
            points_repo.mark_paid(entry_ids, payment.id, commit=False)
            db.commit()
        except Exception as e:
            db.rollback()
            self._compensate(
                db, profile, charge, amount, total_points, entry_ids, idempotency_key, e
            )

        logger.info(
            f"Settled merchant {restaurant_id}: {amount} for {total_points} points "
            f"({len(entry_ids)} entries, payment {payment.id})"
        )
        return MerchantSettlementOutcome(
            restaurant_id=restaurant_id,
            status=MerchantSettlementStatus.COMPLETED,
            payment_id=payment.id,
            amount=amount,
            points=total_points,
            entry_count=len(entry_ids),
        )

    def _compensate(
        self,
        db: Session,
        profile: MerchantPayoutProfile,
        charge: ChargeResult,
        amount: Decimal,
        total_points: int,
        entry_ids: List[int],
        idempotency_key: str,
        cause: Exception,
    ) -> None:
        """청구 성공 후 원장 반영 실패: 환불 시도, reversal 기록, ReconciliationError 발생"""
        reason = f"Ledger reconciliation failed after charge: {cause}"

        refunded = False
        try:
            self.payment_gateway.refund(charge.confirmation_id, reason=reason)
            refunded = True
        except (PaymentFailedError, ExternalServiceError) as e:
            logger.error(f"Refund of {charge.confirmation_id} failed: {e}")

        reversal_id = None
        try:
            reversal = PaymentRepository(db).create_reversal(
                profile,
                amount,
                total_points,
                entry_ids,
                external_reference=charge.confirmation_id,
                refunded=refunded,
                failure_reason=reason,
                idempotency_key=idempotency_key,
                description=f"Reversal of loyalty points settlement ({total_points} points)",
            )
            reversal_id = reversal.id
        except Exception as e:
            db.rollback()
            logger.critical(
                f"Could not record reversal for charge {charge.confirmation_id}: {e}"
            )

        logger.critical(
            f"RECONCILIATION REQUIRED merchant={profile.restaurant_id} "
            f"charge={charge.confirmation_id} amount={amount} entries={entry_ids} "
            f"refunded={refunded}: {cause}"
        )
        raise ReconciliationError(
            details={
                "restaurant_id": profile.restaurant_id,
                "external_reference": charge.confirmation_id,
                "amount": str(amount),
                "points": total_points,
                "entry_ids": entry_ids,
                "refunded": refunded,
                "reversal_payment_id": reversal_id,
            }
        ) from cause

    # ------------------------------------------------------------------
    # 결제 내역
    # ------------------------------------------------------------------

    def get_payment_history(
        self, restaurant_id: int, search_query: Optional[str] = None
    ) -> List[PaymentHistoryGroup]:
        """
        가맹점 결제 내역을 날짜(DD/MM/YYYY)별로 묶어 최신순으로 반환

        search_query 가 있으면 설명, 종류, 상태에 대해 대소문자 구분 없이 부분 일치 검색합니다.
        """
        payments = self.payment_repo.list_by_restaurant(restaurant_id)

        if search_query and search_query.strip():
            needle = search_query.strip().lower()
            payments = [
                p
                for p in payments
                if needle in (p.description or "").lower()
                or needle in p.kind.value
                or needle in p.status.value
            ]

        groups: Dict[str, PaymentHistoryGroup] = {}
        group_dates: Dict[str, datetime] = {}
        for payment in payments:
            created_at = to_utc(payment.created_at) if payment.created_at else utc_now()
            date_key = format_display_date(created_at)
            if date_key not in groups:
                groups[date_key] = PaymentHistoryGroup(
                    id=date_key, date=date_key, transactions=[]
                )
                group_dates[date_key] = created_at

            groups[date_key].transactions.append(
                PaymentHistoryTransaction(
                    id=str(payment.id),
                    type=payment.kind,
                    status=payment.status,
                    description=payment.description
                    or ("Debit" if payment.kind == PaymentKind.DEBIT else "Reversal"),
                    card_number=f"****{payment.card_last4}" if payment.card_last4 else "N/A",
                    points=payment.points_covered or 0,
                    amount=payment.amount,
                    customer=payment.restaurant_name or "Restaurant",
                )
            )

        return sorted(
            groups.values(),
            key=lambda group: group_dates[group.id].date(),
            reverse=True,
        )
