from decimal import Decimal
from typing import List, Optional, Sequence, Set

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from loyaltyapi.models.payments import Payment as PaymentModel
from loyaltyapi.models.payments import PaymentKind, PaymentStatus
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.payments import MerchantPayoutProfile, PaymentRecord


class PaymentRepository(BaseRepository[PaymentModel, PaymentRecord]):
    """정산 시도 기록 리포지토리"""

    def __init__(self, db: Session):
        super().__init__(PaymentModel, PaymentRecord, db)

    def _create_record(
        self,
        profile: MerchantPayoutProfile,
        amount: Decimal,
        points_covered: int,
        entry_ids: Sequence[int],
        status: PaymentStatus,
        kind: PaymentKind,
        description: str,
        external_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> PaymentRecord:
        return self.create(
            commit=commit,
            restaurant_id=profile.restaurant_id,
            restaurant_name=profile.restaurant_name,
            amount=amount,
            points_covered=points_covered,
            status=status,
            kind=kind,
            ledger_entry_ids=list(entry_ids),
            external_reference=external_reference,
            description=description,
            failure_reason=failure_reason,
            idempotency_key=idempotency_key,
            card_last4=profile.card_last4,
            card_brand=profile.card_brand,
        )

    def create_debit(
        self,
        profile: MerchantPayoutProfile,
        amount: Decimal,
        points_covered: int,
        entry_ids: Sequence[int],
        external_reference: str,
        description: str,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> PaymentRecord:
        """청구 성공 기록 (status=completed, kind=debit)"""
        return self._create_record(
            profile,
            amount,
            points_covered,
            entry_ids,
            status=PaymentStatus.COMPLETED,
            kind=PaymentKind.DEBIT,
            description=description,
            external_reference=external_reference,
            idempotency_key=idempotency_key,
            commit=commit,
        )

    def create_failed(
        self,
        profile: MerchantPayoutProfile,
        amount: Decimal,
        points_covered: int,
        entry_ids: Sequence[int],
        failure_reason: str,
        description: str,
        external_reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> PaymentRecord:
        """청구 실패 기록. 대상 항목은 미지급 상태로 남아 다음 배치에서 재시도됨

        idempotency_key 는 결제 대행사가 거절 결과를 저장한 경우(카드 거절)에만 남깁니다.
        """
        return self._create_record(
            profile,
            amount,
            points_covered,
            entry_ids,
            status=PaymentStatus.FAILED,
            kind=PaymentKind.DEBIT,
            description=description,
            external_reference=external_reference,
            failure_reason=failure_reason,
            idempotency_key=idempotency_key,
            commit=commit,
        )

    def create_reversal(
        self,
        profile: MerchantPayoutProfile,
        amount: Decimal,
        points_covered: int,
        entry_ids: Sequence[int],
        external_reference: str,
        refunded: bool,
        failure_reason: str,
        description: str,
        idempotency_key: Optional[str] = None,
        commit: bool = True,
    ) -> PaymentRecord:
        """
        청구 후 원장 반영 실패에 대한 보상 기록 (kind=reversal)

        환불에 성공하면 status=reversal, 환불도 실패하면 운영자 처리를 기다리는
        status=pending 으로 남깁니다.
        """
        return self._create_record(
            profile,
            amount,
            points_covered,
            entry_ids,
            status=PaymentStatus.REVERSAL if refunded else PaymentStatus.PENDING,
            kind=PaymentKind.REVERSAL,
            description=description,
            external_reference=external_reference,
            failure_reason=failure_reason,
            idempotency_key=idempotency_key,
            commit=commit,
        )

    def count_used_keys(self, key_prefix: str) -> int:
        """key_prefix 로 시작하는, 결제 대행사가 이미 결과를 저장한 청구 키 개수"""
        return (
            self.db.query(func.count(self.model_class.id))
            .filter(self.model_class.idempotency_key.startswith(key_prefix, autoescape=True))
            .scalar()
            or 0
        )

    def held_entry_ids(self, restaurant_id: int) -> Set[int]:
        """환불에 실패한 보상 기록(status=pending)이 가리키는 원장 항목 ID

        운영자가 처리하기 전까지 이 항목들은 다시 청구하지 않습니다.
        """
        rows = (
            self.db.query(self.model_class.ledger_entry_ids)
            .filter(
                self.model_class.restaurant_id == restaurant_id,
                self.model_class.kind == PaymentKind.REVERSAL,
                self.model_class.status == PaymentStatus.PENDING,
            )
            .all()
        )
        return {entry_id for (entry_ids,) in rows for entry_id in (entry_ids or [])}

    def list_by_restaurant(
        self, restaurant_id: int, limit: Optional[int] = None
    ) -> List[PaymentRecord]:
        """가맹점 정산 기록 (최신순)"""
        query = (
            self.db.query(self.model_class)
            .filter(self.model_class.restaurant_id == restaurant_id)
            .order_by(desc(self.model_class.created_at), desc(self.model_class.id))
        )
        if limit:
            query = query.limit(limit)
        return self._to_schemas(query.all())
