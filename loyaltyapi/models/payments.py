import enum
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import JSON, BigInteger, Enum, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from loyaltyapi.models.base import BaseModel, PrimaryKeyType


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REVERSAL = "reversal"


class PaymentKind(str, enum.Enum):
    DEBIT = "debit"
    REVERSAL = "reversal"


class Payment(BaseModel):
    """
    가맹점 정산 시도 기록

    정산 배치가 가맹점에 청구를 시도할 때마다 1행이 생성됩니다. 성공/실패와 관계없이
    청구 대상이 된 원장 항목 ID 목록을 남깁니다.
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_restaurant_created", "restaurant_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True, autoincrement=True)
    restaurant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    restaurant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    points_covered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    kind: Mapped[PaymentKind] = mapped_column(
        Enum(PaymentKind), default=PaymentKind.DEBIT, nullable=False
    )
    ledger_entry_ids: Mapped[List[int]] = mapped_column(
        JSON, default=list, nullable=False
    )

    # 결제 대행사 확인 ID (실제로 청구가 제출된 경우에만)
    external_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # 결제 대행사가 결과를 저장한 청구 키. 대행사에 도달하지 못한 실패는 NULL
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )

    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    card_last4: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    card_brand: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
