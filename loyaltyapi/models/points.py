"""
포인트 원장 데이터 모델

가맹점(레스토랑)의 포인트 적립(issue)과 고객의 포인트 사용(redeem)을 하나의 원장
테이블에 기록합니다. 잔액과 가맹점 미정산 포인트는 저장하지 않고 항상 이 테이블에서
계산합니다.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from loyaltyapi.models.base import BaseModel, PrimaryKeyType


class EntryKind(str, enum.Enum):
    ISSUE = "issue"
    REDEEM = "redeem"


class EntryStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PointsLedger(BaseModel):
    """
    포인트 원장 테이블 - 적립/사용 거래 1건당 1행

    원칙:
    1. status는 pending -> completed 로 단 한 번만 전이되며 되돌아가지 않음
    2. kind, line_items, total_points 는 생성 후 변경되지 않음
    3. qr_code 는 지금까지 생성된 모든 항목에서 유일함
    4. paid 는 정산 배치만 설정하며 issue/completed 항목에만 의미가 있음
    """

    __tablename__ = "points_ledger"
    __table_args__ = (
        UniqueConstraint("qr_code", name="uq_points_ledger_qr_code"),
        CheckConstraint("total_points >= 0", name="ck_points_ledger_total_points"),
        Index("idx_points_ledger_restaurant_created", "restaurant_id", "created_at"),
        Index("idx_points_ledger_customer_status", "customer_id", "status"),
        Index("idx_points_ledger_unpaid", "restaurant_id", "kind", "status", "paid"),
    )

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True, autoincrement=True)
    status: Mapped[EntryStatus] = mapped_column(
        Enum(EntryStatus), default=EntryStatus.PENDING, nullable=False
    )
    kind: Mapped[EntryKind] = mapped_column(Enum(EntryKind), nullable=False)

    # 포인트 공유(고객 간 이전) 항목은 가맹점이 없음
    restaurant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )
    customer_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    # 생성 시점의 메뉴 스냅샷: [{name, unit_price, quantity, points}]
    line_items: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), nullable=False
    )
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_per_dollar: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), default=Decimal("10.00"), nullable=False
    )

    qr_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    settlement_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("payments.id"), nullable=True
    )

    # 포인트 공유로 생성된 redeem/issue 쌍을 묶는 참조
    transfer_ref: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
