"""
계정 저장소(users 테이블) 매핑

계정/인증 서비스가 소유하는 테이블입니다. 원장 서브시스템은 정산 대상 가맹점과
결제 수단, 고객 존재 여부를 조회할 때만 읽으며 절대 수정하지 않습니다.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Index, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from loyaltyapi.models.base import BaseModel, PrimaryKeyType

MERCHANT_ACCOUNT_TYPE = "Merchant"
CLIENT_ACCOUNT_TYPE = "Client"
APPROVED = 1


class Account(BaseModel):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_type_approval", "account_type", "approval_status"),)

    id: Mapped[int] = mapped_column(PrimaryKeyType, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)  # Merchant | Client
    restaurant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approval_status: Mapped[int] = mapped_column(SmallInteger, default=0, nullable=False)

    # 결제 대행사 고객 ID 와 기본 결제 수단
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    default_payment_card_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # [{id, brand, last4, exp_month, exp_year}]
    payment_cards: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSON, default=list, nullable=False
    )
