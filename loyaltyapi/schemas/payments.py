from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from loyaltyapi.models.payments import PaymentKind, PaymentStatus


class PaymentRecord(BaseModel):
    """가맹점 정산 시도 기록"""

    id: int
    restaurant_id: int
    restaurant_name: Optional[str] = None
    amount: Decimal
    points_covered: int
    status: PaymentStatus
    kind: PaymentKind
    ledger_entry_ids: List[int] = Field(default_factory=list)
    external_reference: Optional[str] = None
    idempotency_key: Optional[str] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentHistoryTransaction(BaseModel):
    """결제 내역 화면용 거래 행"""

    id: str
    type: PaymentKind
    status: PaymentStatus
    description: str
    card_number: str = Field(..., description="****1234 또는 N/A")
    points: int
    amount: Decimal
    customer: str = Field(..., description="가맹점 이름")


class PaymentHistoryGroup(BaseModel):
    """날짜별 결제 내역 그룹"""

    id: str
    date: str = Field(..., description="DD/MM/YYYY")
    transactions: List[PaymentHistoryTransaction]


class MerchantPayoutProfile(BaseModel):
    """정산 청구에 필요한 가맹점 결제 정보 (계정 저장소 읽기 전용)"""

    restaurant_id: int
    restaurant_name: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    payment_method_id: str
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None


class ChargeResult(BaseModel):
    """결제 대행사 청구 결과"""

    confirmation_id: str
    amount: Decimal
    currency: str
    status: str = "succeeded"
