from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from loyaltyapi.models.points import EntryKind, EntryStatus


class LineItem(BaseModel):
    """주문 메뉴 항목 (생성 시점의 가격 스냅샷)"""

    name: str = Field(..., min_length=1, max_length=255, description="메뉴 이름")
    unit_price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, description="단가")
    quantity: int = Field(..., gt=0, description="수량")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Line item name must not be blank")
        return v


class LineItemSnapshot(BaseModel):
    """원장에 저장된 메뉴 스냅샷"""

    name: str
    unit_price: Decimal
    quantity: int
    points: int = Field(..., description="해당 항목의 총 포인트 (단위 포인트 x 수량)")


class PointsEntry(BaseModel):
    """포인트 원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    kind: EntryKind = Field(..., description="issue | redeem")
    status: EntryStatus = Field(..., description="pending | completed")
    restaurant_id: Optional[int] = Field(None, description="가맹점 ID")
    customer_id: Optional[int] = Field(None, description="고객 ID")
    line_items: List[LineItemSnapshot] = Field(default_factory=list)
    total_price: Decimal = Field(..., description="총 주문 금액")
    total_points: int = Field(..., ge=0, description="총 포인트")
    points_per_dollar: Decimal = Field(..., description="적용된 포인트 비율")
    qr_code: Optional[str] = Field(None, description="QR 코드 토큰")
    notes: Optional[str] = None
    paid: bool = False
    settlement_id: Optional[int] = None
    transfer_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PointsCreateRequest(BaseModel):
    """포인트 거래 생성 요청"""

    kind: EntryKind = Field(EntryKind.ISSUE, description="issue | redeem")
    restaurant_id: int = Field(..., gt=0, description="가맹점 ID")
    customer_id: Optional[int] = Field(None, gt=0, description="고객 ID (익명 적립 시 생략)")
    line_items: List[LineItem] = Field(..., min_length=1, description="주문 메뉴 목록")
    notes: Optional[str] = Field(None, max_length=1000)


class PointsUpdateRequest(BaseModel):
    """대기 중인 거래의 메모/고객 정보 수정 요청"""

    notes: Optional[str] = Field(None, max_length=1000)
    customer_id: Optional[int] = Field(None, gt=0)

    @model_validator(mode="after")
    def require_field(self) -> "PointsUpdateRequest":
        if self.notes is None and self.customer_id is None:
            raise ValueError("Either notes or customer_id must be provided")
        return self


class PointsCompleteRequest(BaseModel):
    """거래 완료(QR 스캔) 요청"""

    customer_id: Optional[int] = Field(None, gt=0, description="고객 ID")


class PointsListResponse(BaseModel):
    """가맹점 포인트 거래 목록 응답"""

    entries: List[PointsEntry]
    total_count: int
    limit: int
    offset: int
    has_next: bool


class CustomerBalanceResponse(BaseModel):
    """고객 포인트 잔액 응답"""

    customer_id: int
    balance: int = Field(..., description="적립 합계 - 사용 합계")
    total_issued: int
    total_redeemed: int


class MerchantLiabilityResponse(BaseModel):
    """가맹점 미정산 포인트 응답"""

    restaurant_id: int
    unpaid_points: int
    unpaid_entry_count: int
    amount: Decimal = Field(..., description="정산 예정 금액 (미정산 포인트 / 적립 비율)")


class PointsShareRequest(BaseModel):
    """고객 간 포인트 공유 요청"""

    sender_id: int = Field(..., gt=0)
    recipient_id: int = Field(..., gt=0)
    points: int = Field(..., gt=0)


class PointsShareResponse(BaseModel):
    """포인트 공유 결과"""

    transfer_ref: str
    sender_entry: PointsEntry
    recipient_entry: PointsEntry
    sender_balance: int


class PointsCompletedEvent(BaseModel):
    """points:completed 이벤트 페이로드"""

    entry_id: int
    restaurant_id: Optional[int]
    kind: EntryKind
    qr_code: Optional[str]
    customer_id: Optional[int]
    completed_at: datetime
