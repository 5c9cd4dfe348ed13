from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MerchantSettlementStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    RECONCILIATION_ERROR = "reconciliation_error"
    ERROR = "error"


class MerchantSettlementOutcome(BaseModel):
    """가맹점 1곳의 정산 결과"""

    restaurant_id: int
    status: MerchantSettlementStatus
    payment_id: Optional[int] = None
    amount: Decimal = Decimal("0.00")
    points: int = 0
    entry_count: int = 0
    message: Optional[str] = None


class SettlementError(BaseModel):
    restaurant_id: int
    message: str
    reconciliation: bool = False


class SettlementBatchResult(BaseModel):
    """정산 배치 실행 요약"""

    started_at: datetime
    finished_at: datetime
    processed_count: int = Field(0, description="청구를 시도한 가맹점 수")
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    reconciliation_count: int = Field(0, description="청구 후 원장 반영 실패 건수")
    total_amount: Decimal = Decimal("0.00")
    total_points: int = 0
    payment_ids: List[int] = Field(default_factory=list)
    errors: List[SettlementError] = Field(default_factory=list)
    outcomes: List[MerchantSettlementOutcome] = Field(default_factory=list)
