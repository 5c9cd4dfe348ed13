from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from loyaltyapi.core.auth import verify_internal_token
from loyaltyapi.deps import get_settlement_service
from loyaltyapi.schemas.payments import PaymentHistoryGroup
from loyaltyapi.schemas.settlement import SettlementBatchResult
from loyaltyapi.services.settlement_service import SettlementService

router = APIRouter(prefix="/admin/settlement", tags=["settlement"])

# 가맹점용 결제 내역 조회 라우터 (읽기 전용)
public_router = APIRouter(tags=["payments"])


@router.post(
    "/run",
    response_model=SettlementBatchResult,
    dependencies=[Depends(verify_internal_token)],
)
def run_settlement_batch(
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> SettlementBatchResult:
    """정산 배치를 즉시 실행하고 요약을 반환합니다. (내부 토큰 필요)"""
    return settlement_service.run_batch()


@public_router.get(
    "/restaurants/{restaurant_id}/payments", response_model=List[PaymentHistoryGroup]
)
def get_payment_history(
    restaurant_id: int = Path(..., gt=0),
    search_query: Optional[str] = Query(None, max_length=100, description="설명/종류/상태 검색어"),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> List[PaymentHistoryGroup]:
    """가맹점 결제 내역을 날짜별로 묶어 최신순으로 조회합니다."""
    return settlement_service.get_payment_history(restaurant_id, search_query)
