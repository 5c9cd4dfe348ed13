"""
포인트 원장 API 라우터

가맹점/고객 앱용 엔드포인트:
- POST /points: 적립(issue)/사용(redeem) 거래 생성 (QR 코드 발급)
- GET /points/{entry_id}: 거래 조회
- GET /points/qr/{qr_code}: QR 코드로 거래 조회
- PATCH /points/{entry_id}: 대기 중인 거래의 메모/고객 수정
- POST /points/{entry_id}/complete: 거래 완료
- POST /points/scan/{qr_code}: QR 스캔으로 거래 완료 (이미 사용된 QR 은 409)
- POST /points/share: 고객 간 포인트 공유
- GET /restaurants/{restaurant_id}/points: 가맹점 거래 목록
- GET /restaurants/{restaurant_id}/liability: 가맹점 미정산 포인트
- GET /customers/{customer_id}/balance: 고객 포인트 잔액

도메인 오류(NotFoundError, DuplicateIssuanceError 등)는 전역 핸들러에서
{success: false, error: {code, message, details}} 형태로 변환됩니다.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from loyaltyapi.deps import get_balance_service, get_point_service
from loyaltyapi.models.points import EntryStatus
from loyaltyapi.schemas.points import (
    CustomerBalanceResponse,
    MerchantLiabilityResponse,
    PointsCompleteRequest,
    PointsCreateRequest,
    PointsEntry,
    PointsListResponse,
    PointsShareRequest,
    PointsShareResponse,
    PointsUpdateRequest,
)
from loyaltyapi.services.balance_service import BalanceService
from loyaltyapi.services.point_service import PointService

router = APIRouter(tags=["points"])


@router.post("/points", response_model=PointsEntry, status_code=status.HTTP_201_CREATED)
def create_points_entry(
    request: PointsCreateRequest,
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    """
    포인트 거래 생성 - 주문 메뉴로 포인트를 계산하고 pending 상태의 QR 코드를 발급

    HTTP Status:
        201: 생성 성공
        404: 고객을 찾을 수 없음
        422: 메뉴가 비어 있거나 가격/수량이 올바르지 않음
    """
    return point_service.create_entry(request)


# 고정 경로(/points/share)를 /points/{entry_id} 보다 먼저 등록
@router.post("/points/share", response_model=PointsShareResponse)
def share_points(
    request: PointsShareRequest,
    point_service: PointService = Depends(get_point_service),
) -> PointsShareResponse:
    """고객 간 포인트 공유 - 잔액 부족 시 400, 어떤 항목도 생성되지 않음"""
    return point_service.share_points(request)


@router.get("/points/qr/{qr_code}", response_model=PointsEntry)
def get_points_entry_by_qr_code(
    qr_code: str = Path(..., min_length=1, max_length=255),
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    return point_service.get_entry_by_qr_code(qr_code)


@router.post("/points/scan/{qr_code}", response_model=PointsEntry)
def scan_qr_code(
    qr_code: str = Path(..., min_length=1, max_length=255),
    request: Optional[PointsCompleteRequest] = Body(None),
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    """
    QR 스캔 - pending 거래를 completed 로 전이

    HTTP Status:
        200: 완료 처리
        400: 잔액 부족 (redeem)
        404: QR 코드 없음
        409: 이미 적립된 QR 코드 (POINTS_ALREADY_ISSUED)
    """
    customer_id = request.customer_id if request else None
    return point_service.scan_qr_code(qr_code, customer_id=customer_id)


@router.get("/points/{entry_id}", response_model=PointsEntry)
def get_points_entry(
    entry_id: int = Path(..., gt=0),
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    return point_service.get_entry(entry_id)


@router.patch("/points/{entry_id}", response_model=PointsEntry)
def update_points_entry(
    request: PointsUpdateRequest,
    entry_id: int = Path(..., gt=0),
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    """대기 중인 거래의 메모/고객 수정 (완료된 거래는 422)"""
    return point_service.update_entry(entry_id, request)


@router.post("/points/{entry_id}/complete", response_model=PointsEntry)
def complete_points_entry(
    entry_id: int = Path(..., gt=0),
    request: Optional[PointsCompleteRequest] = Body(None),
    point_service: PointService = Depends(get_point_service),
) -> PointsEntry:
    customer_id = request.customer_id if request else None
    return point_service.complete_entry(entry_id, customer_id=customer_id)


@router.get("/restaurants/{restaurant_id}/points", response_model=PointsListResponse)
def list_restaurant_points(
    restaurant_id: int = Path(..., gt=0),
    status_filter: Optional[EntryStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    point_service: PointService = Depends(get_point_service),
) -> PointsListResponse:
    """가맹점 거래 목록 (최신순, 상태 필터/페이지네이션)"""
    return point_service.list_restaurant_entries(
        restaurant_id, status=status_filter, limit=limit, offset=offset
    )


@router.get(
    "/restaurants/{restaurant_id}/liability", response_model=MerchantLiabilityResponse
)
def get_restaurant_liability(
    restaurant_id: int = Path(..., gt=0),
    balance_service: BalanceService = Depends(get_balance_service),
) -> MerchantLiabilityResponse:
    return balance_service.merchant_unpaid_liability(restaurant_id)


@router.get("/customers/{customer_id}/balance", response_model=CustomerBalanceResponse)
def get_customer_balance(
    customer_id: int = Path(..., gt=0),
    balance_service: BalanceService = Depends(get_balance_service),
) -> CustomerBalanceResponse:
    """고객 포인트 잔액 - 매 요청마다 원장에서 다시 계산"""
    return balance_service.get_customer_balance(customer_id)
