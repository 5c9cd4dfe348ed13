from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyaltyapi.config import Settings
from loyaltyapi.core.exceptions import (
    DuplicateIssuanceError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from loyaltyapi.models.points import EntryKind, EntryStatus
from loyaltyapi.repositories.account_repository import AccountRepository
from loyaltyapi.repositories.points_repository import PointsRepository
from loyaltyapi.schemas.points import (
    LineItem,
    LineItemSnapshot,
    PointsCompletedEvent,
    PointsCreateRequest,
    PointsEntry,
    PointsListResponse,
    PointsShareRequest,
    PointsShareResponse,
    PointsUpdateRequest,
)
from loyaltyapi.services.balance_service import BalanceService
from loyaltyapi.services.notification_service import (
    POINTS_COMPLETED_EVENT,
    NotificationService,
    restaurant_room,
)
from loyaltyapi.services.rate_policy import CENTS, PointsRatePolicy
from loyaltyapi.utils.timezone_utils import utc_now
import logging

logger = logging.getLogger(__name__)

QR_CODE_MAX_ATTEMPTS = 3


class PointService:
    """포인트 원장 생성/조회와 QR 완료(적립/사용) 상태 전이를 담당하는 서비스"""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        rate_policy: PointsRatePolicy,
        notification_service: Optional[NotificationService] = None,
    ):
        self.db = db
        self.settings = settings
        self.rate_policy = rate_policy
        self.notification_service = notification_service
        self.points_repo = PointsRepository(db)
        self.account_repo = AccountRepository(db)
        self.balance_service = BalanceService(db, rate_policy)

    # ------------------------------------------------------------------
    # 생성
    # ------------------------------------------------------------------

    def _generate_qr_code(self) -> str:
        return f"{self.settings.QR_CODE_PREFIX}{uuid4().hex}"

    def _ensure_customer(self, customer_id: Optional[int]) -> None:
        if customer_id is not None and not self.account_repo.customer_exists(customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")

    def _snapshot(self, line_items: List[LineItem], kind: EntryKind) -> List[dict]:
        return [
            LineItemSnapshot(
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                points=self.rate_policy.points_for(item, kind),
            ).model_dump(mode="json")
            for item in line_items
        ]

    def create_entry(self, request: PointsCreateRequest) -> PointsEntry:
        """pending 원장 항목 생성

        메뉴 가격은 생성 시점 값으로 스냅샷되고 total_points 는 이때 한 번만 계산됩니다.

        Args:
            request: 거래 종류, 가맹점, (선택) 고객, 메뉴 목록, 메모

        Returns:
            PointsEntry: 생성된 원장 항목 (QR 코드 포함)
        """
        # HTTP 요청은 스키마에서 이미 검증됨. 서비스를 직접 호출하는 경우(스크립트 등)를 위한 검사
        if not request.restaurant_id:
            raise ValidationError("restaurant_id is required")
        if not request.line_items:
            raise ValidationError("At least one line item is required")
        for item in request.line_items:
            if item.unit_price <= 0 or item.quantity <= 0:
                raise ValidationError(
                    "Line items must have a positive price and quantity",
                    details={"item": item.name},
                )
        self._ensure_customer(request.customer_id)

        total_price = sum(
            (item.unit_price * item.quantity for item in request.line_items), Decimal("0")
        ).quantize(CENTS)
        total_points = self.rate_policy.total_points(request.line_items, request.kind)

        for attempt in range(1, QR_CODE_MAX_ATTEMPTS + 1):
            qr_code = self._generate_qr_code()
            try:
                entry = self.points_repo.create_entry(
                    kind=request.kind,
                    status=EntryStatus.PENDING,
                    restaurant_id=request.restaurant_id,
                    customer_id=request.customer_id,
                    line_items=self._snapshot(request.line_items, request.kind),
                    total_price=total_price,
                    total_points=total_points,
                    points_per_dollar=self.rate_policy.rate(request.kind),
                    qr_code=qr_code,
                    notes=request.notes,
                )
            except IntegrityError as e:
                # 생성 실패 시 리포지토리에서 이미 롤백됨
                if "qr_code" not in str(e.orig).lower() or attempt == QR_CODE_MAX_ATTEMPTS:
                    raise
                logger.warning(f"QR code collision on attempt {attempt}, regenerating")
                continue

            logger.info(
                f"Created {entry.kind.value} entry {entry.id} for restaurant "
                f"{entry.restaurant_id}: {entry.total_points} points"
            )
            return entry

    # ------------------------------------------------------------------
    # 조회 / 수정
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: int) -> PointsEntry:
        entry = self.points_repo.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Points entry {entry_id} not found")
        return entry

    def get_entry_by_qr_code(self, qr_code: str) -> PointsEntry:
        entry = self.points_repo.get_by_qr_code(qr_code)
        if entry is None:
            raise NotFoundError("QR code not found", details={"qr_code": qr_code})
        return entry

    def list_restaurant_entries(
        self,
        restaurant_id: int,
        status: Optional[EntryStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PointsListResponse:
        """가맹점 원장 조회 (최신순, limit 은 최대 페이지 크기로 제한)"""
        limit = max(1, min(limit, self.settings.POINTS_LEDGER_MAX_PAGE_SIZE))
        offset = max(0, offset)

        entries, total_count = self.points_repo.query_by_restaurant(
            restaurant_id, status=status, limit=limit, offset=offset
        )
        return PointsListResponse(
            entries=entries,
            total_count=total_count,
            limit=limit,
            offset=offset,
            has_next=offset + len(entries) < total_count,
        )

    def update_entry(self, entry_id: int, request: PointsUpdateRequest) -> PointsEntry:
        """pending 항목의 메모/고객 수정. 완료된 항목은 수정할 수 없음"""
        entry = self.get_entry(entry_id)
        if entry.status == EntryStatus.COMPLETED:
            raise ValidationError(
                "Completed entries cannot be modified", details={"entry_id": entry_id}
            )
        self._ensure_customer(request.customer_id)

        updated = self.points_repo.update_pending(
            entry_id, notes=request.notes, customer_id=request.customer_id
        )
        if not updated:
            raise ValidationError(
                "Completed entries cannot be modified", details={"entry_id": entry_id}
            )
        return self.get_entry(entry_id)

    # ------------------------------------------------------------------
    # 완료 (QR 스캔)
    # ------------------------------------------------------------------

    def complete_entry(self, entry_id: int, customer_id: Optional[int] = None) -> PointsEntry:
        return self._complete(self.get_entry(entry_id), customer_id)

    def scan_qr_code(self, qr_code: str, customer_id: Optional[int] = None) -> PointsEntry:
        return self._complete(self.get_entry_by_qr_code(qr_code), customer_id)

    def _complete(self, entry: PointsEntry, customer_id: Optional[int]) -> PointsEntry:
        """
        pending -> completed 전이

        동시에 같은 항목을 완료하려는 요청 중 하나만 성공하고 나머지는
        DuplicateIssuanceError 를 받습니다. redeem 항목은 잔액 확인과 전이를 같은
        트랜잭션 안에서 수행하며, 잔액이 부족하면 항목은 pending 으로 남습니다.
        전이는 잔액을 확인한 고객이 그대로 항목의 고객일 때만 적용됩니다.
        """
        if entry.status == EntryStatus.COMPLETED:
            raise DuplicateIssuanceError(details={"entry_id": entry.id})
        self._ensure_customer(customer_id)

        redeemer = None
        try:
            if entry.kind == EntryKind.REDEEM:
                redeemer = entry.customer_id or customer_id
                if redeemer is None:
                    raise ValidationError(
                        "A customer is required to redeem points",
                        details={"entry_id": entry.id},
                    )
                self.balance_service.lock_customer(redeemer)
                balance = self.balance_service.customer_balance(redeemer)
                if balance < entry.total_points:
                    raise InsufficientBalanceError(
                        f"Insufficient balance. Required: {entry.total_points}, Available: {balance}",
                        details={"required": entry.total_points, "available": balance},
                    )

            transitioned = self.points_repo.complete_if_pending(
                entry.id,
                completed_at=utc_now(),
                customer_id=redeemer or customer_id,
                expected_customer_id=redeemer,
                commit=False,
            )
            if not transitioned:
                current = self.points_repo.get_entry(entry.id)
                if redeemer is not None and current and current.status == EntryStatus.PENDING:
                    # 잔액 확인 이후 다른 요청이 고객을 바꾼 경우
                    raise ValidationError(
                        "Entry customer changed during completion, please retry",
                        details={"entry_id": entry.id, "customer_id": current.customer_id},
                    )
                raise DuplicateIssuanceError(details={"entry_id": entry.id})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        completed = self.get_entry(entry.id)
        logger.info(
            f"Completed {completed.kind.value} entry {completed.id} "
            f"({completed.total_points} points, customer {completed.customer_id})"
        )
        self._publish_completed(completed)
        return completed

    def _publish_completed(self, entry: PointsEntry) -> None:
        if self.notification_service is None:
            return
        try:
            event = PointsCompletedEvent(
                entry_id=entry.id,
                restaurant_id=entry.restaurant_id,
                kind=entry.kind,
                qr_code=entry.qr_code,
                customer_id=entry.customer_id,
                completed_at=entry.completed_at or utc_now(),
            )
            self.notification_service.publish(
                POINTS_COMPLETED_EVENT,
                event.model_dump(mode="json"),
                room=restaurant_room(entry.restaurant_id),
            )
        except Exception as e:
            logger.warning(f"Failed to publish completion of entry {entry.id}: {e}")

    # ------------------------------------------------------------------
    # 포인트 공유
    # ------------------------------------------------------------------

    def share_points(self, request: PointsShareRequest) -> PointsShareResponse:
        """
        고객 간 포인트 이전

        보내는 고객의 redeem 항목과 받는 고객의 issue 항목을 한 트랜잭션에서 completed 로
        생성합니다. 잔액이 부족하면 어떤 항목도 생성되지 않습니다.
        """
        if request.points <= 0:
            raise ValidationError("Points to share must be positive")
        if request.sender_id == request.recipient_id:
            raise ValidationError("Cannot share points with yourself")
        self._ensure_customer(request.sender_id)
        self._ensure_customer(request.recipient_id)

        transfer_ref = f"TR_{uuid4().hex}"
        now = utc_now()
        common = dict(
            status=EntryStatus.COMPLETED,
            restaurant_id=None,
            line_items=[],
            total_price=Decimal("0.00"),
            total_points=request.points,
            qr_code=None,
            completed_at=now,
            transfer_ref=transfer_ref,
        )

        try:
            self.balance_service.lock_customer(request.sender_id)
            balance = self.balance_service.customer_balance(request.sender_id)
            if balance < request.points:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Required: {request.points}, Available: {balance}",
                    details={"required": request.points, "available": balance},
                )

            sender_entry = self.points_repo.create_entry(
                commit=False,
                kind=EntryKind.REDEEM,
                customer_id=request.sender_id,
                points_per_dollar=self.rate_policy.rate(EntryKind.REDEEM),
                notes=f"Shared with customer {request.recipient_id}",
                **common,
            )
            recipient_entry = self.points_repo.create_entry(
                commit=False,
                kind=EntryKind.ISSUE,
                customer_id=request.recipient_id,
                points_per_dollar=self.rate_policy.rate(EntryKind.ISSUE),
                notes=f"Shared by customer {request.sender_id}",
                **common,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Customer {request.sender_id} shared {request.points} points with "
            f"customer {request.recipient_id} ({transfer_ref})"
        )
        return PointsShareResponse(
            transfer_ref=transfer_ref,
            sender_entry=sender_entry,
            recipient_entry=recipient_entry,
            sender_balance=balance - request.points,
        )
