"""
포인트 원장 리포지토리 - 데이터베이스 접근

이 파일은 포인트 원장 테이블에 대한 모든 읽기/쓰기를 담당합니다:
1. 원장 항목 생성 (QR 코드 유일성은 DB 제약으로 보장)
2. pending -> completed 상태 전이 (조건부 UPDATE, compare-and-set)
3. 고객 잔액/가맹점 미정산 포인트 집계
4. 정산 시 원장 항목 일괄 지급 처리 (전부 또는 전무)

핵심 특징:
- 잔액은 저장하지 않고 항상 completed 항목을 합산하여 계산합니다
- 상태 전이는 "현재 상태가 pending 인 경우에만" 적용되는 단일 UPDATE 로 처리되어
  동시에 같은 QR 코드를 스캔해도 한 번만 성공합니다
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import desc, func, or_, update
from sqlalchemy.orm import Session

from loyaltyapi.core.exceptions import LedgerIntegrityError
from loyaltyapi.models.points import EntryKind, EntryStatus
from loyaltyapi.models.points import PointsLedger as PointsLedgerModel
from loyaltyapi.repositories.base import BaseRepository
from loyaltyapi.schemas.points import PointsEntry


class PointsRepository(BaseRepository[PointsLedgerModel, PointsEntry]):
    """
    포인트 원장 리포지토리

    모든 쓰기 메서드는 commit 인자를 받습니다. 서비스가 여러 쓰기를 하나의 트랜잭션으로
    묶어야 할 때(포인트 공유, 정산)는 commit=False 로 호출하고 직접 커밋합니다.
    """

    def __init__(self, db: Session):
        super().__init__(PointsLedgerModel, PointsEntry, db)

    # ------------------------------------------------------------------
    # 생성 / 조회
    # ------------------------------------------------------------------

    def create_entry(self, commit: bool = True, **fields) -> PointsEntry:
        """원장 항목 생성. qr_code 충돌 시 IntegrityError 를 그대로 전파"""
        return self.create(commit=commit, **fields)

    def get_entry(self, entry_id: int) -> Optional[PointsEntry]:
        return self.get_by_id(entry_id)

    def get_by_qr_code(self, qr_code: str) -> Optional[PointsEntry]:
        instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.qr_code == qr_code)
            .populate_existing()
            .first()
        )
        return self._to_schema(instance)

    def query_by_restaurant(
        self,
        restaurant_id: int,
        status: Optional[EntryStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[PointsEntry], int]:
        """가맹점 원장 조회 (최신순) - (항목 목록, 전체 개수) 반환"""
        query = self.db.query(self.model_class).filter(
            self.model_class.restaurant_id == restaurant_id
        )
        if status is not None:
            query = query.filter(self.model_class.status == status)

        total_count = query.count()
        entries = (
            query.order_by(desc(self.model_class.created_at), desc(self.model_class.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(entries), total_count

    def get_transfer_entries(self, transfer_ref: str) -> List[PointsEntry]:
        """포인트 공유로 생성된 항목 쌍 조회 (redeem 먼저)"""
        entries = (
            self.db.query(self.model_class)
            .filter(self.model_class.transfer_ref == transfer_ref)
            .order_by(self.model_class.id)
            .all()
        )
        return self._to_schemas(entries)

    # ------------------------------------------------------------------
    # 상태 전이
    # ------------------------------------------------------------------

    def complete_if_pending(
        self,
        entry_id: int,
        completed_at: datetime,
        customer_id: Optional[int] = None,
        expected_customer_id: Optional[int] = None,
        commit: bool = True,
    ) -> bool:
        """
        pending 상태인 경우에만 completed 로 전이 (compare-and-set)

        Args:
            entry_id: 원장 항목 ID
            completed_at: 완료 시각
            customer_id: 항목에 고객이 비어 있을 때만 설정할 고객 ID
            expected_customer_id: 지정 시 항목의 고객이 이 값(또는 미지정)일 때만 전이.
                redeem 에서 잔액을 확인한 고객과 차감될 고객을 일치시킴
            commit: 즉시 커밋 여부

        Returns:
            bool: 이번 호출로 전이되었으면 True, 이미 completed 였거나 고객이 바뀌었으면 False
        """
        values = {"status": EntryStatus.COMPLETED, "completed_at": completed_at}
        if customer_id is not None:
            values["customer_id"] = func.coalesce(
                self.model_class.customer_id, customer_id
            )

        conditions = [
            self.model_class.id == entry_id,
            self.model_class.status == EntryStatus.PENDING,
        ]
        if expected_customer_id is not None:
            conditions.append(
                or_(
                    self.model_class.customer_id == expected_customer_id,
                    self.model_class.customer_id.is_(None),
                )
            )

        stmt = (
            update(self.model_class)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if commit:
            self.db.commit()
        return result.rowcount == 1

    def update_pending(
        self,
        entry_id: int,
        notes: Optional[str] = None,
        customer_id: Optional[int] = None,
        commit: bool = True,
    ) -> bool:
        """pending 항목의 메모/고객만 수정. status, 포인트, 메뉴는 수정 불가"""
        values = {}
        if notes is not None:
            values["notes"] = notes
        if customer_id is not None:
            values["customer_id"] = customer_id
        if not values:
            return False

        stmt = (
            update(self.model_class)
            .where(
                self.model_class.id == entry_id,
                self.model_class.status == EntryStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if commit:
            self.db.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # 집계
    # ------------------------------------------------------------------

    def get_customer_totals(self, customer_id: int) -> Dict[EntryKind, int]:
        """고객의 completed 항목 합계를 종류별로 반환"""
        rows = (
            self.db.query(
                self.model_class.kind,
                func.coalesce(func.sum(self.model_class.total_points), 0),
            )
            .filter(
                self.model_class.customer_id == customer_id,
                self.model_class.status == EntryStatus.COMPLETED,
            )
            .group_by(self.model_class.kind)
            .all()
        )
        totals = {EntryKind.ISSUE: 0, EntryKind.REDEEM: 0}
        for kind, total in rows:
            totals[EntryKind(kind)] = int(total or 0)
        return totals

    def _unpaid_issue_query(self, restaurant_id: int):
        return self.db.query(self.model_class).filter(
            self.model_class.restaurant_id == restaurant_id,
            self.model_class.kind == EntryKind.ISSUE,
            self.model_class.status == EntryStatus.COMPLETED,
            self.model_class.paid.is_(False),
        )

    def get_unpaid_liability(self, restaurant_id: int) -> Tuple[int, int]:
        """가맹점 미정산 포인트 합계와 항목 수"""
        points, count = (
            self._unpaid_issue_query(restaurant_id)
            .with_entities(
                func.coalesce(func.sum(self.model_class.total_points), 0),
                func.count(self.model_class.id),
            )
            .one()
        )
        return int(points or 0), int(count or 0)

    def get_unpaid_issue_entries(
        self, restaurant_id: int, lock: bool = False
    ) -> List[PointsEntry]:
        """
        정산 대상 항목 조회

        lock=True 이면 정산이 끝날 때까지 행을 잠급니다. 다른 워커가 이미 잠근 행은
        건너뛰므로 같은 항목이 두 번 청구되지 않습니다 (PostgreSQL 에서만 적용).
        """
        query = self._unpaid_issue_query(restaurant_id).order_by(self.model_class.id)
        if lock:
            query = query.with_for_update(skip_locked=True)
        return self._to_schemas(query.populate_existing().all())

    # ------------------------------------------------------------------
    # 정산
    # ------------------------------------------------------------------

    def mark_paid(
        self, entry_ids: Sequence[int], settlement_id: int, commit: bool = True
    ) -> int:
        """
        원장 항목 일괄 지급 처리 - 전부 또는 전무

        지정한 모든 항목이 아직 지급되지 않은 completed issue 항목이어야 합니다.
        영향받은 행 수가 요청한 ID 수와 다르면 LedgerIntegrityError 를 발생시키며,
        commit=True 인 경우 변경을 롤백합니다. commit=False 인 경우 롤백은 호출자 몫입니다.
        """
        unique_ids = set(entry_ids)
        if not unique_ids:
            return 0

        stmt = (
            update(self.model_class)
            .where(
                self.model_class.id.in_(unique_ids),
                self.model_class.kind == EntryKind.ISSUE,
                self.model_class.status == EntryStatus.COMPLETED,
                self.model_class.paid.is_(False),
            )
            .values(paid=True, settlement_id=settlement_id)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != len(unique_ids):
            if commit:
                self.db.rollback()
            raise LedgerIntegrityError(
                f"mark_paid updated {result.rowcount} of {len(unique_ids)} entries "
                f"for settlement {settlement_id}"
            )

        if commit:
            self.db.commit()
        return result.rowcount
