"""
포인트 환산 비율 정책

적립(issue)과 사용(redeem)은 서로 역수가 아닌 별도의 비율을 사용합니다.
기본값은 $1 적립 시 10 포인트, $1 가치를 사용하려면 500 포인트입니다.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from loyaltyapi.config import Settings
from loyaltyapi.models.points import EntryKind
from loyaltyapi.schemas.points import LineItem

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PointsRatePolicy:
    issue: Decimal = Decimal("10")
    redeem: Decimal = Decimal("500")

    def __post_init__(self):
        for name in ("issue", "redeem"):
            value = Decimal(str(getattr(self, name)))
            if value <= 0:
                raise ValueError(f"{name} rate must be positive, got {value}")
            object.__setattr__(self, name, value)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PointsRatePolicy":
        return cls(issue=settings.POINTS_ISSUE_RATE, redeem=settings.POINTS_REDEEM_RATE)

    def rate(self, kind: EntryKind) -> Decimal:
        """거래 종류별 통화 1단위당 포인트"""
        if kind == EntryKind.ISSUE:
            return self.issue
        if kind == EntryKind.REDEEM:
            return self.redeem
        raise ValueError(f"Unknown entry kind: {kind}")

    def points_per_unit(self, unit_price: Decimal, kind: EntryKind) -> int:
        # 단가 기준으로 반올림 (합계 기준 아님): 같은 가격의 메뉴는 항상 같은 포인트
        points = (Decimal(unit_price) * self.rate(kind)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return int(points)

    def points_for(self, item: LineItem, kind: EntryKind) -> int:
        return self.points_per_unit(item.unit_price, kind) * item.quantity

    def total_points(self, items: Iterable[LineItem], kind: EntryKind) -> int:
        return sum(self.points_for(item, kind) for item in items)

    def amount_for_points(self, points: int) -> Decimal:
        """미정산 포인트를 정산 금액으로 환산 (적립 비율 기준, 센트 단위 반올림)"""
        return (Decimal(points) / self.issue).quantize(CENTS, rounding=ROUND_HALF_UP)
