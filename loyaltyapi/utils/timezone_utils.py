"""
타임존 유틸리티

원장/정산 시각은 모두 UTC 로 저장하고 비교합니다.
"""

from datetime import datetime, timezone

# 결제 내역 날짜 그룹 키 (DD/MM/YYYY)
DISPLAY_DATE_FORMAT = "%d/%m/%Y"


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """datetime을 UTC로 변환합니다."""
    if dt.tzinfo is None:
        # naive datetime은 UTC로 가정 (SQLite 는 타임존 정보를 저장하지 않음)
        dt = dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def format_display_date(dt: datetime) -> str:
    """결제 내역 그룹에 사용하는 DD/MM/YYYY 날짜 문자열"""
    return to_utc(dt).strftime(DISPLAY_DATE_FORMAT)
