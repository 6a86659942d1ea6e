import calendar
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시각 (timezone-aware)"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    DB 에서 읽은 datetime 을 UTC aware 로 정규화

    sqlite 처럼 timezone 정보를 보존하지 않는 드라이버는 naive datetime 을
    돌려주므로, 저장 시점의 값이 UTC 였다고 간주한다.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int = 1) -> datetime:
    """
    달력 기준 N개월 뒤 같은 일시를 반환

    말일 보정: 1/31 + 1개월 = 2/28 (윤년이면 2/29)

    Examples:
        >>> add_months(datetime(2024, 1, 31), 1)
        datetime(2024, 2, 29, 0, 0)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))
