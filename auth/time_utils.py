"""
시간대 처리 유틸리티
UTC 정규화와 토큰 만료 계산을 담당
"""

from datetime import datetime, timedelta, timezone
from typing import Union


def utc_now() -> datetime:
    """현재 UTC 시간 반환"""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    datetime을 UTC로 변환

    Args:
        dt: 변환할 datetime (timezone aware or naive)

    Returns:
        UTC datetime
    """
    if dt.tzinfo is None:
        # naive datetime은 UTC로 가정
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    ISO 형식 문자열을 UTC datetime으로 파싱

    Args:
        iso_string: ISO 형식 시간 문자열 ('Z' 접미사 허용)

    Returns:
        UTC datetime
    """
    dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
    return to_utc(dt)


def expires_at_from_now(expires_in: Union[int, str, None], default: int = 3600) -> datetime:
    """토큰 엔드포인트의 expires_in(초)을 절대 만료 시각으로 변환"""
    try:
        seconds = int(expires_in) if expires_in is not None else default
    except (TypeError, ValueError):
        seconds = default
    return utc_now() + timedelta(seconds=seconds)


def time_until_expiry(expires_at: Union[datetime, str]) -> str:
    """
    만료까지 남은 시간을 사람이 읽기 쉬운 형태로 반환

    Args:
        expires_at: 만료 시간 (UTC)

    Returns:
        남은 시간 문자열 (예: "2 hours 30 minutes")
    """
    if isinstance(expires_at, str):
        expires_at = parse_iso_to_utc(expires_at)

    remaining = to_utc(expires_at) - utc_now()

    if remaining.total_seconds() <= 0:
        return "Expired"

    days = remaining.days
    hours, remainder = divmod(remaining.seconds, 3600)
    minutes, _ = divmod(remainder, 60)

    parts = []
    if days > 0:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours > 0:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes > 0 and days == 0:  # 날짜가 있으면 분은 생략
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")

    return " ".join(parts) if parts else "Less than a minute"
