"""
Credential Types
자격증명, 인증 상태, 대기 중인 인증 세션 타입 정의
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .time_utils import utc_now, to_utc


class AuthState(str, Enum):
    """자격증명 관리자 상태"""

    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"  # 대화형 인증 대기 중
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"  # 리프레시 토큰 교환 중


class Credential(BaseModel):
    """
    액세스/리프레시 토큰 쌍과 메타데이터

    AuthManager만 소유하며 교체는 항상 통째로(원자적으로) 이루어진다.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)
    account_id: str = ""

    @field_validator("expires_at")
    @classmethod
    def _normalize_expires_at(cls, value: datetime) -> datetime:
        return to_utc(value)

    def remaining_lifetime(self, now: Optional[datetime] = None) -> timedelta:
        """만료까지 남은 시간"""
        return self.expires_at - (now or utc_now())

    def is_usable(self, safety_margin_seconds: int = 60, now: Optional[datetime] = None) -> bool:
        """
        안전 마진을 고려한 사용 가능 여부

        Args:
            safety_margin_seconds: 남은 수명이 이 값 미만이면 만료로 간주
            now: 기준 시각 (테스트용)

        Returns:
            사용 가능 여부
        """
        return self.remaining_lifetime(now).total_seconds() > safety_margin_seconds

    def masked(self) -> str:
        """로그용 토큰 축약 표현"""
        return f"{self.access_token[:10]}..."


class PendingAuthorization(BaseModel):
    """begin_authorization 으로 생성된 PKCE 세션"""

    session_id: str
    code_verifier: str
    scopes: List[str]
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """세션 만료 여부"""
        return (now or utc_now()) >= self.expires_at
