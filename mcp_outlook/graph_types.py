"""
Graph Adapter Types
Graph API 요청/응답, 배치 항목 결과, 엔드포인트별 스로틀링 상태 타입 정의
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EndpointClass(str, Enum):
    """스로틀링 상태를 공유하는 Graph 엔드포인트 그룹"""

    MAIL = "mail"
    CALENDAR = "calendar"
    CONTACTS = "contacts"
    PEOPLE = "people"
    CATEGORIES = "categories"
    SETTINGS = "settings"
    BATCH = "batch"
    DEFAULT = "default"


class GraphRequest(BaseModel):
    """단일 Graph API 호출"""

    model_config = ConfigDict(frozen=True)

    method: str = Field("GET", description="HTTP 메서드")
    path: str = Field("", description="Graph 엔드포인트 기준 상대 경로 (예: me/messages)")
    params: Dict[str, Any] = Field(default_factory=dict, description="쿼리 파라미터 ($top, $filter ...)")
    json_body: Optional[Any] = Field(None, description="JSON 요청 본문")
    headers: Dict[str, str] = Field(default_factory=dict, description="추가 헤더")
    cursor: Optional[str] = Field(None, description="이전 응답의 next_cursor / delta_cursor (path/params 대신 사용)")
    endpoint_class: Optional[EndpointClass] = Field(None, description="None이면 경로에서 추론")


class GraphResponse(BaseModel):
    """정규화된 Graph API 응답"""

    status: int
    payload: Any = Field(default_factory=dict)
    next_cursor: Optional[str] = None
    delta_cursor: Optional[str] = None

    @property
    def items(self) -> List[Dict[str, Any]]:
        """컬렉션 응답의 value 배열"""
        if isinstance(self.payload, dict):
            return self.payload.get("value", [])
        return []


class BatchItemResult(BaseModel):
    """$batch 안의 개별 요청 결과 (요청 순서와 동일한 index)"""

    index: int
    status: int
    ok: bool
    body: Any = None
    error: Optional[Dict[str, Any]] = None
    retryable: bool = False

    def summary(self) -> Dict[str, Any]:
        """도구 응답용 요약"""
        result: Dict[str, Any] = {"index": self.index, "status": self.status, "ok": self.ok}
        if self.error:
            result["error"] = self.error
            result["retryable"] = self.retryable
        return result


@dataclass
class RateLimitState:
    """엔드포인트 그룹별 스로틀링 상태 (어댑터만 변경)"""

    consecutive_throttles: int = 0
    next_allowed_at: float = 0.0  # 이벤트 루프 monotonic 시각
