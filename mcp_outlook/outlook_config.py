"""
Outlook / Graph configuration module.
Graph API 엔드포인트, 재시도 정책, 도구 기본값을 환경변수에서 로드합니다.
"""

import os
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0/"
MAX_BATCH_SIZE = 20  # Graph $batch 한도


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}: {value!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


class OutlookConfig:
    """Graph 어댑터와 도구 설정"""

    def __init__(
        self,
        graph_api_endpoint: Optional[str] = None,
        request_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        batch_size: Optional[int] = None,
        allowed_recipients: Optional[List[str]] = None,
    ):
        """
        설정 초기화 (우선순위: 1. 매개변수 2. 환경변수 3. 기본값)

        Args:
            graph_api_endpoint: Graph API 기본 URL
            request_timeout: HTTP 요청 타임아웃 (초)
            max_attempts: 한 논리 호출의 최대 시도 횟수
            backoff_base: 지수 백오프 기본 지연 (초)
            backoff_max: 백오프 최대 지연 (초)
            batch_size: $batch 한 번에 담을 요청 수 (최대 20)
            allowed_recipients: 발송 허용 주소/도메인 (비어 있으면 제한 없음)
        """
        endpoint = graph_api_endpoint or os.getenv("GRAPH_API_ENDPOINT", DEFAULT_GRAPH_API_ENDPOINT)
        self.graph_api_endpoint = endpoint.rstrip("/") + "/"

        self.request_timeout = request_timeout if request_timeout is not None else _env_float("GRAPH_REQUEST_TIMEOUT", 30.0)
        self.max_attempts = max(1, max_attempts if max_attempts is not None else _env_int("GRAPH_MAX_ATTEMPTS", 4))
        self.backoff_base = backoff_base if backoff_base is not None else _env_float("GRAPH_BACKOFF_BASE", 1.0)
        self.backoff_max = backoff_max if backoff_max is not None else _env_float("GRAPH_BACKOFF_MAX", 30.0)

        size = batch_size if batch_size is not None else _env_int("GRAPH_BATCH_SIZE", MAX_BATCH_SIZE)
        self.batch_size = max(1, min(size, MAX_BATCH_SIZE))

        self.default_timezone = os.getenv("OUTLOOK_DEFAULT_TIMEZONE", "UTC")
        self.default_page_size = _env_int("OUTLOOK_DEFAULT_PAGE_SIZE", 25)
        self.max_page_size = _env_int("OUTLOOK_MAX_PAGE_SIZE", 100)

        if allowed_recipients is None:
            raw = os.getenv("OUTLOOK_ALLOWED_RECIPIENTS", "")
            allowed_recipients = [r for r in raw.split(",")]
        self.allowed_recipients = [r.strip().lower() for r in allowed_recipients if r and r.strip()]

    def page_size(self, requested: Optional[int]) -> int:
        """요청된 페이지 크기를 [1, max_page_size] 로 제한"""
        if not requested:
            return self.default_page_size
        return max(1, min(requested, self.max_page_size))

    def is_recipient_allowed(self, address: str) -> bool:
        """
        발송 허용 여부 (정확한 주소 또는 @도메인 일치)

        Args:
            address: 수신자 이메일 주소

        Returns:
            허용 여부 (허용 목록이 비어 있으면 항상 True)
        """
        if not self.allowed_recipients:
            return True

        address = address.strip().lower()
        domain = address.rsplit("@", 1)[-1] if "@" in address else ""
        for entry in self.allowed_recipients:
            if entry == address:
                return True
            entry_domain = entry.lstrip("@")
            if "@" not in entry_domain and entry_domain == domain:
                return True
        return False
