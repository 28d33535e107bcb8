"""
Graph Rate Limit - 재시도 정책과 엔드포인트별 스로틀링 상태 관리

역할:
    - 지수 백오프 + 지터 지연 계산
    - Retry-After 헤더 해석 (초 또는 HTTP-date)
    - 엔드포인트 그룹별 next_allowed_at 관리 (스로틀링 중인 그룹은 호출 전 대기)
"""

import asyncio
import logging
import random
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

from .graph_types import EndpointClass, RateLimitState
from .outlook_config import OutlookConfig
from auth.time_utils import to_utc, utc_now

logger = logging.getLogger(__name__)


class RetryPolicy:
    """재시도 정책 (시도 횟수 상한, 백오프 계산)"""

    def __init__(self, max_attempts: int = 4, backoff_base: float = 1.0, backoff_max: float = 30.0):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

    @classmethod
    def from_config(cls, config: OutlookConfig) -> "RetryPolicy":
        return cls(config.max_attempts, config.backoff_base, config.backoff_max)

    def backoff_delay(self, attempt: int) -> float:
        """
        n번째 실패 후 대기 시간 (지수 백오프 + 지터)

        Args:
            attempt: 1부터 시작하는 실패 횟수

        Returns:
            대기 시간 (초)
        """
        exponential = self.backoff_base * (2 ** max(attempt - 1, 0))
        return min(self.backoff_max, exponential) + random.uniform(0, self.backoff_base)

    @staticmethod
    def parse_retry_after(value: Optional[str]) -> Optional[float]:
        """
        Retry-After 헤더 해석

        Args:
            value: 헤더 값 (초 단위 숫자 또는 HTTP-date)

        Returns:
            대기 시간 (초) 또는 해석 불가 시 None
        """
        if value is None:
            return None
        value = value.strip()
        try:
            return max(0.0, float(value))
        except ValueError:
            pass
        try:
            when = to_utc(parsedate_to_datetime(value))
        except (TypeError, ValueError):
            logger.warning(f"Unparseable Retry-After header: {value!r}")
            return None
        return max(0.0, (when - utc_now()).total_seconds())


class RateLimitRegistry:
    """엔드포인트 그룹별 RateLimitState 맵"""

    def __init__(self):
        self._states: Dict[EndpointClass, RateLimitState] = {}

    def state(self, endpoint_class: EndpointClass) -> RateLimitState:
        if endpoint_class not in self._states:
            self._states[endpoint_class] = RateLimitState()
        return self._states[endpoint_class]

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    async def wait_turn(self, endpoint_class: EndpointClass):
        """그룹이 스로틀링 중이면 허용 시각까지 대기"""
        delay = self.state(endpoint_class).next_allowed_at - self._now()
        if delay > 0:
            logger.info(f"Endpoint class '{endpoint_class.value}' throttled, waiting {delay:.1f}s")
            await asyncio.sleep(delay)

    def record_throttle(self, endpoint_class: EndpointClass, delay: float):
        """429 수신 기록 - 그룹 전체의 다음 허용 시각을 늦춤"""
        state = self.state(endpoint_class)
        state.consecutive_throttles += 1
        state.next_allowed_at = max(state.next_allowed_at, self._now() + delay)
        logger.warning(
            f"⚠️ Throttled on '{endpoint_class.value}' "
            f"({state.consecutive_throttles} in a row), next call in {delay:.1f}s"
        )

    def record_success(self, endpoint_class: EndpointClass):
        """성공 시 연속 스로틀 카운터 초기화"""
        state = self.state(endpoint_class)
        if state.consecutive_throttles:
            state.consecutive_throttles = 0
