"""
Graph Client - Microsoft Graph API 호출 어댑터

역할:
    - 호출마다 유효한 자격증명 확보 (CredentialProviderProtocol)
    - 429 / 5xx / 네트워크 오류 / 타임아웃 재시도 (Retry-After 또는 지수 백오프)
    - 401 수신 시 논리 호출당 정확히 한 번 강제 갱신 후 재시도
    - 응답 정규화 (빈 본문 -> {}, @odata.nextLink -> 불투명 커서)

재시도는 이 모듈에서만 일어난다. 상위 계층은 결과 또는 분류된 에러만 본다.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

import aiohttp

from core.errors import GraphApiError, ReauthorizationRequired, TransientError
from .graph_rate_limit import RateLimitRegistry, RetryPolicy
from .graph_types import GraphRequest, GraphResponse
from .graph_url import decode_cursor, encode_cursor, format_query_value, resolve_endpoint_class
from .outlook_config import OutlookConfig

if TYPE_CHECKING:
    from core.protocols import CredentialProviderProtocol

logger = logging.getLogger(__name__)


class GraphClient:
    """
    Graph API 클라이언트

    자격증명은 HTTP 교환 한 번 동안만 빌려 쓰고 캐시하지 않는다.
    """

    def __init__(
        self,
        credential_provider: "CredentialProviderProtocol",
        config: Optional[OutlookConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limits: Optional[RateLimitRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """
        초기화

        Args:
            credential_provider: 자격증명 제공자 (AuthManager)
            config: Outlook 설정 (None이면 환경변수에서 로드)
            session: aiohttp 세션 (테스트 주입용)
            rate_limits: 엔드포인트별 스로틀링 상태
            retry_policy: 재시도 정책 (None이면 config 기준)
        """
        self.credential_provider = credential_provider
        self.config = config or OutlookConfig()
        self.session = session
        self._owns_session = session is None
        self.rate_limits = rate_limits or RateLimitRegistry()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self._timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self.session

    def _build_url(self, request: GraphRequest) -> str:
        endpoint = self.config.graph_api_endpoint
        if request.cursor:
            return decode_cursor(request.cursor, endpoint)
        return endpoint + request.path.lstrip("/")

    async def _send(
        self, request: GraphRequest, url: str, access_token: str
    ) -> Tuple[int, Any, str]:
        headers = {
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json',
        }
        headers.update(request.headers)

        kwargs: Dict[str, Any] = {'headers': headers, 'timeout': self._timeout}
        if request.params and not request.cursor:
            kwargs['params'] = {k: format_query_value(v) for k, v in request.params.items() if v is not None}
        if request.json_body is not None:
            kwargs['json'] = request.json_body

        session = await self._get_session()
        async with session.request(request.method, url, **kwargs) as response:
            text = await response.text()
            return response.status, response.headers, text

    @staticmethod
    def _parse_body(text: str) -> Any:
        if not text or not text.strip():
            return {}
        try:
            return json.loads(text)
        except ValueError:
            return {'raw': text}

    @staticmethod
    def _graph_error(status: int, body: Any) -> GraphApiError:
        code = None
        message = f"HTTP {status}"
        if isinstance(body, dict) and isinstance(body.get('error'), dict):
            code = body['error'].get('code')
            message = body['error'].get('message') or message
        return GraphApiError(status, code, message)

    def _to_response(self, status: int, body: Any) -> GraphResponse:
        next_cursor = delta_cursor = None
        if isinstance(body, dict):
            next_cursor = encode_cursor(body.pop('@odata.nextLink', None))
            delta_cursor = encode_cursor(body.pop('@odata.deltaLink', None))
        return GraphResponse(status=status, payload=body, next_cursor=next_cursor, delta_cursor=delta_cursor)

    async def _back_off_or_raise(
        self, request: GraphRequest, failures: int, reason: str, error: TransientError
    ):
        """시도 횟수가 남았으면 백오프 후 반환, 소진되었으면 error 를 던짐"""
        max_attempts = self.retry_policy.max_attempts
        if failures >= max_attempts:
            logger.error(f"❌ {request.method} {request.path or '(cursor)'} failed after {failures} attempts: {reason}")
            raise error
        delay = self.retry_policy.backoff_delay(failures)
        logger.warning(f"⚠️ Retry {failures}/{max_attempts} after {reason}, waiting {delay:.1f}s")
        await asyncio.sleep(delay)

    async def call(self, request: GraphRequest) -> GraphResponse:
        """
        Graph API 호출 (재시도 포함)

        Args:
            request: GraphRequest

        Returns:
            GraphResponse

        Raises:
            TransientError: 시도 횟수 소진 (스로틀링/서버 오류/네트워크)
            ReauthorizationRequired: 갱신 후에도 401 또는 자격증명 없음
            GraphApiError: 그 외 4xx (재시도 안 함)
            InvalidArgumentsError: 잘못된 커서
        """
        url = self._build_url(request)
        endpoint_class = request.endpoint_class or resolve_endpoint_class(request.path or url)
        max_attempts = self.retry_policy.max_attempts
        failures = 0
        refreshed = False

        while True:
            await self.rate_limits.wait_turn(endpoint_class)
            try:
                credential = await self.credential_provider.get_valid_credential()
            except TransientError as e:
                failures += 1
                await self._back_off_or_raise(request, failures, f"token refresh: {e.message}", e)
                continue

            try:
                status, headers, text = await self._send(request, url, credential.access_token)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                failures += 1
                await self._back_off_or_raise(
                    request, failures, type(e).__name__,
                    TransientError(f"Graph API unreachable after {failures} attempts: {e!r}"),
                )
                continue

            if status == 401:
                if refreshed:
                    raise ReauthorizationRequired("Access token rejected by Graph API after refresh")
                try:
                    await self.credential_provider.force_refresh(credential.access_token)
                except TransientError as e:
                    failures += 1
                    await self._back_off_or_raise(request, failures, f"forced refresh: {e.message}", e)
                    continue
                refreshed = True
                continue

            if status == 429 or status >= 500:
                failures += 1
                delay = self.retry_policy.parse_retry_after(headers.get('Retry-After'))
                if delay is None:
                    delay = self.retry_policy.backoff_delay(failures)

                if status == 429:
                    self.rate_limits.record_throttle(endpoint_class, delay)

                if failures >= max_attempts:
                    logger.error(f"❌ {request.method} {request.path or '(cursor)'} failed with {status} after {failures} attempts")
                    kind = "Throttled" if status == 429 else f"Server error {status}"
                    raise TransientError(
                        f"{kind} by Graph API after {failures} attempts",
                        details={'status': status, 'retry_after': round(delay, 3)},
                    )

                if status >= 500:
                    logger.warning(f"⚠️ Retry {failures}/{max_attempts} after HTTP {status}, waiting {delay:.1f}s")
                    await asyncio.sleep(delay)
                continue

            body = self._parse_body(text)
            if status >= 400:
                error = self._graph_error(status, body)
                logger.warning(f"Graph API rejected {request.method} {request.path or '(cursor)'}: {error.message}")
                raise error

            self.rate_limits.record_success(endpoint_class)
            return self._to_response(status, body)

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        cursor: Optional[str] = None,
    ) -> GraphResponse:
        """GraphRequest 생성 + call 편의 메서드"""
        return await self.call(GraphRequest(
            method=method,
            path=path,
            params=params or {},
            json_body=json_body,
            headers=headers or {},
            cursor=cursor,
        ))

    async def close(self):
        """리소스 정리"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
