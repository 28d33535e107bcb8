"""
Graph Batch - JSON $batch 요청 실행기

역할:
    - 요청 목록을 최대 20개 단위로 분할하여 $batch 로 전송 (GraphClient.call 경유)
    - 스로틀링(429) / 5xx 하위 응답만 재전송 (시도 횟수 상한 공유)
    - 요청 순서대로 항목별 결과(BatchItemResult) 반환

부분 실패 처리 정책(허용/엄격)은 호출하는 도구가 결정한다.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.errors import OutlookMCPError, ReauthorizationRequired
from .graph_client import GraphClient
from .graph_types import BatchItemResult, EndpointClass, GraphRequest
from .graph_url import decode_cursor, format_query_value

logger = logging.getLogger(__name__)


class GraphBatch:
    """$batch 실행기"""

    def __init__(self, client: GraphClient):
        """
        초기화

        Args:
            client: 봉투(envelope) 요청을 보낼 GraphClient
        """
        self.client = client
        self.max_batch_size = client.config.batch_size

    def _split_into_batches(self, indices: List[int]) -> List[List[int]]:
        """인덱스 리스트를 배치 크기로 분할"""
        return [indices[i:i + self.max_batch_size] for i in range(0, len(indices), self.max_batch_size)]

    def _to_batch_entry(self, index: int, request: GraphRequest) -> Dict[str, Any]:
        if request.cursor:
            endpoint = self.client.config.graph_api_endpoint
            url = "/" + decode_cursor(request.cursor, endpoint)[len(endpoint):]
        else:
            url = "/" + request.path.lstrip("/")
            if request.params:
                query = urlencode({k: format_query_value(v) for k, v in request.params.items() if v is not None})
                url = f"{url}?{query}"

        entry: Dict[str, Any] = {"id": str(index), "method": request.method, "url": url}
        if request.json_body is not None:
            entry["body"] = request.json_body
            entry["headers"] = {"Content-Type": "application/json", **request.headers}
        elif request.headers:
            entry["headers"] = dict(request.headers)
        return entry

    @staticmethod
    def _item_error(status: int, body: Any) -> Dict[str, Any]:
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return {"code": error.get("code"), "message": error.get("message") or f"HTTP {status}"}
        return {"code": None, "message": f"HTTP {status}"}

    async def execute(self, requests: List[GraphRequest]) -> List[BatchItemResult]:
        """
        요청 목록 실행

        Args:
            requests: 개별 Graph 요청 목록

        Returns:
            요청과 같은 순서/개수의 BatchItemResult 목록

        Raises:
            ReauthorizationRequired: 봉투 요청이 인증 문제로 실패 (나머지는 항목 실패로 기록)
        """
        results: List[Optional[BatchItemResult]] = [None] * len(requests)
        chunks = self._split_into_batches(list(range(len(requests))))
        logger.info(f"Executing {len(requests)} request(s) in {len(chunks)} batch(es)")

        for chunk_num, chunk in enumerate(chunks, 1):
            await self._execute_chunk(requests, chunk, results)
            succeeded = sum(1 for i in chunk if results[i] and results[i].ok)
            logger.info(f"  Batch {chunk_num}/{len(chunks)}: {succeeded} succeeded, {len(chunk) - succeeded} failed")

        return [r for r in results if r is not None]

    async def _execute_chunk(
        self,
        requests: List[GraphRequest],
        chunk: List[int],
        results: List[Optional[BatchItemResult]],
    ):
        policy = self.client.retry_policy
        pending = list(chunk)
        attempt = 0

        while pending:
            attempt += 1
            body = {"requests": [self._to_batch_entry(i, requests[i]) for i in pending]}

            try:
                response = await self.client.call(GraphRequest(
                    method="POST",
                    path="$batch",
                    json_body=body,
                    endpoint_class=EndpointClass.BATCH,
                ))
            except ReauthorizationRequired:
                raise
            except OutlookMCPError as e:
                logger.warning(f"⚠️ Batch envelope failed: {e.message}")
                for i in pending:
                    results[i] = BatchItemResult(
                        index=i,
                        status=getattr(e, "status", 0),
                        ok=False,
                        error={"code": e.kind.value, "message": e.message},
                        retryable=e.retryable,
                    )
                return

            payload = response.payload if isinstance(response.payload, dict) else {}
            retry: List[int] = []
            retry_delays: List[float] = []
            throttled = False
            answered = set()

            for item in payload.get("responses", []):
                try:
                    index = int(item.get("id"))
                except (TypeError, ValueError):
                    continue
                if index not in pending:
                    continue
                answered.add(index)

                status = int(item.get("status", 0))
                item_body = item.get("body")
                if 200 <= status < 300:
                    results[index] = BatchItemResult(index=index, status=status, ok=True, body=item_body)
                    continue

                transient = status == 429 or status >= 500
                results[index] = BatchItemResult(
                    index=index,
                    status=status,
                    ok=False,
                    body=item_body,
                    error=self._item_error(status, item_body),
                    retryable=transient,
                )
                if transient:
                    retry.append(index)
                    throttled = throttled or status == 429
                    delay = policy.parse_retry_after((item.get("headers") or {}).get("Retry-After"))
                    if delay is not None:
                        retry_delays.append(delay)

            for index in pending:
                if index not in answered:
                    results[index] = BatchItemResult(
                        index=index,
                        status=0,
                        ok=False,
                        error={"code": None, "message": "No response for batch item"},
                        retryable=True,
                    )
                    retry.append(index)

            if not retry or attempt >= policy.max_attempts:
                return

            delay = max(retry_delays) if retry_delays else policy.backoff_delay(attempt)
            logger.warning(f"⚠️ Re-sending {len(retry)} batch item(s), attempt {attempt + 1}/{policy.max_attempts}")
            if throttled:
                self.client.rate_limits.record_throttle(EndpointClass.BATCH, delay)
            else:
                await asyncio.sleep(delay)
            pending = sorted(retry)
