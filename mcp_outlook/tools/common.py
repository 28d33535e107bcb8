"""
Tool Helpers
도구 입력 모델 기반 클래스, 목록 응답 정규화, 배치 부분 실패 정책
"""

from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.errors import InvalidArgumentsError, PermanentToolError, TransientError
from ..graph_types import BatchItemResult, GraphResponse


class ToolInput(BaseModel):
    """모든 도구 입력 모델의 기반 - 알 수 없는 인자는 거부, camelCase 별칭"""

    model_config = ConfigDict(extra='forbid', populate_by_name=True, alias_generator=to_camel)


class PagedInput(ToolInput):
    """목록 도구 공통 인자"""

    count: Optional[int] = Field(None, ge=1, description="페이지 크기 (서버 최대값으로 제한)")
    cursor: Optional[str] = Field(None, description="이전 응답의 next_cursor")


def invalid_argument(field: str, message: str) -> InvalidArgumentsError:
    """단일 필드 인자 오류"""
    return InvalidArgumentsError(
        f"Invalid arguments: {field}",
        details=[{"field": field, "message": message}],
    )


def split_addresses(value: Optional[str]) -> List[str]:
    """쉼표로 구분된 주소 문자열 -> 주소 목록"""
    if not value:
        return []
    return [address.strip() for address in value.split(",") if address.strip()]


def recipients(addresses: List[str]) -> List[Dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses]


def list_payload(
    response: GraphResponse,
    key: str,
    transform: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    컬렉션 응답을 도구 결과로 변환

    Args:
        response: GraphResponse
        key: 결과 목록 키 (예: "emails")
        transform: 항목 요약 함수

    Returns:
        {key: [...], "count": n, "next_cursor": ...}
    """
    items = response.items
    if transform:
        items = [transform(item) for item in items]

    payload: Dict[str, Any] = {key: items, "count": len(items), "next_cursor": response.next_cursor}
    if response.delta_cursor:
        payload["delta_cursor"] = response.delta_cursor
    return payload


def mixed_batch_result(results: List[BatchItemResult], ids: List[str]) -> Dict[str, Any]:
    """허용 정책 - 일부 실패해도 성공으로 항목별 결과 반환"""
    items = []
    for result in results:
        summary = result.summary()
        summary["id"] = ids[result.index]
        items.append(summary)

    succeeded = sum(1 for r in results if r.ok)
    return {
        "total": len(results),
        "succeeded": succeeded,
        "failed": len(results) - succeeded,
        "results": items,
    }


def strict_batch_result(results: List[BatchItemResult], ids: List[str], operation: str) -> Dict[str, Any]:
    """
    엄격 정책 - 하나라도 실패하면 전체 실패 (항목별 결과는 details)

    실패 항목이 모두 재시도 가능(스로틀링/서버 오류/타임아웃)하면 TransientError,
    하나라도 업무상 거부면 PermanentToolError.

    Raises:
        TransientError: 재시도 가능한 실패만 남음
        PermanentToolError: 부분 실패
    """
    summary = mixed_batch_result(results, ids)
    failed = [r for r in results if not r.ok]
    if not failed:
        return summary

    message = f"{operation} failed for {summary['failed']} of {summary['total']} item(s)"
    if all(r.retryable for r in failed):
        raise TransientError(message, details=summary["results"])
    raise PermanentToolError(message, details=summary["results"])
