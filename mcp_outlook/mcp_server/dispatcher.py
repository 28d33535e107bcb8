"""
Tool Dispatcher
도구 호출 요청을 검증하고 핸들러로 라우팅하여 항상 ToolResult 를 반환한다.

dispatch() 는 예외를 던지지 않고 재시도하지도 않는다.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from core.errors import ErrorKind, InvalidArgumentsError, OutlookMCPError, UnknownToolError
from .tool_registry import ToolRegistry

if TYPE_CHECKING:
    from auth.auth_manager import AuthManager
    from ..graph_batch import GraphBatch
    from ..graph_client import GraphClient
    from ..outlook_config import OutlookConfig

logger = logging.getLogger(__name__)


class ToolRequest(BaseModel):
    """한 번의 도구 호출"""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """도구 호출 결과 - 성공(payload) 또는 실패(kind, message, retryable, details)"""

    success: bool
    payload: Any = None
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    retryable: bool = False
    details: Any = None

    @classmethod
    def ok(cls, payload: Any) -> "ToolResult":
        return cls(success=True, payload=payload)

    @classmethod
    def failure(cls, error: OutlookMCPError) -> "ToolResult":
        details = error.details
        # 하위 클래스가 to_dict 에 추가한 필드 (예: GraphApiError 의 status, code)
        extras = {
            key: value for key, value in error.to_dict().items()
            if key not in ("kind", "message", "retryable", "details")
        }
        if extras:
            if details is None:
                details = extras
            elif isinstance(details, dict):
                details = {**extras, **details}
            else:
                details = {**extras, "items": details}

        return cls(
            success=False,
            kind=error.kind,
            message=error.message,
            retryable=error.retryable,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        """프로토콜 경계 표현"""
        if self.success:
            return {"success": True, "payload": self.payload}

        failure: Dict[str, Any] = {
            "kind": self.kind.value if self.kind else ErrorKind.PERMANENT_TOOL_ERROR.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            failure["details"] = self.details
        return {"success": False, "failure": failure}


@dataclass
class ToolContext:
    """핸들러가 사용하는 공유 자원"""

    auth_manager: "AuthManager"
    graph: "GraphClient"
    batch: "GraphBatch"
    config: "OutlookConfig"


class ToolDispatcher:
    """도구 디스패처"""

    def __init__(self, registry: ToolRegistry, context: ToolContext):
        """
        Args:
            registry: 동결된 도구 레지스트리
            context: 핸들러에 전달할 공유 자원
        """
        self.registry = registry
        self.context = context

    async def dispatch(self, request: ToolRequest) -> ToolResult:
        """
        도구 호출

        Args:
            request: 도구 이름과 인자

        Returns:
            ToolResult (예외를 던지지 않음)
        """
        descriptor = self.registry.get(request.name)
        if descriptor is None:
            logger.warning(f"Unknown tool requested: {request.name}")
            return ToolResult.failure(UnknownToolError(f"Unknown tool: {request.name}"))

        try:
            args = descriptor.input_model.model_validate(request.arguments or {})
        except ValidationError as e:
            error = InvalidArgumentsError.from_validation_errors(e.errors())
            logger.info(f"Invalid arguments for {request.name}: {error.message}")
            return ToolResult.failure(error)

        try:
            outcome = await descriptor.handler(args, self.context)
        except OutlookMCPError as e:
            log = logger.warning if e.kind != ErrorKind.PERMANENT_TOOL_ERROR else logger.info
            log(f"Tool {request.name} failed ({e.kind.value}): {e.message}")
            return ToolResult.failure(e)
        except Exception as e:
            logger.error(f"❌ Unexpected error in tool {request.name}: {e}", exc_info=True)
            return ToolResult(
                success=False,
                kind=ErrorKind.PERMANENT_TOOL_ERROR,
                message=f"Tool '{request.name}' failed: {e}",
            )

        if isinstance(outcome, ToolResult):
            return outcome
        return ToolResult.ok(outcome)
