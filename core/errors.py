"""
Error Taxonomy
인증, Graph API, 도구 호출 실패를 하나의 에러 채널로 분류

모든 실패는 kind / message / retryable 을 가지고 프로토콜 경계까지 전달된다.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """프로토콜 경계로 전달되는 실패 종류"""

    UNKNOWN_TOOL = "UnknownTool"
    INVALID_ARGUMENTS = "InvalidArguments"
    AUTHORIZATION_FAILED = "AuthorizationFailed"
    REAUTHORIZATION_REQUIRED = "ReauthorizationRequired"
    TRANSIENT = "Transient"
    PERMANENT_TOOL_ERROR = "PermanentToolError"


class OutlookMCPError(Exception):
    """모든 도메인 에러의 기본 클래스"""

    kind: ErrorKind = ErrorKind.PERMANENT_TOOL_ERROR
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """프로토콜 응답용 딕셔너리"""
        result = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


# ===== 인증 =====


class AuthorizationFailed(OutlookMCPError):
    """대화형 인증 실패 - 사용자가 인증 플로우를 다시 시작해야 함"""

    kind = ErrorKind.AUTHORIZATION_FAILED


class InvalidGrant(AuthorizationFailed):
    """authorization code가 만료되었거나 이미 사용됨"""


class UnknownSession(AuthorizationFailed):
    """대기 중인 인증 세션이 아님 (없거나 만료됨)"""


class ReauthorizationRequired(OutlookMCPError):
    """리프레시 토큰이 죽었거나 자격증명이 없음 - 재인증 필요"""

    kind = ErrorKind.REAUTHORIZATION_REQUIRED


# ===== 호출자 =====


class InvalidArgumentsError(OutlookMCPError):
    """호출자가 수정 가능한 인자 오류"""

    kind = ErrorKind.INVALID_ARGUMENTS

    @classmethod
    def from_validation_errors(cls, errors: List[Dict[str, Any]]) -> "InvalidArgumentsError":
        """
        pydantic ValidationError.errors() 를 필드 단위 상세로 변환

        Args:
            errors: pydantic 에러 목록

        Returns:
            InvalidArgumentsError
        """
        details = []
        for error in errors:
            field = ".".join(str(part) for part in error.get("loc", ())) or "(root)"
            details.append({"field": field, "message": error.get("msg", "invalid value")})

        fields = ", ".join(d["field"] for d in details)
        return cls(f"Invalid arguments: {fields}", details=details)


class UnknownToolError(OutlookMCPError):
    """등록되지 않은 도구 이름"""

    kind = ErrorKind.UNKNOWN_TOOL


# ===== 업스트림 =====


class TransientError(OutlookMCPError):
    """네트워크/스로틀링/타임아웃 - 어댑터가 재시도를 소진한 뒤에만 노출됨"""

    kind = ErrorKind.TRANSIENT
    retryable = True


class PermanentToolError(OutlookMCPError):
    """업무상 이유로 거부된 작업 - 재시도하지 않음"""

    kind = ErrorKind.PERMANENT_TOOL_ERROR


class GraphApiError(PermanentToolError):
    """Graph API가 4xx로 거부한 요청"""

    def __init__(self, status: int, code: Optional[str], message: str, details: Optional[Any] = None):
        super().__init__(f"Graph API error {status} ({code or 'unknown'}): {message}", details=details)
        self.status = status
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["status"] = self.status
        if self.code:
            result["code"] = self.code
        return result
