"""
Core Module - 모듈 간 공유 Protocol 및 에러 분류 정의

mcp_outlook이 auth.AuthManager를 직접 의존하지 않도록 추상화.
"""

from .protocols import CredentialProviderProtocol, TokenStoreProtocol
from .errors import (
    ErrorKind,
    OutlookMCPError,
    AuthorizationFailed,
    InvalidGrant,
    UnknownSession,
    ReauthorizationRequired,
    InvalidArgumentsError,
    TransientError,
    GraphApiError,
    PermanentToolError,
    UnknownToolError,
)

__all__ = [
    'CredentialProviderProtocol',
    'TokenStoreProtocol',
    'ErrorKind',
    'OutlookMCPError',
    'AuthorizationFailed',
    'InvalidGrant',
    'UnknownSession',
    'ReauthorizationRequired',
    'InvalidArgumentsError',
    'TransientError',
    'GraphApiError',
    'PermanentToolError',
    'UnknownToolError',
]
