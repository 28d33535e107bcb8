"""
Core Protocols - 모듈 간 의존성 추상화를 위한 Protocol 정의

현재 정의:
    - CredentialProviderProtocol: mcp_outlook이 auth.AuthManager를 직접 알지 않아도 되게 함
    - TokenStoreProtocol: AuthManager가 저장 매체(sqlite 등)를 직접 알지 않아도 되게 함

사용 예시:
    # 테스트용 Mock 주입
    provider = MagicMock()
    provider.get_valid_credential = AsyncMock(return_value=credential)
    client = GraphClient(credential_provider=provider)
"""

from typing import Protocol, Optional, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from auth.credential import Credential


@runtime_checkable
class CredentialProviderProtocol(Protocol):
    """
    자격증명 제공자 프로토콜 - AuthManager 추상화

    Graph 호출 직전에 유효한 Credential을 빌려주는 인터페이스.
    반환된 Credential은 한 번의 HTTP 교환 동안만 사용하고 캐시하지 않는다.
    """

    async def get_valid_credential(self) -> "Credential":
        """
        유효한 자격증명 반환 (필요시 단일 갱신)

        Returns:
            안전 마진 이상 수명이 남은 Credential

        Raises:
            ReauthorizationRequired: 재인증 필요
            TransientError: 갱신 중 일시적 오류
        """
        ...

    async def force_refresh(self, rejected_access_token: str) -> "Credential":
        """
        401 응답 이후 강제 갱신

        Args:
            rejected_access_token: 서버가 거부한 액세스 토큰

        Returns:
            새 Credential (이미 다른 호출이 갱신했다면 그 결과)
        """
        ...


@runtime_checkable
class TokenStoreProtocol(Protocol):
    """
    토큰 저장소 프로토콜 - get / set_from_exchange / clear 만 노출

    도구나 Graph API 형태에 대해서는 알지 못한다.
    """

    def get(self) -> Optional["Credential"]:
        """저장된 자격증명 조회 (없으면 None)"""
        ...

    def set_from_exchange(self, credential: "Credential") -> None:
        """토큰 교환/갱신 결과로 자격증명 교체"""
        ...

    def clear(self) -> None:
        """저장된 자격증명 삭제 (멱등)"""
        ...
