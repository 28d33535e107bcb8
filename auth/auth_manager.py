"""
Authentication Manager
단일 계정 자격증명 상태 머신 - 대화형 인증, 단일 비행(single-flight) 토큰 갱신, 로그아웃
"""

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.errors import ReauthorizationRequired, UnknownSession
from core.protocols import TokenStoreProtocol
from .auth_database import AuthDatabase
from .auth_service import AuthService, generate_pkce_pair
from .azure_config import AzureConfig
from .credential import AuthState, Credential, PendingAuthorization
from .time_utils import time_until_expiry, utc_now

logger = logging.getLogger(__name__)


class AuthManager:
    """
    인증 매니저 - 자격증명의 유일한 소유자 (CredentialProviderProtocol 구현)

    상태 전이:
        UNAUTHENTICATED -> AUTHORIZING -> AUTHENTICATED -> REFRESHING -> AUTHENTICATED
        REFRESHING -> UNAUTHENTICATED (리프레시 토큰 폐기)
        AUTHENTICATED -> UNAUTHENTICATED (로그아웃)
    """

    def __init__(
        self,
        config: Optional[AzureConfig] = None,
        store: Optional[TokenStoreProtocol] = None,
        auth_service: Optional[AuthService] = None,
    ):
        """
        인증 매니저 초기화

        Args:
            config: Azure 설정 (None이면 환경변수에서 로드)
            store: 토큰 저장소 (None이면 config.db_path 의 AuthDatabase)
            auth_service: 토큰 엔드포인트 클라이언트 (None이면 생성)
        """
        self.config = config or AzureConfig()
        self.store = store if store is not None else AuthDatabase(self.config.db_path)
        self.auth_service = auth_service or AuthService(self.config)

        self._credential: Optional[Credential] = self.store.get()
        self._state = AuthState.AUTHENTICATED if self._credential else AuthState.UNAUTHENTICATED
        self._pending: Dict[str, PendingAuthorization] = {}
        self._refresh_task: Optional[asyncio.Future] = None

        if self._credential:
            logger.info(f"Loaded stored credential for {self._credential.account_id or '(unknown account)'}")

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    # ===== 대화형 인증 =====

    def _purge_expired_sessions(self):
        now = utc_now()
        expired = [sid for sid, pending in self._pending.items() if pending.is_expired(now)]
        for sid in expired:
            del self._pending[sid]
        if expired:
            logger.info(f"Purged {len(expired)} expired authorization session(s)")
        if not self._pending and self._state == AuthState.AUTHORIZING:
            self._state = AuthState.UNAUTHENTICATED

    def begin_authorization(self, scopes: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        대화형 인증 시작 - PKCE 쌍과 인증 URL 생성

        Args:
            scopes: 요청 스코프 (None이면 설정의 기본 스코프)

        Returns:
            Dict: auth_url, session_id, expires_at
        """
        self._purge_expired_sessions()

        requested = list(scopes) if scopes else list(self.config.default_scopes)
        if "offline_access" not in requested:
            requested.insert(0, "offline_access")

        verifier, challenge = generate_pkce_pair()
        session_id = secrets.token_urlsafe(32)
        now = utc_now()
        pending = PendingAuthorization(
            session_id=session_id,
            code_verifier=verifier,
            scopes=requested,
            created_at=now,
            expires_at=now + timedelta(seconds=self.config.auth_session_ttl_seconds),
        )
        self._pending[session_id] = pending

        if self._state == AuthState.UNAUTHENTICATED:
            self._state = AuthState.AUTHORIZING

        logger.info(f"Authorization session started: {session_id[:8]}...")
        return {
            'auth_url': self.auth_service.build_authorization_url(session_id, challenge, requested),
            'session_id': session_id,
            'expires_at': pending.expires_at.isoformat(),
        }

    async def complete_authorization(self, session_id: str, authorization_code: str) -> Credential:
        """
        인증 코드로 자격증명 발급 및 저장

        세션 ID는 첫 시도에서 소모된다 (성공/실패 무관).

        Args:
            session_id: begin_authorization 이 반환한 세션 ID (OAuth state)
            authorization_code: 콜백으로 받은 코드

        Returns:
            새 Credential

        Raises:
            UnknownSession: 대기 중이 아니거나 만료된 세션
            InvalidGrant: 코드 만료/재사용
            TransientError: 토큰 엔드포인트 접근 실패
        """
        self._purge_expired_sessions()
        pending = self._pending.pop(session_id, None)
        if pending is None:
            raise UnknownSession("Unknown or expired authorization session; start authentication again")

        try:
            token_result = await self.auth_service.exchange_code(
                authorization_code, pending.code_verifier, pending.scopes
            )
        finally:
            if not self._pending and self._state == AuthState.AUTHORIZING:
                self._state = AuthState.UNAUTHENTICATED

        user_info = await self.auth_service.get_user_info(token_result['access_token'])
        account_id = (
            user_info.get('mail')
            or user_info.get('userPrincipalName')
            or user_info.get('id')
            or ''
        )

        credential = self.auth_service.build_credential(token_result, account_id)
        self.store.set_from_exchange(credential)
        self._credential = credential
        self._state = AuthState.AUTHENTICATED

        logger.info(f"✅ Authentication completed for {account_id or '(unknown account)'}")
        return credential

    # ===== 토큰 제공 =====

    async def get_valid_credential(self) -> Credential:
        """
        유효한 자격증명 반환 (필요 시 갱신)

        남은 수명이 안전 마진보다 길면 네트워크 호출 없이 즉시 반환한다.
        동시 호출자는 하나의 갱신 작업을 공유한다.

        Raises:
            ReauthorizationRequired: 자격증명 없음 또는 리프레시 토큰 폐기
            TransientError: 갱신 중 네트워크/서버 오류 (자격증명 유지)
        """
        credential = self._credential
        if credential is None:
            raise ReauthorizationRequired("Not authenticated. Use the 'auth' tool with action 'authenticate'.")

        if credential.is_usable(self.config.safety_margin_seconds):
            return credential

        logger.info(f"Access token expiring ({credential.masked()}), refreshing")
        return await self._join_refresh()

    async def force_refresh(self, rejected_access_token: str) -> Credential:
        """
        업스트림이 401로 거부한 토큰 강제 갱신

        Args:
            rejected_access_token: 거부된 액세스 토큰

        Returns:
            새 Credential (이미 다른 토큰으로 교체되었으면 현재 자격증명)
        """
        credential = self._credential
        if credential is None:
            raise ReauthorizationRequired("Not authenticated. Use the 'auth' tool with action 'authenticate'.")

        if credential.access_token != rejected_access_token:
            return credential

        logger.info("Access token rejected upstream, forcing refresh")
        return await self._join_refresh()

    async def _join_refresh(self) -> Credential:
        # 확인과 생성 사이에 await 없음 - 진행 중인 갱신은 항상 하나
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._run_refresh())
        # 한 호출자의 취소가 공유 갱신을 중단시키지 않도록 shield
        return await asyncio.shield(self._refresh_task)

    async def _run_refresh(self) -> Credential:
        credential = self._credential
        try:
            if credential is None:
                raise ReauthorizationRequired("Not authenticated. Use the 'auth' tool with action 'authenticate'.")

            self._state = AuthState.REFRESHING
            scopes = credential.scopes or self.config.default_scopes
            try:
                result = await self.auth_service.refresh_tokens(credential.refresh_token, scopes)
            except ReauthorizationRequired:
                logger.warning("❌ Refresh token rejected, clearing stored credential")
                if self._credential is credential:
                    self._credential = None
                    self.store.clear()
                raise

            if self._credential is not credential:
                # 갱신 중 로그아웃 또는 재인증됨
                if self._credential is None:
                    raise ReauthorizationRequired("Signed out during token refresh")
                return self._credential

            refreshed = Credential(
                access_token=result['access_token'],
                refresh_token=result['refresh_token'],
                expires_at=result['expires_at'],
                scopes=result.get('scopes') or list(credential.scopes),
                account_id=credential.account_id,
            )
            self.store.set_from_exchange(refreshed)
            self._credential = refreshed
            return refreshed
        finally:
            self._state = AuthState.AUTHENTICATED if self._credential else (
                AuthState.AUTHORIZING if self._pending else AuthState.UNAUTHENTICATED
            )
            self._refresh_task = None

    # ===== 로그아웃 / 상태 =====

    def sign_out(self) -> None:
        """저장소, 메모리 자격증명, 대기 세션 모두 삭제 (멱등)"""
        had_credential = self._credential is not None
        self.store.clear()
        self._credential = None
        self._pending.clear()
        self._state = AuthState.UNAUTHENTICATED
        if had_credential:
            logger.info("Signed out")

    def get_status(self) -> Dict[str, Any]:
        """
        인증 상태 조회

        Returns:
            Dict: state, authenticated, account_id, expires_at, remaining, scopes, pending_sessions
        """
        self._purge_expired_sessions()
        credential = self._credential
        status: Dict[str, Any] = {
            'state': self._state.value,
            'authenticated': credential is not None,
            'pending_sessions': len(self._pending),
        }
        if credential:
            status.update({
                'account_id': credential.account_id,
                'expires_at': credential.expires_at.isoformat(),
                'remaining': time_until_expiry(credential.expires_at),
                'scopes': list(credential.scopes),
            })
        return status

    async def close(self):
        """리소스 정리"""
        await self.auth_service.close()
