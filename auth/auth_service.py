"""
Authentication Service
Microsoft identity platform 과의 OAuth2 (authorization code + PKCE + refresh token) 교환
"""

import asyncio
import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from core.errors import (
    AuthorizationFailed,
    InvalidGrant,
    ReauthorizationRequired,
    TransientError,
)
from .azure_config import AzureConfig
from .credential import Credential
from .time_utils import expires_at_from_now

logger = logging.getLogger(__name__)

GRAPH_ME_URL = "https://graph.microsoft.com/v1.0/me"

# 리프레시 토큰이 더 이상 쓸 수 없음을 뜻하는 OAuth 에러 코드
DEAD_REFRESH_TOKEN_ERRORS = {
    "invalid_grant",
    "interaction_required",
    "consent_required",
    "login_required",
    "invalid_client",
    "unauthorized_client",
}


def generate_pkce_pair() -> Tuple[str, str]:
    """
    PKCE verifier / challenge 쌍 생성 (S256)

    Returns:
        (code_verifier, code_challenge)
    """
    # RFC 7636: 43~128자
    verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


class AuthService:
    """인증 서비스 - 토큰 엔드포인트 HTTP 교환 담당 (상태 없음)"""

    def __init__(self, config: AzureConfig, session: Optional[aiohttp.ClientSession] = None):
        """
        인증 서비스 초기화

        Args:
            config: AzureConfig 인스턴스
            session: aiohttp 세션 (테스트 주입용, None이면 지연 생성)
        """
        self.config = config
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """aiohttp 세션 관리"""
        if not self.session or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self.session

    def build_authorization_url(self, state: str, code_challenge: str, scopes: List[str]) -> str:
        """
        OAuth 인증 URL 생성

        Args:
            state: 세션 식별자 (CSRF state 겸용)
            code_challenge: PKCE challenge
            scopes: 요청 스코프

        Returns:
            브라우저로 열 인증 URL
        """
        params = {
            'client_id': self.config.client_id,
            'response_type': 'code',
            'redirect_uri': self.config.redirect_uri,
            'response_mode': 'query',
            'scope': ' '.join(scopes),
            'state': state,
            'code_challenge': code_challenge,
            'code_challenge_method': 'S256',
        }
        return f"{self.config.authorize_endpoint}?{urlencode(params)}"

    async def _post_token_endpoint(self, data: Dict[str, str]) -> Tuple[int, Dict[str, Any]]:
        """토큰 엔드포인트 POST - (status, json) 반환, 네트워크 오류는 TransientError"""
        if self.config.client_secret:
            data['client_secret'] = self.config.client_secret

        session = await self._get_session()
        try:
            async with session.post(self.config.token_endpoint, data=data) as response:
                try:
                    payload = await response.json(content_type=None)
                except (ValueError, aiohttp.ContentTypeError):
                    payload = {'error': 'invalid_response', 'error_description': await response.text()}
                return response.status, payload or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Token endpoint unreachable: {e!r}")
            raise TransientError(f"Identity provider unreachable: {e}") from e

    @staticmethod
    def _describe(payload: Dict[str, Any]) -> str:
        return payload.get('error_description') or payload.get('error') or 'unknown error'

    async def exchange_code(self, auth_code: str, code_verifier: str, scopes: List[str]) -> Dict[str, Any]:
        """
        Authorization code를 토큰으로 교환

        Args:
            auth_code: 콜백으로 받은 인증 코드
            code_verifier: PKCE verifier
            scopes: 요청 스코프

        Returns:
            토큰 정보 (access_token, refresh_token, expires_at, scopes)

        Raises:
            InvalidGrant: 코드 만료/재사용
            AuthorizationFailed: 기타 거부
            TransientError: 네트워크/서버 오류
        """
        status, payload = await self._post_token_endpoint({
            'client_id': self.config.client_id,
            'code': auth_code,
            'redirect_uri': self.config.redirect_uri,
            'grant_type': 'authorization_code',
            'code_verifier': code_verifier,
            'scope': ' '.join(scopes),
        })

        if status >= 500:
            raise TransientError(f"Token exchange failed with status {status}")
        if status != 200:
            error_code = payload.get('error')
            logger.error(f"Token exchange rejected: {error_code}")
            if error_code == 'invalid_grant':
                raise InvalidGrant(f"Authorization code rejected: {self._describe(payload)}")
            raise AuthorizationFailed(f"Token exchange failed: {self._describe(payload)}")

        return self._parse_token_response(payload, scopes)

    async def refresh_tokens(self, refresh_token: str, scopes: List[str]) -> Dict[str, Any]:
        """
        토큰 갱신

        Args:
            refresh_token: 리프레시 토큰
            scopes: 요청 스코프

        Returns:
            새로운 토큰 정보 (회전된 refresh_token 포함, 없으면 기존 값 유지)

        Raises:
            ReauthorizationRequired: 리프레시 토큰 폐기/만료
            TransientError: 네트워크/서버 오류
        """
        status, payload = await self._post_token_endpoint({
            'client_id': self.config.client_id,
            'refresh_token': refresh_token,
            'grant_type': 'refresh_token',
            'scope': ' '.join(scopes),
        })

        if status >= 500 or status == 429:
            raise TransientError(f"Token refresh failed with status {status}")
        if status != 200:
            error_code = payload.get('error')
            if error_code not in DEAD_REFRESH_TOKEN_ERRORS:
                logger.warning(f"Unexpected refresh error {error_code!r}, treating as unrecoverable")
            raise ReauthorizationRequired(
                f"Refresh token expired or revoked: {self._describe(payload)}"
            )

        result = self._parse_token_response(payload, scopes)
        # 새 refresh token이 있으면 교체, 없으면 기존 것 유지
        if not result.get('refresh_token'):
            result['refresh_token'] = refresh_token
        logger.info("Token refreshed successfully")
        return result

    def _parse_token_response(self, token_data: Dict[str, Any], requested_scopes: List[str]) -> Dict[str, Any]:
        if 'access_token' not in token_data:
            raise AuthorizationFailed("Token response did not contain an access token")

        granted = token_data.get('scope')
        return {
            'access_token': token_data['access_token'],
            'refresh_token': token_data.get('refresh_token'),
            'expires_at': expires_at_from_now(token_data.get('expires_in')),
            'scopes': granted.split() if granted else list(requested_scopes),
        }

    async def get_user_info(self, access_token: str) -> Dict[str, Any]:
        """
        사용자 정보 조회 (Graph /me)

        Args:
            access_token: 액세스 토큰

        Returns:
            사용자 정보 (조회 실패 시 빈 딕셔너리)
        """
        session = await self._get_session()
        headers = {
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json'
        }

        try:
            async with session.get(GRAPH_ME_URL, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.warning(f"Failed to get user info ({response.status}): {error_text[:200]}")
                    return {}
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to get user info: {e!r}")
            return {}

    @staticmethod
    def build_credential(token_result: Dict[str, Any], account_id: str) -> Credential:
        """토큰 교환 결과를 Credential로 변환"""
        if not token_result.get('refresh_token'):
            raise AuthorizationFailed("No refresh token issued; is 'offline_access' in the requested scopes?")

        return Credential(
            access_token=token_result['access_token'],
            refresh_token=token_result['refresh_token'],
            expires_at=token_result['expires_at'],
            scopes=token_result.get('scopes', []),
            account_id=account_id,
        )

    async def close(self):
        """리소스 정리"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
            logger.info("Auth service closed")
