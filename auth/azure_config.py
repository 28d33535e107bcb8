"""
Azure AD configuration management module.
Azure AD 앱 설정과 토큰 수명 정책을 환경변수에서 로드합니다.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = [
    "offline_access",
    "User.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "Calendars.ReadWrite",
    "Contacts.ReadWrite",
    "People.Read",
    "MailboxSettings.ReadWrite",
]


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}: {value!r}, using {default}")
        return default


class AzureConfig:
    """Azure AD 설정 관리 클래스"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        tenant_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        db_path: Optional[str] = None,
    ):
        """
        Azure 설정 초기화

        우선순위: 1. 매개변수 2. 환경변수 3. 기본값

        Args:
            client_id: 애플리케이션 ID
            client_secret: 클라이언트 시크릿 (public client면 None)
            tenant_id: 테넌트 ID (기본 common)
            redirect_uri: 등록된 리디렉션 URI
            db_path: 토큰 DB 경로
        """
        self.azure_client_id = client_id or os.getenv("AZURE_CLIENT_ID", "")
        self.azure_client_secret = client_secret or os.getenv("AZURE_CLIENT_SECRET") or None
        self.azure_tenant_id = tenant_id or os.getenv("AZURE_TENANT_ID", "common")
        self.azure_redirect_uri = redirect_uri or os.getenv(
            "AZURE_REDIRECT_URI", "http://localhost:3333/auth/callback"
        )

        # OAuth endpoints
        self.authority = f"https://login.microsoftonline.com/{self.azure_tenant_id}"
        self.authorize_endpoint = f"{self.authority}/oauth2/v2.0/authorize"
        self.token_endpoint = f"{self.authority}/oauth2/v2.0/token"

        # 토큰 DB 경로
        default_db = str(Path.home() / ".outlook-mcp" / "auth.db")
        self.db_path = db_path or os.getenv("DB_PATH", default_db)

        # 수명 정책
        self.safety_margin_seconds = _env_int("TOKEN_SAFETY_MARGIN_SECONDS", 60)
        self.auth_session_ttl_seconds = _env_int("AUTH_SESSION_TTL_SECONDS", 600)
        self.request_timeout = _env_int("AUTH_REQUEST_TIMEOUT", 30)

        self._load_scopes_from_env()

        if self.azure_client_id:
            logger.info(f"✅ Azure config loaded: client_id={self.azure_client_id[:8]}...")
        else:
            logger.warning("⚠️ AZURE_CLIENT_ID not set - interactive authorization will fail")

    @property
    def client_id(self) -> str:
        """client_id 프로퍼티 (외부 호환성)"""
        return self.azure_client_id

    @property
    def tenant_id(self) -> str:
        """tenant_id 프로퍼티 (외부 호환성)"""
        return self.azure_tenant_id

    @property
    def client_secret(self) -> Optional[str]:
        """client_secret 프로퍼티 (외부 호환성)"""
        return self.azure_client_secret

    @property
    def redirect_uri(self) -> str:
        """redirect_uri 프로퍼티 (외부 호환성)"""
        return self.azure_redirect_uri

    def _load_scopes_from_env(self):
        """환경변수에서 스코프 로드"""
        scopes_str = os.getenv("AZURE_SCOPES")
        if scopes_str:
            self.default_scopes: List[str] = scopes_str.split()
        else:
            self.default_scopes = list(DEFAULT_SCOPES)

        # refresh token 발급에 필수
        if "offline_access" not in self.default_scopes:
            self.default_scopes.insert(0, "offline_access")
