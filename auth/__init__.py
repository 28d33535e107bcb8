"""
Azure Authentication Module
Microsoft identity platform OAuth 2.0 (PKCE) 인증과 자격증명 수명을 관리하는 모듈입니다.
"""

from .auth_service import AuthService, generate_pkce_pair
from .auth_manager import AuthManager
from .azure_config import AzureConfig
from .auth_database import AuthDatabase
from .credential import AuthState, Credential, PendingAuthorization

# 메인 인터페이스
__all__ = [
    # 클래스
    'AuthManager',           # 메인 매니저 - 자격증명 상태 머신
    'AuthService',           # 인증 서비스 - 토큰 엔드포인트 교환
    'AzureConfig',           # Azure 설정 관리
    'AuthDatabase',          # 토큰 저장소
    'AuthState',
    'Credential',
    'PendingAuthorization',
    # 함수
    'generate_pkce_pair',
]

__version__ = '1.0.0'
