"""
공통 테스트 Fixtures

    - FakeResponse / FakeSession: aiohttp ClientSession 대역 (응답 큐 + 호출 기록)
    - FakeCredentialProvider: GraphClient 용 자격증명 제공자
    - MemoryTokenStore / FakeAuthService: AuthManager 용 대역
"""

import asyncio
import json
import os
import sys
from datetime import timedelta

import pytest

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from auth.auth_service import AuthService
from auth.azure_config import AzureConfig
from auth.credential import Credential
from auth.time_utils import utc_now
from mcp_outlook.outlook_config import OutlookConfig

GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0/"


class FakeResponse:
    """aiohttp ClientResponse 대역 (async context manager)"""

    def __init__(self, status=200, body=None, headers=None, text=None):
        self.status = status
        self.headers = headers or {}
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self._text = text

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        return json.loads(self._text) if self._text else None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """aiohttp ClientSession 대역 - 큐에 넣은 순서대로 응답 (예외 객체면 raise)"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def queue(self, *responses):
        self.responses.extend(responses)

    def _next(self, method, url, kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    async def close(self):
        self.closed = True


class FakeCredentialProvider:
    """CredentialProviderProtocol 대역 - force_refresh 시 토큰 교체"""

    def __init__(self, credential):
        self.credential = credential
        self.force_calls = []

    async def get_valid_credential(self):
        return self.credential

    async def force_refresh(self, rejected_access_token):
        self.force_calls.append(rejected_access_token)
        self.credential = self.credential.model_copy(
            update={"access_token": f"refreshed-token-{len(self.force_calls)}"}
        )
        return self.credential


class MemoryTokenStore:
    """TokenStoreProtocol 메모리 구현"""

    def __init__(self, credential=None):
        self.credential = credential
        self.saved = []
        self.clear_calls = 0

    def get(self):
        return self.credential

    def set_from_exchange(self, credential):
        self.credential = credential
        self.saved.append(credential)

    def clear(self):
        self.credential = None
        self.clear_calls += 1


class FakeAuthService:
    """AuthService 대역 - 토큰 엔드포인트 없이 교환/갱신 결과 반환"""

    build_credential = staticmethod(AuthService.build_credential)

    def __init__(self):
        self.exchange_calls = []
        self.refresh_calls = 0
        self.exchange_error = None
        self.refresh_error = None
        self.refresh_delay = 0.01
        self.user_info = {"mail": "user@example.com", "id": "user-id"}
        self.closed = False

    def build_authorization_url(self, state, code_challenge, scopes):
        return (
            f"https://login.example.com/authorize?state={state}"
            f"&code_challenge={code_challenge}&scope={'+'.join(scopes)}"
        )

    async def exchange_code(self, auth_code, code_verifier, scopes):
        self.exchange_calls.append((auth_code, code_verifier, list(scopes)))
        if self.exchange_error:
            raise self.exchange_error
        return {
            "access_token": "access-initial",
            "refresh_token": "refresh-initial",
            "expires_at": utc_now() + timedelta(hours=1),
            "scopes": list(scopes),
        }

    async def refresh_tokens(self, refresh_token, scopes):
        self.refresh_calls += 1
        await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        return {
            "access_token": f"access-refreshed-{self.refresh_calls}",
            "refresh_token": "refresh-rotated",
            "expires_at": utc_now() + timedelta(hours=1),
            "scopes": list(scopes),
        }

    async def get_user_info(self, access_token):
        return dict(self.user_info)

    async def close(self):
        self.closed = True


def make_credential(access_token="access-current", expires_in=3600, account_id="user@example.com"):
    return Credential(
        access_token=access_token,
        refresh_token="refresh-current",
        expires_at=utc_now() + timedelta(seconds=expires_in),
        scopes=["offline_access", "Mail.ReadWrite"],
        account_id=account_id,
    )


@pytest.fixture
def azure_config(tmp_path):
    """테스트용 Azure 설정 (임시 DB 경로)"""
    config = AzureConfig(
        client_id="test-client-id",
        tenant_id="test-tenant",
        redirect_uri="http://localhost:3333/auth/callback",
        db_path=str(tmp_path / "auth.db"),
    )
    # public client
    config.azure_client_secret = None
    return config


@pytest.fixture
def outlook_config():
    """재시도 지연이 0인 Outlook 설정"""
    return OutlookConfig(
        graph_api_endpoint=GRAPH_ENDPOINT,
        request_timeout=5,
        max_attempts=4,
        backoff_base=0,
        backoff_max=0,
        batch_size=20,
        allowed_recipients=[],
    )


@pytest.fixture
def credential():
    return make_credential()


@pytest.fixture
def credential_provider(credential):
    return FakeCredentialProvider(credential)


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def fake_auth_service():
    return FakeAuthService()
