"""
로컬 OAuth 리디렉션 수신기

Azure AD 가 브라우저를 /auth/callback 으로 돌려보내면 code/state 를
AuthManager.complete_authorization 으로 넘기고 결과 페이지를 보여줍니다.
"""

import asyncio
import html
import logging
import socket
from typing import Optional
from urllib.parse import urlparse

from aiohttp import web

from auth import AuthManager
from core.errors import OutlookMCPError

logger = logging.getLogger(__name__)

CALLBACK_PATH = '/auth/callback'

_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
  body {{ font-family: -apple-system, "Segoe UI", sans-serif; background: #f5f6f8; padding: 48px; }}
  main {{ max-width: 560px; margin: 0 auto; background: #fff; border-radius: 8px; padding: 32px; }}
  h1 {{ color: {color}; font-size: 1.4em; }}
  pre {{ background: {background}; padding: 16px; border-radius: 4px; white-space: pre-wrap; }}
  footer {{ color: #777; font-size: 0.9em; }}
</style>
</head>
<body>
<main>
  <h1>{heading}</h1>
  <pre>{detail}</pre>
  <footer>{message}</footer>
</main>
</body>
</html>
"""


def render_page(success: bool, detail: str) -> str:
    """콜백 결과 HTML (detail 은 이스케이프됨)"""
    if success:
        fields = dict(
            title="Outlook MCP - signed in",
            color="#1e7d4f",
            background="#e9f7ef",
            heading="✅ Signed in to Outlook MCP",
            message="This window can be closed.",
        )
    else:
        fields = dict(
            title="Outlook MCP - sign-in failed",
            color="#b3261e",
            background="#fdecea",
            heading="❌ Sign-in failed",
            message="Run the login command again to retry.",
        )
    return _PAGE.format(detail=html.escape(detail), **fields)


def port_from_redirect_uri(redirect_uri: str, default: int = 3333) -> int:
    """리디렉션 URI 의 포트 (없으면 기본값)"""
    return urlparse(redirect_uri).port or default


class CallbackServer:
    """
    aiohttp 기반 콜백 서버

    Args:
        auth_manager: 인가 세션을 완료할 AuthManager
        host: 바인딩 호스트
        port: 리슨 포트 (0 이면 테스트용 임의 포트)
    """

    def __init__(self, auth_manager: AuthManager, host: str = 'localhost', port: int = 3333):
        self.auth_manager = auth_manager
        self.host = host
        self.port = port
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self.auth_completed = asyncio.Event()
        self.authenticated_account: Optional[str] = None
        self.last_error: Optional[str] = None

    def is_running(self) -> bool:
        return self.site is not None

    def check_port_availability(self) -> bool:
        """host:port 에 바인딩 가능한지 확인"""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((self.host, self.port))
            except OSError:
                return False
        return True

    def _page(self, success: bool, detail: str, status: int = 200) -> web.Response:
        return web.Response(text=render_page(success, detail), content_type='text/html', status=status)

    async def handle_callback(self, request: web.Request) -> web.Response:
        """GET /auth/callback"""
        query = request.query

        if 'error' in query:
            reason = query.get('error_description') or 'No additional information'
            self.last_error = f"{query['error']}: {reason}"
            logger.warning(f"❌ Provider rejected authorization: {self.last_error}")
            return self._page(False, self.last_error, status=400)

        code, state = query.get('code'), query.get('state')
        if not code or not state:
            return self._page(False, "Missing authorization code or state", status=400)

        logger.info(f"Completing authorization for session {state[:8]}...")
        try:
            credential = await self.auth_manager.complete_authorization(state, code)
        except OutlookMCPError as e:
            logger.error(f"❌ Authorization could not be completed: {e}")
            self.last_error = e.message
            return self._page(False, e.message, status=400)

        self.authenticated_account = credential.account_id or '(unknown account)'
        self.last_error = None
        self.auth_completed.set()
        return self._page(True, f"Logged in as: {self.authenticated_account}")

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /status"""
        return web.json_response({
            'listening': self.is_running(),
            'callback_url': f'http://{self.host}:{self.port}{CALLBACK_PATH}',
            'auth': self.auth_manager.get_status(),
        })

    def init_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self.handle_callback)
        app.router.add_get('/status', self.handle_status)
        self.app = app
        return app

    async def start(self):
        """리스너 시작. 포트가 점유되어 있으면 OSError"""
        if self.is_running():
            logger.warning("Callback server is already listening")
            return

        if not self.check_port_availability():
            raise OSError(f"Port {self.port} is already in use")

        self.runner = web.AppRunner(self.init_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"✅ Listening for OAuth redirects on http://{self.host}:{self.port}{CALLBACK_PATH}")

    async def stop(self):
        if self.site is not None:
            await self.site.stop()
            self.site = None
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Callback server closed")

    async def wait_for_auth(self, timeout: float = 300) -> Optional[str]:
        """
        콜백이 성공할 때까지 대기

        Args:
            timeout: 최대 대기 시간 (초)

        Returns:
            로그인된 계정, 시간 초과 시 None
        """
        try:
            await asyncio.wait_for(self.auth_completed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ No authorization callback within {timeout}s")
            return None
        return self.authenticated_account
