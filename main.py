"""
Outlook MCP Server - Main Entry Point
serve (기본) / login / status / logout 하위 명령을 제공합니다.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import webbrowser

from dotenv import load_dotenv

from auth import AuthManager
from callback_server import CallbackServer, port_from_redirect_uri
from mcp_outlook.mcp_server.server_stdio import StdioMCPServer
from mcp_outlook.outlook_service import OutlookService

# Load environment variables (프로젝트 루트 기준)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path, encoding="utf-8-sig")

logger = logging.getLogger(__name__)


def configure_logging():
    """stdout 은 JSON-RPC 전용이므로 로그는 stderr 로"""
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


async def serve(with_callback: bool):
    """STDIO MCP 서버 실행 (선택적으로 콜백 서버 동시 실행)"""
    auth_manager = AuthManager()
    service = OutlookService(auth_manager=auth_manager)
    callback = None

    if with_callback:
        callback = CallbackServer(
            auth_manager,
            port=port_from_redirect_uri(auth_manager.config.redirect_uri),
        )
        try:
            await callback.start()
        except OSError as e:
            logger.warning(f"⚠️ Callback server not started: {e}")
            callback = None

    try:
        await StdioMCPServer(service).run()
    finally:
        if callback:
            await callback.stop()
        await service.close()


async def login(timeout: int):
    """브라우저 대화형 인증"""
    auth_manager = AuthManager()
    callback = CallbackServer(
        auth_manager,
        port=port_from_redirect_uri(auth_manager.config.redirect_uri),
    )

    try:
        await callback.start()
        started = auth_manager.begin_authorization()

        print("\n" + "=" * 60)
        print("Microsoft Account Authentication")
        print("=" * 60)
        print("Open this URL if the browser does not start:")
        print(started['auth_url'])
        print("=" * 60)
        webbrowser.open(started['auth_url'])

        account = await callback.wait_for_auth(timeout=timeout)
        if account:
            print(f"\n[OK] Authenticated as: {account}")
            return 0
        print(f"\n[ERROR] Authentication failed: {callback.last_error or 'timeout'}")
        return 1
    finally:
        await callback.stop()
        await auth_manager.close()


def status():
    auth_manager = AuthManager()
    print(json.dumps(auth_manager.get_status(), ensure_ascii=False, indent=2))
    return 0


def logout():
    AuthManager().sign_out()
    print("[OK] Signed out")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='outlook-mcp', description='Outlook MCP tools server')
    subparsers = parser.add_subparsers(dest='command')

    serve_parser = subparsers.add_parser('serve', help='Run the MCP server on stdin/stdout (default)')
    serve_parser.add_argument(
        '--no-callback', action='store_true',
        help='Do not start the local OAuth callback server',
    )

    login_parser = subparsers.add_parser('login', help='Authenticate in the browser')
    login_parser.add_argument('--timeout', type=int, default=300, help='Seconds to wait for the redirect')

    subparsers.add_parser('status', help='Show authentication status')
    subparsers.add_parser('logout', help='Remove stored tokens')
    return parser


def cli(argv=None) -> int:
    """콘솔 스크립트 진입점"""
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        if args.command == 'login':
            return asyncio.run(login(args.timeout))
        if args.command == 'status':
            return status()
        if args.command == 'logout':
            return logout()
        asyncio.run(serve(with_callback=not getattr(args, 'no_callback', False)))
        return 0
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(cli())
