"""
Auth Tool
대화형 인증 시작/완료, 상태 조회, 로그아웃
"""

from typing import List, Literal, Optional

from pydantic import Field

from .. import __version__
from ..mcp_server.tool_registry import mcp_tool
from .common import ToolInput, invalid_argument


class AuthInput(ToolInput):
    action: Literal["status", "authenticate", "complete", "sign-out", "about"] = Field(
        "status", description="수행할 인증 동작"
    )
    session_id: Optional[str] = Field(None, description="authenticate 가 반환한 세션 ID (complete 시 필수)")
    code: Optional[str] = Field(None, description="콜백으로 받은 인증 코드 (complete 시 필수)")
    scopes: Optional[List[str]] = Field(None, description="요청 스코프 (authenticate, 생략 시 기본값)")


@mcp_tool("auth", AuthInput)
async def handle_auth(args: AuthInput, context):
    auth_manager = context.auth_manager

    if args.action == "authenticate":
        started = auth_manager.begin_authorization(args.scopes)
        started["message"] = (
            "Open auth_url in a browser and sign in. The callback server completes the flow "
            "automatically; otherwise call this tool with action 'complete'."
        )
        return started

    if args.action == "complete":
        if not args.session_id:
            raise invalid_argument("sessionId", "required for action 'complete'")
        if not args.code:
            raise invalid_argument("code", "required for action 'complete'")
        credential = await auth_manager.complete_authorization(args.session_id, args.code)
        return {
            "authenticated": True,
            "account_id": credential.account_id,
            "expires_at": credential.expires_at.isoformat(),
        }

    if args.action == "sign-out":
        auth_manager.sign_out()
        return {"signed_out": True}

    if args.action == "about":
        return {
            "name": "outlook-mcp",
            "version": __version__,
            "description": "Microsoft Outlook (mail, calendar, contacts, settings) tools over Microsoft Graph",
            "graph_endpoint": context.config.graph_api_endpoint,
        }

    return auth_manager.get_status()
