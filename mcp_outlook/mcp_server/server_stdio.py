"""
Outlook MCP 서버의 STDIO 전송 계층

한 줄에 하나씩 JSON-RPC 2.0 메시지를 읽고 쓴다. tools/call 은 각각 별도 태스크로
실행되어 여러 호출이 동시에 진행될 수 있다.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TextIO, TYPE_CHECKING

from .. import __version__
from .dispatcher import ToolResult

if TYPE_CHECKING:
    from ..outlook_service import OutlookService

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class StdioMCPServer:
    """stdin/stdout 기반 MCP 서버

    Args:
        service: 도구 레지스트리와 call_tool 을 제공하는 OutlookService
        stdin: 입력 스트림 (기본 sys.stdin)
        stdout: 출력 스트림 (기본 sys.stdout)
    """

    def __init__(
        self,
        service: "OutlookService",
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.service = service
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.running = False
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            "initialize": self._initialize,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "shutdown": self._shutdown,
            "ping": self._ping,
        }

    # ------------------------------------------------------------------
    # 입출력
    # ------------------------------------------------------------------

    async def _next_line(self) -> str:
        return await asyncio.get_running_loop().run_in_executor(None, self.stdin.readline)

    def _decode(self, line: str) -> Optional[Dict[str, Any]]:
        """한 줄을 JSON 객체로 해석. 잘못된 입력이면 오류 응답을 보내고 None"""
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error(f"❌ Unparseable message on stdin: {e}")
            self._reply_error(None, PARSE_ERROR, f"Parse error: {e}")
            return None

        if not isinstance(message, dict):
            self._reply_error(None, INVALID_REQUEST, "Invalid Request: expected a JSON object")
            return None
        return message

    def _emit(self, payload: Dict[str, Any]):
        self.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        self.stdout.flush()
        logger.debug(f"-> {payload}")

    def _reply(self, request_id: Any, result: Any):
        self._emit({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _reply_error(self, request_id: Any, code: int, text: str):
        self._emit({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": text}})

    # ------------------------------------------------------------------
    # 메서드 핸들러
    # ------------------------------------------------------------------

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client = (params.get("clientInfo") or {}).get("name", "unknown")
        logger.info(f"MCP client connected: {client}")
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "outlook", "version": __version__},
        }

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": self.service.registry.list_tools()}

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}

        if not name:
            raise ValueError("Tool name is required")
        if not isinstance(arguments, dict):
            raise ValueError("Tool arguments must be an object")

        return self.format_tool_result(await self.service.call_tool(name, arguments))

    async def _shutdown(self, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Shutdown requested by client")
        self.running = False
        return {}

    async def _ping(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    @staticmethod
    def format_tool_result(result: ToolResult) -> Dict[str, Any]:
        """ToolResult 를 MCP content 블록으로 변환 (실패 시 isError 표시)"""
        body = result.payload if result.success else result.to_dict()["failure"]
        if not isinstance(body, str):
            body = json.dumps(body, ensure_ascii=False, indent=2, default=str)

        formatted: Dict[str, Any] = {"content": [{"type": "text", "text": body}]}
        if not result.success:
            formatted["isError"] = True
        return formatted

    # ------------------------------------------------------------------
    # 라우팅
    # ------------------------------------------------------------------

    async def handle_request(self, request: Dict[str, Any]):
        """id 가 있는 요청 하나를 처리하고 응답을 기록"""
        request_id = request.get("id")
        method = request.get("method")

        if not method:
            self._reply_error(request_id, INVALID_REQUEST, "Invalid Request: missing method")
            return

        handler = self._handlers.get(method)
        if handler is None:
            self._reply_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
            return

        try:
            result = await handler(request.get("params") or {})
        except ValueError as e:
            self._reply_error(request_id, INVALID_PARAMS, f"Invalid params: {e}")
        except Exception as e:
            logger.error(f"❌ {method} failed: {e}", exc_info=True)
            self._reply_error(request_id, INTERNAL_ERROR, f"Internal error: {e}")
        else:
            self._reply(request_id, result)

    def handle_notification(self, notification: Dict[str, Any]):
        method = notification.get("method")
        if method == "notifications/initialized":
            logger.info("Client initialization complete")
        elif method == "notifications/cancelled":
            # 이미 전송된 Graph 요청은 취소하지 않음
            request_id = (notification.get("params") or {}).get("requestId")
            logger.info(f"Client cancelled request {request_id}")
        else:
            logger.debug(f"Ignoring notification: {method}")

    async def run(self):
        """EOF 또는 shutdown 까지 메시지를 처리"""
        self.running = True
        logger.info("✅ Outlook MCP server listening on stdio")

        try:
            while self.running:
                line = await self._next_line()
                if not line:
                    logger.info("stdin closed")
                    break
                if not line.strip():
                    continue

                message = self._decode(line)
                if message is None:
                    continue

                if "id" not in message:
                    self.handle_notification(message)
                elif message.get("method") == "tools/call":
                    task = asyncio.create_task(self.handle_request(message))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
                else:
                    await self.handle_request(message)
        finally:
            if self._tasks:
                logger.info(f"Draining {len(self._tasks)} in-flight tool call(s)")
                await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("Outlook MCP server stopped")
