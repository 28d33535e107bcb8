"""
Outlook Service - 컴포넌트 조립 Facade
AuthManager, GraphClient, GraphBatch, 도구 레지스트리, 디스패처를 한 번에 구성하고 정리한다.
"""

import logging
from pathlib import Path
from typing import Optional

import aiohttp

from auth import AuthManager
from .graph_batch import GraphBatch
from .graph_client import GraphClient
from .mcp_server.dispatcher import ToolContext, ToolDispatcher, ToolRequest, ToolResult
from .outlook_config import OutlookConfig
from .tools import build_registry

logger = logging.getLogger(__name__)


class OutlookService:
    """
    서버 전체에서 공유하는 Outlook 서비스

    - 자격증명 관리자는 하나만 존재
    - 레지스트리는 생성 시 한 번 구성 후 동결
    """

    def __init__(
        self,
        auth_manager: Optional[AuthManager] = None,
        config: Optional[OutlookConfig] = None,
        graph_session: Optional[aiohttp.ClientSession] = None,
        definitions_path: Optional[Path] = None,
    ):
        """
        Args:
            auth_manager: 자격증명 관리자 (None이면 환경변수 기준으로 생성)
            config: Outlook 설정 (None이면 환경변수에서 로드)
            graph_session: Graph 호출용 aiohttp 세션 (테스트 주입용)
            definitions_path: 도구 정의 YAML 경로
        """
        self.auth_manager = auth_manager or AuthManager()
        self.config = config or OutlookConfig()
        self.graph = GraphClient(self.auth_manager, self.config, session=graph_session)
        self.batch = GraphBatch(self.graph)
        self.registry = build_registry(definitions_path=definitions_path)
        self.dispatcher = ToolDispatcher(
            self.registry,
            ToolContext(
                auth_manager=self.auth_manager,
                graph=self.graph,
                batch=self.batch,
                config=self.config,
            ),
        )

    async def call_tool(self, name: str, arguments: Optional[dict] = None) -> ToolResult:
        """도구 호출 - dispatcher.dispatch 위임"""
        return await self.dispatcher.dispatch(ToolRequest(name=name, arguments=arguments or {}))

    async def close(self):
        """리소스 정리"""
        await self.graph.close()
        await self.auth_manager.close()
        logger.info("Outlook service closed")
