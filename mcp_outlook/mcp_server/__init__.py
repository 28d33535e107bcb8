"""
Outlook MCP Server
도구 레지스트리와 디스패처 (프로토콜 프레이밍은 server_stdio)
"""

from .dispatcher import ToolContext, ToolDispatcher, ToolRequest, ToolResult
from .tool_registry import (
    DuplicateToolError,
    RegistryFrozenError,
    ToolDescriptor,
    ToolRegistrationError,
    ToolRegistry,
    mcp_tool,
)

__all__ = [
    'ToolContext',
    'ToolDispatcher',
    'ToolRequest',
    'ToolResult',
    'DuplicateToolError',
    'RegistryFrozenError',
    'ToolDescriptor',
    'ToolRegistrationError',
    'ToolRegistry',
    'mcp_tool',
]
