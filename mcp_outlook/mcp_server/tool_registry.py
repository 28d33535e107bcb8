"""
MCP Tool Registry
도구 이름 -> (설명, 입력 모델, 핸들러) 매핑. 시작 시 한 번 구성되고 동결된다.
"""

from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

ToolHandler = Callable[[BaseModel, Any], Awaitable[Any]]


class ToolRegistrationError(Exception):
    """도구 정의가 불완전하거나 서로 맞지 않음"""


class DuplicateToolError(ToolRegistrationError):
    """같은 이름의 도구가 이미 등록됨"""


class RegistryFrozenError(ToolRegistrationError):
    """동결된 레지스트리에 등록 시도"""


@dataclass(frozen=True)
class ToolDescriptor:
    """등록된 도구 (등록 후 불변)"""

    name: str
    description: str
    input_model: Type[BaseModel]
    handler: ToolHandler
    annotations: Dict[str, Any] = field(default_factory=dict)

    def input_schema(self) -> Dict[str, Any]:
        """MCP inputSchema (입력 모델에서 생성)"""
        return self.input_model.model_json_schema(by_alias=True)

    def to_mcp(self) -> Dict[str, Any]:
        """tools/list 응답 항목"""
        tool = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }
        if self.annotations:
            tool["annotations"] = dict(self.annotations)
        return tool


def mcp_tool(tool_name: str, input_model: Type[BaseModel]) -> Callable:
    """
    Decorator to mark a coroutine as an MCP tool handler

    모듈 전역 레지스트리에 등록하지 않고 함수에 메타데이터만 붙인다.
    실제 등록은 build_registry() 가 수행한다.

    Args:
        tool_name: Name of the tool in MCP
        input_model: pydantic model validating the tool arguments
    """
    def decorator(func: ToolHandler) -> ToolHandler:
        @wraps(func)
        async def wrapper(args, context):
            return await func(args, context)

        wrapper._mcp_tool = True
        wrapper._mcp_metadata = {
            "tool_name": tool_name,
            "input_model": input_model,
            "module": func.__module__,
            "function_name": func.__name__,
        }
        return wrapper

    return decorator


def collect_tool_handlers(modules: Iterable[Any]) -> List[ToolHandler]:
    """모듈들에서 @mcp_tool 이 붙은 함수 수집 (정의 순서 유지)"""
    handlers = []
    for module in modules:
        for value in vars(module).values():
            if callable(value) and getattr(value, "_mcp_tool", False):
                handlers.append(value)
    return handlers


class ToolRegistry:
    """도구 레지스트리"""

    def __init__(self):
        self._tools: Dict[str, ToolDescriptor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, descriptor: ToolDescriptor):
        """
        도구 등록

        Raises:
            RegistryFrozenError: 이미 동결됨
            DuplicateToolError: 이름 중복
            ToolRegistrationError: 설명/모델/핸들러 누락
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{descriptor.name}': registry is frozen")
        if descriptor.name in self._tools:
            raise DuplicateToolError(f"Tool '{descriptor.name}' is already registered")
        if not descriptor.name or not descriptor.description:
            raise ToolRegistrationError(f"Tool '{descriptor.name}' needs a name and a description")
        if not (isinstance(descriptor.input_model, type) and issubclass(descriptor.input_model, BaseModel)):
            raise ToolRegistrationError(f"Tool '{descriptor.name}' input model must be a pydantic model")
        if not callable(descriptor.handler):
            raise ToolRegistrationError(f"Tool '{descriptor.name}' handler is not callable")
        self._tools[descriptor.name] = descriptor

    def freeze(self):
        self._frozen = True

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        """tools/list 응답용 도구 목록"""
        return [descriptor.to_mcp() for descriptor in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
