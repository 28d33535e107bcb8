"""
Outlook MCP Tools
@mcp_tool 핸들러 모듈과 tool_definitions.yaml 을 합쳐 동결된 레지스트리를 만든다.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from ..mcp_server.tool_registry import (
    ToolDescriptor,
    ToolRegistrationError,
    ToolRegistry,
    collect_tool_handlers,
)
from . import (
    auth_tools,
    calendar_tools,
    category_tools,
    contact_tools,
    folder_tools,
    mail_tools,
    rule_tools,
    settings_tools,
)

logger = logging.getLogger(__name__)

TOOL_MODULES = [
    auth_tools,
    mail_tools,
    folder_tools,
    calendar_tools,
    contact_tools,
    category_tools,
    rule_tools,
    settings_tools,
]

TOOL_DEFINITIONS_PATH = Path(__file__).parent / "tool_definitions.yaml"


def load_tool_definitions(yaml_path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    도구 설명/annotations YAML 로드

    Args:
        yaml_path: YAML 경로 (None이면 패키지 내 tool_definitions.yaml)

    Returns:
        {tool_name: {"description": ..., "annotations": {...}}}
    """
    yaml_path = Path(yaml_path or TOOL_DEFINITIONS_PATH)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Tool definition YAML not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    definitions: Dict[str, Dict[str, Any]] = {}
    for tool in data.get("tools", []):
        name = tool.get("name")
        if not name:
            raise ToolRegistrationError(f"Tool definition without a name in {yaml_path}")
        if name in definitions:
            raise ToolRegistrationError(f"Tool '{name}' is defined twice in {yaml_path}")
        definitions[name] = tool
    return definitions


def build_registry(
    modules: Optional[Iterable[Any]] = None,
    definitions_path: Optional[Path] = None,
) -> ToolRegistry:
    """
    레지스트리 구성 및 동결

    핸들러와 YAML 정의가 1:1 로 맞지 않으면 시작을 중단한다.

    Raises:
        DuplicateToolError: 같은 이름의 핸들러가 둘 이상
        ToolRegistrationError: 정의 누락 또는 고아 정의
    """
    definitions = load_tool_definitions(definitions_path)
    registry = ToolRegistry()

    for handler in collect_tool_handlers(modules if modules is not None else TOOL_MODULES):
        metadata = handler._mcp_metadata
        name = metadata["tool_name"]
        definition = definitions.get(name)
        if definition is None:
            raise ToolRegistrationError(
                f"Tool '{name}' ({metadata['module']}.{metadata['function_name']}) has no entry in tool definitions"
            )
        registry.register(ToolDescriptor(
            name=name,
            description=(definition.get("description") or "").strip(),
            input_model=metadata["input_model"],
            handler=handler,
            annotations=definition.get("annotations") or {},
        ))

    orphans = sorted(set(definitions) - set(registry.names()))
    if orphans:
        raise ToolRegistrationError(f"Tool definitions without a handler: {', '.join(orphans)}")

    registry.freeze()
    logger.info(f"✅ Registered {len(registry)} tools")
    return registry
