"""
Rule Tool
받은편지함 메시지 규칙 목록/생성/순서 변경
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ..graph_types import GraphRequest
from ..graph_url import quote_id, resolve_folder
from ..mcp_server.tool_registry import mcp_tool
from .common import ToolInput, invalid_argument, list_payload

RULES_PATH = "me/mailFolders/inbox/messageRules"


def summarize_rule(rule: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": rule.get("id"),
        "display_name": rule.get("displayName"),
        "sequence": rule.get("sequence"),
        "is_enabled": rule.get("isEnabled"),
        "conditions": rule.get("conditions", {}),
        "actions": rule.get("actions", {}),
    }


class ManageRulesInput(ToolInput):
    action: Literal["list", "create", "reorder"] = "list"
    rule_id: Optional[str] = Field(None, description="reorder 대상 규칙 ID")
    sequence: Optional[int] = Field(None, ge=1, description="규칙 실행 순서 (create/reorder)")
    display_name: Optional[str] = Field(None, description="create 시 필수")
    from_addresses: Optional[List[str]] = Field(None, description="조건: 발신자 주소")
    subject_contains: Optional[List[str]] = Field(None, description="조건: 제목 포함 텍스트")
    has_attachments: Optional[bool] = Field(None, description="조건: 첨부파일 유무")
    move_to_folder: Optional[str] = Field(None, description="동작: 이동할 폴더")
    mark_as_read: Optional[bool] = Field(None, description="동작: 읽음 표시")
    mark_importance: Optional[Literal["low", "normal", "high"]] = Field(None, description="동작: 중요도 지정")
    stop_processing: bool = Field(False, description="이 규칙 이후 다른 규칙 중단")
    is_enabled: bool = True


def _build_rule(args: ManageRulesInput) -> Dict[str, Any]:
    conditions: Dict[str, Any] = {}
    if args.from_addresses:
        conditions["fromAddresses"] = [{"emailAddress": {"address": a}} for a in args.from_addresses]
    if args.subject_contains:
        conditions["subjectContains"] = list(args.subject_contains)
    if args.has_attachments is not None:
        conditions["hasAttachments"] = args.has_attachments

    actions: Dict[str, Any] = {}
    if args.move_to_folder:
        actions["moveToFolder"] = resolve_folder(args.move_to_folder)
    if args.mark_as_read is not None:
        actions["markAsRead"] = args.mark_as_read
    if args.mark_importance:
        actions["markImportance"] = args.mark_importance
    if args.stop_processing:
        actions["stopProcessingRules"] = True

    if not conditions:
        raise invalid_argument("fromAddresses", "a rule needs at least one condition")
    if not actions:
        raise invalid_argument("moveToFolder", "a rule needs at least one action")

    return {
        "displayName": args.display_name,
        "sequence": args.sequence or 1,
        "isEnabled": args.is_enabled,
        "conditions": conditions,
        "actions": actions,
    }


@mcp_tool("manage-rules", ManageRulesInput)
async def handle_manage_rules(args: ManageRulesInput, context):
    if args.action == "list":
        response = await context.graph.call(GraphRequest(path=RULES_PATH))
        payload = list_payload(response, "rules", summarize_rule)
        payload["rules"].sort(key=lambda rule: rule.get("sequence") or 0)
        return payload

    if args.action == "create":
        if not args.display_name:
            raise invalid_argument("displayName", "required for action 'create'")
        response = await context.graph.call(GraphRequest(
            method="POST",
            path=RULES_PATH,
            json_body=_build_rule(args),
        ))
        return summarize_rule(response.payload)

    if not args.rule_id:
        raise invalid_argument("ruleId", "required for action 'reorder'")
    if args.sequence is None:
        raise invalid_argument("sequence", "required for action 'reorder'")
    response = await context.graph.call(GraphRequest(
        method="PATCH",
        path=f"{RULES_PATH}/{quote_id(args.rule_id)}",
        json_body={"sequence": args.sequence},
    ))
    return summarize_rule(response.payload) if response.payload else {"id": args.rule_id, "sequence": args.sequence}
