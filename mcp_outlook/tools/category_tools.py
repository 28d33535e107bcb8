"""
Category & Flag Tools
마스터 카테고리 관리, 메일 카테고리 적용, 메일 플래그 설정 (배치, 부분 실패 허용)
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ..graph_types import BatchItemResult, GraphRequest
from ..graph_url import quote_id
from ..mcp_server.tool_registry import mcp_tool
from .common import ToolInput, invalid_argument, list_payload, mixed_batch_result

# Outlook 카테고리 프리셋 색상
CATEGORY_COLORS = {
    "none": "none",
    "red": "preset0",
    "orange": "preset1",
    "brown": "preset2",
    "yellow": "preset3",
    "green": "preset4",
    "teal": "preset5",
    "olive": "preset6",
    "blue": "preset7",
    "purple": "preset8",
    "cranberry": "preset9",
    "steel": "preset10",
    "darksteel": "preset11",
    "gray": "preset12",
    "darkgray": "preset13",
    "black": "preset14",
    "darkred": "preset15",
    "darkorange": "preset16",
    "darkbrown": "preset17",
    "darkyellow": "preset18",
    "darkgreen": "preset19",
    "darkteal": "preset20",
    "darkolive": "preset21",
    "darkblue": "preset22",
    "darkpurple": "preset23",
    "darkcranberry": "preset24",
}


def resolve_color(color: str) -> Optional[str]:
    """색상 이름 또는 presetN -> Graph 색상 값 (알 수 없으면 None)"""
    value = color.strip().lower()
    if value in CATEGORY_COLORS:
        return CATEGORY_COLORS[value]
    if value.startswith("preset") and value[6:].isdigit() and 0 <= int(value[6:]) <= 24:
        return value
    return None


# ===== manage-category =====


class ManageCategoryInput(ToolInput):
    action: Literal["list", "create", "update", "delete"] = "list"
    category_id: Optional[str] = Field(None, description="update/delete 대상 카테고리 ID")
    display_name: Optional[str] = Field(None, description="create 시 필수")
    color: Optional[str] = Field(None, description="색상 이름 (red, blue ...) 또는 preset0~preset24")


@mcp_tool("manage-category", ManageCategoryInput)
async def handle_manage_category(args: ManageCategoryInput, context):
    base_path = "me/outlook/masterCategories"

    if args.action == "list":
        response = await context.graph.call(GraphRequest(path=base_path))
        return list_payload(response, "categories")

    color = None
    if args.color:
        color = resolve_color(args.color)
        if color is None:
            raise invalid_argument("color", f"unknown color '{args.color}'")

    if args.action == "create":
        if not args.display_name:
            raise invalid_argument("displayName", "required for action 'create'")
        response = await context.graph.call(GraphRequest(
            method="POST",
            path=base_path,
            json_body={"displayName": args.display_name, "color": color or "preset0"},
        ))
        return response.payload

    if not args.category_id:
        raise invalid_argument("categoryId", f"required for action '{args.action}'")
    category_path = f"{base_path}/{quote_id(args.category_id)}"

    if args.action == "delete":
        await context.graph.call(GraphRequest(method="DELETE", path=category_path))
        return {"id": args.category_id, "deleted": True}

    # Graph는 displayName 변경을 허용하지 않음 - 색상만 변경 가능
    if color is None:
        raise invalid_argument("color", "required for action 'update'")
    response = await context.graph.call(GraphRequest(
        method="PATCH",
        path=category_path,
        json_body={"color": color},
    ))
    return response.payload or {"id": args.category_id, "color": color}


# ===== apply-category =====


class ApplyCategoryInput(ToolInput):
    message_ids: List[str] = Field(..., min_length=1, description="대상 메일 ID 목록")
    categories: List[str] = Field(..., description="카테고리 이름 목록")
    action: Literal["set", "add", "remove"] = Field("add", description="set: 교체, add: 추가, remove: 제거")


def _merge_categories(current: List[str], requested: List[str], action: str) -> List[str]:
    if action == "add":
        return current + [c for c in requested if c not in current]
    return [c for c in current if c not in requested]


@mcp_tool("apply-category", ApplyCategoryInput)
async def handle_apply_category(args: ApplyCategoryInput, context):
    if args.action != "set" and not args.categories:
        raise invalid_argument("categories", f"at least one category is required for action '{args.action}'")

    ids = args.message_ids
    results: List[Optional[BatchItemResult]] = [None] * len(ids)
    targets: Dict[int, List[str]] = {}

    if args.action == "set":
        targets = {i: list(args.categories) for i in range(len(ids))}
    else:
        lookups = await context.batch.execute([
            GraphRequest(path=f"me/messages/{quote_id(message_id)}", params={"$select": "categories"})
            for message_id in ids
        ])
        for lookup in lookups:
            if lookup.ok:
                current = (lookup.body or {}).get("categories", [])
                targets[lookup.index] = _merge_categories(current, args.categories, args.action)
            else:
                results[lookup.index] = lookup

    order = sorted(targets)
    updates = await context.batch.execute([
        GraphRequest(
            method="PATCH",
            path=f"me/messages/{quote_id(ids[i])}",
            json_body={"categories": targets[i]},
        )
        for i in order
    ])
    for update in updates:
        original = order[update.index]
        results[original] = update.model_copy(update={"index": original})

    return mixed_batch_result([r for r in results if r is not None], ids)


# ===== set-message-flag =====


class SetMessageFlagInput(ToolInput):
    message_ids: List[str] = Field(..., min_length=1, description="대상 메일 ID 목록")
    flag_status: Literal["flagged", "complete", "notFlagged"] = Field("flagged", description="플래그 상태")
    due_date: Optional[str] = Field(None, description="flagged 일 때 기한 (ISO 8601)")


@mcp_tool("set-message-flag", SetMessageFlagInput)
async def handle_set_message_flag(args: SetMessageFlagInput, context):
    flag: Dict[str, Any] = {"flagStatus": args.flag_status}
    if args.due_date:
        if args.flag_status != "flagged":
            raise invalid_argument("dueDate", "only valid with flagStatus 'flagged'")
        timezone = context.config.default_timezone
        flag["dueDateTime"] = {"dateTime": args.due_date, "timeZone": timezone}
        flag["startDateTime"] = {"dateTime": args.due_date, "timeZone": timezone}

    results = await context.batch.execute([
        GraphRequest(method="PATCH", path=f"me/messages/{quote_id(message_id)}", json_body={"flag": flag})
        for message_id in args.message_ids
    ])
    return mixed_batch_result(results, args.message_ids)
