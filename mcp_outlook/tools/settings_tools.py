"""
Mailbox Settings Tool
메일함 설정 조회, 자동 회신, 근무 시간
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ..graph_types import GraphRequest
from ..mcp_server.tool_registry import mcp_tool
from .common import ToolInput, invalid_argument

SETTINGS_PATH = "me/mailboxSettings"

DayOfWeek = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class MailboxSettingsInput(ToolInput):
    action: Literal["get", "set-auto-replies", "set-working-hours"] = "get"
    # 자동 회신
    status: Optional[Literal["disabled", "alwaysEnabled", "scheduled"]] = Field(None, description="자동 회신 상태")
    internal_reply_message: Optional[str] = None
    external_reply_message: Optional[str] = None
    external_audience: Optional[Literal["none", "contactsOnly", "all"]] = None
    scheduled_start: Optional[str] = Field(None, description="scheduled 시작 (ISO 8601)")
    scheduled_end: Optional[str] = Field(None, description="scheduled 종료 (ISO 8601)")
    # 근무 시간
    days_of_week: Optional[List[DayOfWeek]] = None
    start_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$", description="HH:MM[:SS]")
    end_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}(:\d{2})?$", description="HH:MM[:SS]")
    time_zone: Optional[str] = Field(None, description="시간대 (생략 시 서버 기본값)")


def _with_seconds(value: str) -> str:
    return value if value.count(":") == 2 else f"{value}:00"


def _auto_replies(args: MailboxSettingsInput, default_timezone: str) -> Dict[str, Any]:
    if not args.status:
        raise invalid_argument("status", "required for action 'set-auto-replies'")

    setting: Dict[str, Any] = {"status": args.status}
    if args.internal_reply_message is not None:
        setting["internalReplyMessage"] = args.internal_reply_message
    if args.external_reply_message is not None:
        setting["externalReplyMessage"] = args.external_reply_message
    if args.external_audience:
        setting["externalAudience"] = args.external_audience

    if args.status == "scheduled":
        if not (args.scheduled_start and args.scheduled_end):
            field = "scheduledEnd" if args.scheduled_start else "scheduledStart"
            raise invalid_argument(field, "scheduledStart and scheduledEnd are required for status 'scheduled'")
        time_zone = args.time_zone or default_timezone
        setting["scheduledStartDateTime"] = {"dateTime": args.scheduled_start, "timeZone": time_zone}
        setting["scheduledEndDateTime"] = {"dateTime": args.scheduled_end, "timeZone": time_zone}

    return {"automaticRepliesSetting": setting}


def _working_hours(args: MailboxSettingsInput, default_timezone: str) -> Dict[str, Any]:
    if not args.days_of_week:
        raise invalid_argument("daysOfWeek", "required for action 'set-working-hours'")
    if not args.start_time:
        raise invalid_argument("startTime", "required for action 'set-working-hours'")
    if not args.end_time:
        raise invalid_argument("endTime", "required for action 'set-working-hours'")

    start, end = _with_seconds(args.start_time), _with_seconds(args.end_time)
    if end <= start:
        raise invalid_argument("endTime", "must be later than startTime")

    return {
        "workingHours": {
            "daysOfWeek": list(args.days_of_week),
            "startTime": f"{start}.0000000",
            "endTime": f"{end}.0000000",
            "timeZone": {"name": args.time_zone or default_timezone},
        }
    }


@mcp_tool("mailbox-settings", MailboxSettingsInput)
async def handle_mailbox_settings(args: MailboxSettingsInput, context):
    if args.action == "get":
        response = await context.graph.call(GraphRequest(path=SETTINGS_PATH))
        settings = dict(response.payload)
        settings.pop("@odata.context", None)
        return settings

    if args.action == "set-auto-replies":
        body = _auto_replies(args, context.config.default_timezone)
    else:
        body = _working_hours(args, context.config.default_timezone)

    response = await context.graph.call(GraphRequest(method="PATCH", path=SETTINGS_PATH, json_body=body))
    return {"updated": True, "action": args.action, "settings": response.payload or body}
