"""
Calendar Tools
일정 목록/생성/응답 및 취소·삭제
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from auth.time_utils import to_utc
from ..graph_types import GraphRequest
from ..graph_url import EVENT_SUMMARY_FIELDS, format_odata_datetime, quote_id
from ..mcp_server.tool_registry import mcp_tool
from .common import PagedInput, ToolInput, invalid_argument, list_payload, recipients


def summarize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    organizer = (event.get("organizer") or {}).get("emailAddress") or {}
    return {
        "id": event.get("id"),
        "subject": event.get("subject"),
        "start": event.get("start"),
        "end": event.get("end"),
        "location": (event.get("location") or {}).get("displayName"),
        "organizer": organizer.get("address"),
        "is_all_day": event.get("isAllDay"),
        "is_cancelled": event.get("isCancelled"),
        "show_as": event.get("showAs"),
    }


class ListEventsInput(PagedInput):
    start_date_time: Optional[datetime] = Field(None, description="조회 시작 시각 (endDateTime 과 함께 사용)")
    end_date_time: Optional[datetime] = Field(None, description="조회 종료 시각")

    @field_validator("start_date_time", "end_date_time")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value) if value else value


@mcp_tool("list-events", ListEventsInput)
async def handle_list_events(args: ListEventsInput, context):
    headers = {"Prefer": f'outlook.timezone="{context.config.default_timezone}"'}

    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor, headers=headers))
        return list_payload(response, "events", summarize_event)

    params: Dict[str, Any] = {
        "$top": context.config.page_size(args.count),
        "$select": ",".join(EVENT_SUMMARY_FIELDS),
        "$orderby": "start/dateTime",
    }
    if args.start_date_time or args.end_date_time:
        if not (args.start_date_time and args.end_date_time):
            field = "endDateTime" if args.start_date_time else "startDateTime"
            raise invalid_argument(field, "startDateTime and endDateTime must be given together")
        if args.end_date_time <= args.start_date_time:
            raise invalid_argument("endDateTime", "must be later than startDateTime")
        params["startDateTime"] = format_odata_datetime(args.start_date_time)
        params["endDateTime"] = format_odata_datetime(args.end_date_time)
        path = "me/calendarView"
    else:
        path = "me/events"

    response = await context.graph.call(GraphRequest(path=path, params=params, headers=headers))
    return list_payload(response, "events", summarize_event)


class CreateEventInput(ToolInput):
    subject: str = Field(..., min_length=1, description="일정 제목")
    start: str = Field(..., description="시작 시각 (ISO 8601, 시간대 없이)")
    end: str = Field(..., description="종료 시각 (ISO 8601, 시간대 없이)")
    time_zone: Optional[str] = Field(None, description="시간대 (생략 시 서버 기본값)")
    location: Optional[str] = None
    body: Optional[str] = None
    attendees: List[str] = Field(default_factory=list, description="참석자 이메일 주소")
    is_online_meeting: bool = False


@mcp_tool("create-event", CreateEventInput)
async def handle_create_event(args: CreateEventInput, context):
    time_zone = args.time_zone or context.config.default_timezone
    event: Dict[str, Any] = {
        "subject": args.subject,
        "start": {"dateTime": args.start, "timeZone": time_zone},
        "end": {"dateTime": args.end, "timeZone": time_zone},
        "isOnlineMeeting": args.is_online_meeting,
    }
    if args.location:
        event["location"] = {"displayName": args.location}
    if args.body:
        event["body"] = {"contentType": "Text", "content": args.body}
    if args.attendees:
        event["attendees"] = [
            dict(attendee, type="required") for attendee in recipients(args.attendees)
        ]

    response = await context.graph.call(GraphRequest(method="POST", path="me/events", json_body=event))
    return summarize_event(response.payload)


class ManageEventInput(ToolInput):
    event_id: str = Field(..., min_length=1, description="일정 ID")
    action: Literal["accept", "tentative", "decline", "cancel", "delete"] = Field(..., description="수행할 동작")
    comment: Optional[str] = Field(None, description="응답/취소 메시지")
    send_response: bool = Field(True, description="주최자에게 응답 발송 여부 (accept/tentative/decline)")


_EVENT_ACTIONS = {
    "accept": "accept",
    "tentative": "tentativelyAccept",
    "decline": "decline",
    "cancel": "cancel",
}


@mcp_tool("manage-event", ManageEventInput)
async def handle_manage_event(args: ManageEventInput, context):
    event_path = f"me/events/{quote_id(args.event_id)}"

    if args.action == "delete":
        await context.graph.call(GraphRequest(method="DELETE", path=event_path))
        return {"id": args.event_id, "action": "delete", "done": True}

    body: Dict[str, Any] = {}
    if args.comment:
        body["comment"] = args.comment
    if args.action != "cancel":
        body["sendResponse"] = args.send_response

    await context.graph.call(GraphRequest(
        method="POST",
        path=f"{event_path}/{_EVENT_ACTIONS[args.action]}",
        json_body=body,
    ))
    return {"id": args.event_id, "action": args.action, "done": True}
