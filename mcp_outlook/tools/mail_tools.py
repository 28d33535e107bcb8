"""
Mail Tools
메일 목록/검색/Message-ID 조회/읽기/발송/읽음 표시/삭제/이동/첨부/델타 동기화
"""

import base64
import binascii
import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field, field_validator

from auth.time_utils import to_utc
from ..graph_types import GraphRequest
from ..graph_url import (
    ATTACHMENT_FIELDS,
    EMAIL_DETAIL_FIELDS,
    EMAIL_SUMMARY_FIELDS,
    FilterBuilder,
    SearchBuilder,
    TEXT_ATTACHMENT_TYPES,
    quote_id,
    resolve_folder,
)
from ..mcp_server.tool_registry import mcp_tool
from .common import (
    PagedInput,
    ToolInput,
    invalid_argument,
    list_payload,
    mixed_batch_result,
    recipients,
    split_addresses,
    strict_batch_result,
)

logger = logging.getLogger(__name__)


def summarize_email(message: Dict[str, Any]) -> Dict[str, Any]:
    """메일 목록용 요약"""
    sender = (message.get("from") or {}).get("emailAddress") or {}
    return {
        "id": message.get("id"),
        "subject": message.get("subject"),
        "from": sender.get("address"),
        "from_name": sender.get("name"),
        "received": message.get("receivedDateTime"),
        "is_read": message.get("isRead"),
        "has_attachments": message.get("hasAttachments"),
        "importance": message.get("importance"),
        "preview": message.get("bodyPreview"),
        "categories": message.get("categories", []),
    }


# ===== list-emails =====


class ListEmailsInput(PagedInput):
    folder: str = Field("inbox", description="폴더 (inbox, sent, drafts, deleted, junk, archive 또는 폴더 ID)")


@mcp_tool("list-emails", ListEmailsInput)
async def handle_list_emails(args: ListEmailsInput, context):
    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor))
    else:
        folder = quote_id(resolve_folder(args.folder))
        response = await context.graph.call(GraphRequest(
            path=f"me/mailFolders/{folder}/messages",
            params={
                "$top": context.config.page_size(args.count),
                "$select": ",".join(EMAIL_SUMMARY_FIELDS),
                "$orderby": "receivedDateTime desc",
            },
        ))
    return list_payload(response, "emails", summarize_email)


# ===== search-emails =====


class SearchEmailsInput(PagedInput):
    query: Optional[str] = Field(None, description="KQL 검색어 (본문/제목/발신자 전체 검색)")
    from_address: Optional[str] = Field(None, alias="from", description="발신자 주소")
    subject: Optional[str] = Field(None, description="제목에 포함된 텍스트")
    unread_only: bool = Field(False, description="읽지 않은 메일만")
    has_attachments: Optional[bool] = Field(None, description="첨부파일 유무")
    received_after: Optional[datetime] = Field(None, description="이 시각 이후 수신")
    received_before: Optional[datetime] = Field(None, description="이 시각 이전 수신")
    folder: Optional[str] = Field(None, description="검색할 폴더 (생략 시 전체 메일함)")

    @field_validator("received_after", "received_before")
    @classmethod
    def _normalize_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value) if value else value


def _build_search_params(args: SearchEmailsInput, page_size: int) -> Dict[str, Any]:
    params: Dict[str, Any] = {"$top": page_size, "$select": ",".join(EMAIL_SUMMARY_FIELDS)}

    if args.query:
        # $search 는 $filter / $orderby 와 함께 쓸 수 없어 모든 조건을 KQL 로 표현
        if args.unread_only:
            raise invalid_argument("unreadOnly", "cannot be combined with query")
        search = SearchBuilder().keyword(args.query)
        if args.from_address:
            search.from_sender(args.from_address)
        if args.subject:
            search.subject(args.subject)
        if args.has_attachments:
            search.has_attachment()
        if args.received_after:
            search.received_after(args.received_after)
        if args.received_before:
            search.received_before(args.received_before)
        params["$search"] = search.build()
        return params

    filters = FilterBuilder()
    if args.received_after:
        filters.received_after(args.received_after)
    if args.received_before:
        filters.received_before(args.received_before)
    if args.unread_only:
        filters.unread()
    if args.has_attachments is not None:
        filters.has_attachments(args.has_attachments)
    if args.from_address:
        filters.from_sender(args.from_address)
    if args.subject:
        filters.subject_contains(args.subject)

    filter_query = filters.build()
    if not filter_query:
        raise invalid_argument("query", "provide a query or at least one filter")
    params["$filter"] = filter_query
    if args.received_after or args.received_before:
        params["$orderby"] = "receivedDateTime desc"
    return params


@mcp_tool("search-emails", SearchEmailsInput)
async def handle_search_emails(args: SearchEmailsInput, context):
    if args.received_after and args.received_before and args.received_after > args.received_before:
        raise invalid_argument("receivedBefore", "must be later than receivedAfter")

    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor))
    else:
        path = "me/messages"
        if args.folder:
            path = f"me/mailFolders/{quote_id(resolve_folder(args.folder))}/messages"
        params = _build_search_params(args, context.config.page_size(args.count))
        response = await context.graph.call(GraphRequest(path=path, params=params))
    return list_payload(response, "emails", summarize_email)


# ===== read-email =====


class ReadEmailInput(ToolInput):
    id: str = Field(..., min_length=1, description="메일 ID")
    body_format: Literal["text", "html"] = Field("text", description="본문 형식")
    include_headers: bool = Field(False, description="인터넷 메시지 헤더 포함 (Received, DKIM 등)")


@mcp_tool("read-email", ReadEmailInput)
async def handle_read_email(args: ReadEmailInput, context):
    fields = list(EMAIL_DETAIL_FIELDS)
    if args.include_headers:
        fields.append("internetMessageHeaders")

    response = await context.graph.call(GraphRequest(
        path=f"me/messages/{quote_id(args.id)}",
        params={"$select": ",".join(fields)},
        headers={"Prefer": f'outlook.body-content-type="{args.body_format}"'},
    ))
    message = response.payload
    email = summarize_email(message)
    email.update({
        "to": [(r.get("emailAddress") or {}).get("address") for r in message.get("toRecipients", [])],
        "cc": [(r.get("emailAddress") or {}).get("address") for r in message.get("ccRecipients", [])],
        "body": (message.get("body") or {}).get("content"),
        "body_type": (message.get("body") or {}).get("contentType"),
        "conversation_id": message.get("conversationId"),
        "internet_message_id": message.get("internetMessageId"),
        "flag": (message.get("flag") or {}).get("flagStatus"),
    })
    if args.include_headers:
        email["headers"] = [
            {"name": h.get("name"), "value": h.get("value")}
            for h in message.get("internetMessageHeaders") or []
        ]
    return email


# ===== search-by-message-id =====


class SearchByMessageIdInput(ToolInput):
    message_id: str = Field(..., min_length=1, description="Message-ID 헤더 전체 값 (예: <abc123@example.com>)")


@mcp_tool("search-by-message-id", SearchByMessageIdInput)
async def handle_search_by_message_id(args: SearchByMessageIdInput, context):
    response = await context.graph.call(GraphRequest(
        path="me/messages",
        params={
            "$filter": FilterBuilder().internet_message_id(args.message_id).build(),
            "$select": ",".join(EMAIL_SUMMARY_FIELDS + ["internetMessageId", "parentFolderId"]),
            "$top": 10,
        },
    ))
    emails = []
    for message in response.items:
        email = summarize_email(message)
        email["internet_message_id"] = message.get("internetMessageId")
        email["folder_id"] = message.get("parentFolderId")
        emails.append(email)
    return {"message_id": args.message_id, "emails": emails, "count": len(emails)}


# ===== send-email =====


class SendEmailInput(ToolInput):
    to: str = Field(..., min_length=3, description="수신자 (쉼표 구분)")
    cc: Optional[str] = Field(None, description="참조 (쉼표 구분)")
    bcc: Optional[str] = Field(None, description="숨은 참조 (쉼표 구분)")
    subject: str = Field(..., description="제목")
    body: str = Field(..., description="본문 (HTML 태그로 시작하면 HTML)")
    importance: Literal["low", "normal", "high"] = "normal"
    save_to_sent_items: bool = True
    dry_run: bool = Field(False, description="발송하지 않고 미리보기만 반환")


def _check_recipients(field: str, addresses: List[str], config) -> List[str]:
    for address in addresses:
        if "@" not in address:
            raise invalid_argument(field, f"'{address}' is not an email address")
        if not config.is_recipient_allowed(address):
            raise invalid_argument(field, f"'{address}' is not in the allowed recipients list")
    return addresses


@mcp_tool("send-email", SendEmailInput)
async def handle_send_email(args: SendEmailInput, context):
    to = _check_recipients("to", split_addresses(args.to), context.config)
    cc = _check_recipients("cc", split_addresses(args.cc), context.config)
    bcc = _check_recipients("bcc", split_addresses(args.bcc), context.config)
    if not to:
        raise invalid_argument("to", "at least one recipient is required")

    content_type = "HTML" if args.body.lstrip().startswith("<") else "Text"
    message: Dict[str, Any] = {
        "subject": args.subject,
        "body": {"contentType": content_type, "content": args.body},
        "toRecipients": recipients(to),
        "importance": args.importance,
    }
    if cc:
        message["ccRecipients"] = recipients(cc)
    if bcc:
        message["bccRecipients"] = recipients(bcc)

    if args.dry_run:
        return {"dry_run": True, "sent": False, "preview": message}

    await context.graph.call(GraphRequest(
        method="POST",
        path="me/sendMail",
        json_body={"message": message, "saveToSentItems": args.save_to_sent_items},
    ))
    logger.info(f"Email sent to {len(to) + len(cc) + len(bcc)} recipient(s)")
    return {"sent": True, "recipients": len(to) + len(cc) + len(bcc), "subject": args.subject}


# ===== mark-as-read =====


class MarkAsReadInput(ToolInput):
    id: str = Field(..., min_length=1, description="메일 ID")
    is_read: bool = Field(True, description="false면 읽지 않음으로 표시")


@mcp_tool("mark-as-read", MarkAsReadInput)
async def handle_mark_as_read(args: MarkAsReadInput, context):
    await context.graph.call(GraphRequest(
        method="PATCH",
        path=f"me/messages/{quote_id(args.id)}",
        json_body={"isRead": args.is_read},
    ))
    return {"id": args.id, "is_read": args.is_read}


# ===== delete-emails / move-emails (batch) =====


class DeleteEmailsInput(ToolInput):
    message_ids: List[str] = Field(..., min_length=1, description="삭제할 메일 ID 목록")


@mcp_tool("delete-emails", DeleteEmailsInput)
async def handle_delete_emails(args: DeleteEmailsInput, context):
    requests = [
        GraphRequest(method="DELETE", path=f"me/messages/{quote_id(message_id)}")
        for message_id in args.message_ids
    ]
    results = await context.batch.execute(requests)
    return mixed_batch_result(results, args.message_ids)


class MoveEmailsInput(ToolInput):
    message_ids: List[str] = Field(..., min_length=1, description="이동할 메일 ID 목록")
    destination_folder: str = Field(..., min_length=1, description="대상 폴더 (well-known 이름 또는 ID)")


@mcp_tool("move-emails", MoveEmailsInput)
async def handle_move_emails(args: MoveEmailsInput, context):
    destination = resolve_folder(args.destination_folder)
    requests = [
        GraphRequest(
            method="POST",
            path=f"me/messages/{quote_id(message_id)}/move",
            json_body={"destinationId": destination},
        )
        for message_id in args.message_ids
    ]
    results = await context.batch.execute(requests)
    return strict_batch_result(results, args.message_ids, "Move")


# ===== list-attachments =====


class ListAttachmentsInput(ToolInput):
    message_id: str = Field(..., min_length=1, description="메일 ID")


@mcp_tool("list-attachments", ListAttachmentsInput)
async def handle_list_attachments(args: ListAttachmentsInput, context):
    response = await context.graph.call(GraphRequest(
        path=f"me/messages/{quote_id(args.message_id)}/attachments",
        params={"$select": ",".join(ATTACHMENT_FIELDS)},
    ))
    return list_payload(response, "attachments")


# ===== get-attachment-content =====


class GetAttachmentContentInput(ToolInput):
    message_id: str = Field(..., min_length=1, description="메일 ID")
    attachment_id: str = Field(..., min_length=1, description="첨부파일 ID")


@mcp_tool("get-attachment-content", GetAttachmentContentInput)
async def handle_get_attachment_content(args: GetAttachmentContentInput, context):
    """텍스트 계열 파일 첨부는 내용까지, 그 외는 메타데이터만 반환"""
    response = await context.graph.call(GraphRequest(
        path=f"me/messages/{quote_id(args.message_id)}/attachments/{quote_id(args.attachment_id)}",
    ))
    attachment = response.payload if isinstance(response.payload, dict) else {}
    content_type = attachment.get("contentType") or "application/octet-stream"
    odata_type = attachment.get("@odata.type", "")

    result: Dict[str, Any] = {
        "id": attachment.get("id", args.attachment_id),
        "name": attachment.get("name"),
        "content_type": content_type,
        "size": attachment.get("size", 0),
        "attachment_type": odata_type.rsplit(".", 1)[-1] or None,
        "content": None,
    }

    is_file = odata_type == "#microsoft.graph.fileAttachment"
    raw = attachment.get("contentBytes")
    if is_file and raw and content_type.lower().startswith(TEXT_ATTACHMENT_TYPES):
        try:
            result["content"] = base64.b64decode(raw).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.warning(f"Attachment {args.attachment_id} has undecodable contentBytes")
    result["is_text"] = result["content"] is not None
    return result


# ===== list-emails-delta =====


class ListEmailsDeltaInput(PagedInput):
    folder: str = Field("inbox", description="동기화할 폴더")


@mcp_tool("list-emails-delta", ListEmailsDeltaInput)
async def handle_list_emails_delta(args: ListEmailsDeltaInput, context):
    headers = {"Prefer": f"odata.maxpagesize={context.config.page_size(args.count)}"}
    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor, headers=headers))
    else:
        folder = quote_id(resolve_folder(args.folder))
        response = await context.graph.call(GraphRequest(
            path=f"me/mailFolders/{folder}/messages/delta",
            params={"$select": ",".join(EMAIL_SUMMARY_FIELDS)},
            headers=headers,
        ))
    return list_payload(response, "emails", summarize_email)
