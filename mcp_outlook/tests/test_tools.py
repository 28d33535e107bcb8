"""
도구 핸들러 단위 테스트 (GraphClient / GraphBatch 는 Mock)

테스트 시나리오:
    1. delete-emails (허용 정책) vs move-emails (엄격 정책): 5개 중 3번째 실패, 재시도 가능 실패는 Transient
    2. send-email 수신자 허용 목록, dryRun
    3. search-emails 필터/검색어 조합, search-by-message-id, read-email 헤더, get-attachment-content
    4. list-events 기간 검증
    5. auth 도구 동작
    6. apply-category / set-message-flag
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from core.errors import ErrorKind, ReauthorizationRequired
from mcp_outlook.graph_types import BatchItemResult, GraphResponse
from mcp_outlook.mcp_server.dispatcher import ToolContext, ToolDispatcher, ToolRequest
from mcp_outlook.tools import build_registry


def ok_item(index, status=204, body=None):
    return BatchItemResult(index=index, status=status, ok=True, body=body)


def failed_item(index, status=404):
    return BatchItemResult(
        index=index,
        status=status,
        ok=False,
        error={"code": "ErrorItemNotFound", "message": "Not found"},
    )


def throttled_item(index):
    return BatchItemResult(
        index=index,
        status=429,
        ok=False,
        error={"code": "TooManyRequests", "message": "Rate limit exceeded"},
        retryable=True,
    )


@pytest.fixture(scope="module")
def registry():
    return build_registry()


@pytest.fixture
def context(outlook_config):
    graph = MagicMock()
    graph.call = AsyncMock(return_value=GraphResponse(status=200, payload={"value": []}))
    batch = MagicMock()
    batch.execute = AsyncMock(return_value=[])
    auth_manager = MagicMock()
    return ToolContext(auth_manager=auth_manager, graph=graph, batch=batch, config=outlook_config)


@pytest.fixture
def dispatch(registry, context):
    dispatcher = ToolDispatcher(registry, context)

    async def run(name, **arguments):
        return await dispatcher.dispatch(ToolRequest(name=name, arguments=arguments))

    return run


def sent_request(context, call_index=0):
    return context.graph.call.await_args_list[call_index].args[0]


MESSAGE_IDS = ["m1", "m2", "m3", "m4", "m5"]
THIRD_FAILS = [ok_item(0), ok_item(1), failed_item(2), ok_item(3), ok_item(4)]


class TestBatchPolicies:
    """부분 실패 처리 정책"""

    @pytest.mark.asyncio
    async def test_delete_reports_per_item(self, dispatch, context):
        context.batch.execute.return_value = THIRD_FAILS

        result = await dispatch("delete-emails", messageIds=MESSAGE_IDS)

        assert result.success is True
        assert result.payload["total"] == 5
        assert result.payload["succeeded"] == 4
        assert result.payload["failed"] == 1
        assert result.payload["results"][2] == {
            "index": 2,
            "status": 404,
            "ok": False,
            "error": {"code": "ErrorItemNotFound", "message": "Not found"},
            "retryable": False,
            "id": "m3",
        }
        requests = context.batch.execute.await_args.args[0]
        assert [r.method for r in requests] == ["DELETE"] * 5
        assert requests[0].path == "me/messages/m1"

    @pytest.mark.asyncio
    async def test_move_fails_as_whole(self, dispatch, context):
        context.batch.execute.return_value = THIRD_FAILS

        result = await dispatch("move-emails", messageIds=MESSAGE_IDS, destinationFolder="archive")

        assert result.success is False
        assert result.kind == ErrorKind.PERMANENT_TOOL_ERROR
        assert result.message == "Move failed for 1 of 5 item(s)"
        assert len(result.details) == 5
        assert [d["ok"] for d in result.details] == [True, True, False, True, True]
        requests = context.batch.execute.await_args.args[0]
        assert requests[0].json_body == {"destinationId": "archive"}

    @pytest.mark.asyncio
    async def test_move_still_throttled_is_transient(self, dispatch, context):
        context.batch.execute.return_value = [ok_item(0, 201), throttled_item(1)]

        result = await dispatch("move-emails", messageIds=["m1", "m2"], destinationFolder="archive")

        assert result.kind == ErrorKind.TRANSIENT
        assert result.retryable is True
        assert result.details[1]["id"] == "m2"
        assert result.details[1]["retryable"] is True

    @pytest.mark.asyncio
    async def test_move_mixed_failure_is_permanent(self, dispatch, context):
        context.batch.execute.return_value = [failed_item(0), throttled_item(1)]

        result = await dispatch("move-emails", messageIds=["m1", "m2"], destinationFolder="archive")

        assert result.kind == ErrorKind.PERMANENT_TOOL_ERROR
        assert result.retryable is False
        assert result.message == "Move failed for 2 of 2 item(s)"

    @pytest.mark.asyncio
    async def test_move_all_succeed(self, dispatch, context):
        context.batch.execute.return_value = [ok_item(i, 201) for i in range(2)]

        result = await dispatch("move-emails", messageIds=["m1", "m2"], destinationFolder="sent")

        assert result.success is True
        assert result.payload["succeeded"] == 2
        requests = context.batch.execute.await_args.args[0]
        assert requests[0].json_body == {"destinationId": "sentitems"}

    @pytest.mark.asyncio
    async def test_empty_id_list_rejected(self, dispatch, context):
        result = await dispatch("delete-emails", messageIds=[])

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        context.batch.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_message_flag(self, dispatch, context):
        context.batch.execute.return_value = [ok_item(0, 200), failed_item(1)]

        result = await dispatch("set-message-flag", messageIds=["m1", "m2"], flagStatus="complete")

        assert result.success is True
        assert result.payload["failed"] == 1
        requests = context.batch.execute.await_args.args[0]
        assert requests[0].json_body == {"flag": {"flagStatus": "complete"}}

    @pytest.mark.asyncio
    async def test_apply_category_add(self, dispatch, context):
        lookups = [
            ok_item(0, 200, {"categories": ["Red"]}),
            failed_item(1),
            ok_item(2, 200, {"categories": []}),
        ]
        updates = [ok_item(0, 200), ok_item(1, 200)]
        context.batch.execute.side_effect = [lookups, updates]

        result = await dispatch("apply-category", messageIds=["m1", "m2", "m3"], categories=["Blue"], action="add")

        assert result.success is True
        assert result.payload["succeeded"] == 2
        assert [r["id"] for r in result.payload["results"]] == ["m1", "m2", "m3"]
        assert result.payload["results"][1]["ok"] is False
        patches = context.batch.execute.await_args_list[1].args[0]
        assert [p.path for p in patches] == ["me/messages/m1", "me/messages/m3"]
        assert patches[0].json_body == {"categories": ["Red", "Blue"]}
        assert patches[1].json_body == {"categories": ["Blue"]}


class TestSendEmail:
    """send-email"""

    @pytest.mark.asyncio
    async def test_recipient_not_allowed(self, dispatch, context):
        context.config.allowed_recipients = ["example.com"]

        result = await dispatch("send-email", to="someone@other.com", subject="Hi", body="Hello")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "to"
        context.graph.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run(self, dispatch, context):
        result = await dispatch("send-email", to="a@example.com, b@example.com", subject="Hi", body="<p>Hello</p>", dryRun=True)

        assert result.success is True
        assert result.payload["sent"] is False
        preview = result.payload["preview"]
        assert [r["emailAddress"]["address"] for r in preview["toRecipients"]] == ["a@example.com", "b@example.com"]
        assert preview["body"]["contentType"] == "HTML"
        context.graph.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send(self, dispatch, context):
        context.config.allowed_recipients = ["example.com"]
        context.graph.call.return_value = GraphResponse(status=202, payload={})

        result = await dispatch("send-email", to="a@example.com", cc="b@example.com", subject="Hi", body="Hello")

        assert result.payload == {"sent": True, "recipients": 2, "subject": "Hi"}
        request = sent_request(context)
        assert request.method == "POST"
        assert request.path == "me/sendMail"
        assert request.json_body["message"]["body"]["contentType"] == "Text"
        assert request.json_body["saveToSentItems"] is True

    @pytest.mark.asyncio
    async def test_invalid_address(self, dispatch, context):
        result = await dispatch("send-email", to="not-an-address", subject="Hi", body="Hello")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS


class TestMailQueries:
    """list-emails / search-emails / read-email"""

    @pytest.mark.asyncio
    async def test_list_emails(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(
            status=200,
            payload={"value": [{"id": "m1", "subject": "Hello", "from": {"emailAddress": {"address": "x@example.com"}}}]},
            next_cursor="next-page",
        )

        result = await dispatch("list-emails", folder="sent", count=500)

        assert result.payload["count"] == 1
        assert result.payload["next_cursor"] == "next-page"
        assert result.payload["emails"][0]["from"] == "x@example.com"
        request = sent_request(context)
        assert request.path == "me/mailFolders/sentitems/messages"
        assert request.params["$top"] == context.config.max_page_size

    @pytest.mark.asyncio
    async def test_list_emails_with_cursor(self, dispatch, context):
        await dispatch("list-emails", cursor="opaque")

        request = sent_request(context)
        assert request.cursor == "opaque"

    @pytest.mark.asyncio
    async def test_search_requires_criteria(self, dispatch):
        result = await dispatch("search-emails")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "query"

    @pytest.mark.asyncio
    async def test_search_filters(self, dispatch, context):
        await dispatch(
            "search-emails",
            unreadOnly=True,
            receivedAfter="2025-01-01T09:00:00+09:00",
            **{"from": "boss@example.com"},
        )

        params = sent_request(context).params
        assert params["$filter"] == (
            "receivedDateTime ge 2025-01-01T00:00:00Z and isRead eq false "
            "and from/emailAddress/address eq 'boss@example.com'"
        )
        assert params["$orderby"] == "receivedDateTime desc"
        assert "$search" not in params

    @pytest.mark.asyncio
    async def test_search_keyword(self, dispatch, context):
        await dispatch("search-emails", query="invoice", hasAttachments=True, folder="inbox")

        request = sent_request(context)
        assert request.path == "me/mailFolders/inbox/messages"
        assert request.params["$search"] == '"invoice hasattachments:true"'
        assert "$filter" not in request.params

    @pytest.mark.asyncio
    async def test_search_keyword_with_unread_rejected(self, dispatch):
        result = await dispatch("search-emails", query="invoice", unreadOnly=True)

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "unreadOnly"

    @pytest.mark.asyncio
    async def test_search_date_order(self, dispatch):
        result = await dispatch(
            "search-emails",
            receivedAfter="2025-02-01T00:00:00Z",
            receivedBefore="2025-01-01T00:00:00Z",
        )

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "receivedBefore"

    @pytest.mark.asyncio
    async def test_read_email(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={
            "id": "m/1",
            "subject": "Hello",
            "toRecipients": [{"emailAddress": {"address": "a@example.com"}}, {}],
            "body": {"contentType": "text", "content": "Body"},
        })

        result = await dispatch("read-email", id="m/1")

        assert result.payload["to"] == ["a@example.com", None]
        assert result.payload["body"] == "Body"
        request = sent_request(context)
        assert request.path == "me/messages/m%2F1"
        assert request.headers["Prefer"] == 'outlook.body-content-type="text"'

    @pytest.mark.asyncio
    async def test_read_email_with_headers(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={
            "id": "m1",
            "internetMessageId": "<abc@example.com>",
            "internetMessageHeaders": [
                {"name": "Received", "value": "from mx.example.com"},
                {"name": "DKIM-Signature", "value": "v=1; a=rsa-sha256"},
            ],
        })

        result = await dispatch("read-email", id="m1", includeHeaders=True)

        assert result.payload["internet_message_id"] == "<abc@example.com>"
        assert result.payload["headers"] == [
            {"name": "Received", "value": "from mx.example.com"},
            {"name": "DKIM-Signature", "value": "v=1; a=rsa-sha256"},
        ]
        assert "internetMessageHeaders" in sent_request(context).params["$select"].split(",")

    @pytest.mark.asyncio
    async def test_read_email_without_headers(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={"id": "m1"})

        result = await dispatch("read-email", id="m1")

        assert "headers" not in result.payload
        assert "internetMessageHeaders" not in sent_request(context).params["$select"]

    @pytest.mark.asyncio
    async def test_search_by_message_id(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={"value": [
            {"id": "m1", "subject": "Hello", "internetMessageId": "<o'brien@example.com>", "parentFolderId": "inbox-id"},
        ]})

        result = await dispatch("search-by-message-id", messageId="<o'brien@example.com>")

        assert result.payload["count"] == 1
        assert result.payload["emails"][0]["folder_id"] == "inbox-id"
        assert result.payload["emails"][0]["internet_message_id"] == "<o'brien@example.com>"
        request = sent_request(context)
        assert request.path == "me/messages"
        assert request.params["$filter"] == "internetMessageId eq '<o''brien@example.com>'"

    @pytest.mark.asyncio
    async def test_get_text_attachment_content(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={
            "@odata.type": "#microsoft.graph.fileAttachment",
            "id": "att1",
            "name": "notes.txt",
            "contentType": "text/plain",
            "size": 11,
            "contentBytes": "aGVsbG8gd29ybGQ=",
        })

        result = await dispatch("get-attachment-content", messageId="m/1", attachmentId="att1")

        assert result.payload["content"] == "hello world"
        assert result.payload["is_text"] is True
        assert result.payload["attachment_type"] == "fileAttachment"
        assert sent_request(context).path == "me/messages/m%2F1/attachments/att1"

    @pytest.mark.asyncio
    async def test_get_binary_attachment_metadata_only(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={
            "@odata.type": "#microsoft.graph.fileAttachment",
            "id": "att2",
            "name": "photo.png",
            "contentType": "image/png",
            "size": 2048,
            "contentBytes": "iVBORw0KGgo=",
        })

        result = await dispatch("get-attachment-content", messageId="m1", attachmentId="att2")

        assert result.payload["content"] is None
        assert result.payload["is_text"] is False
        assert result.payload["name"] == "photo.png"
        assert result.payload["size"] == 2048

    @pytest.mark.asyncio
    async def test_upstream_error_passed_through(self, dispatch, context):
        context.graph.call.side_effect = ReauthorizationRequired("Access token rejected by Graph API after refresh")

        result = await dispatch("read-email", id="m1")

        assert result.kind == ErrorKind.REAUTHORIZATION_REQUIRED
        assert result.message == "Access token rejected by Graph API after refresh"


class TestCalendarTools:
    """list-events / manage-event"""

    @pytest.mark.asyncio
    async def test_calendar_view(self, dispatch, context):
        await dispatch("list-events", startDateTime="2025-03-01T00:00:00Z", endDateTime="2025-03-08T00:00:00Z")

        request = sent_request(context)
        assert request.path == "me/calendarView"
        assert request.params["startDateTime"] == "2025-03-01T00:00:00Z"
        assert request.params["endDateTime"] == "2025-03-08T00:00:00Z"

    @pytest.mark.asyncio
    async def test_window_needs_both_ends(self, dispatch, context):
        result = await dispatch("list-events", startDateTime="2025-03-01T00:00:00Z")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "endDateTime"
        context.graph.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_window_order(self, dispatch):
        result = await dispatch("list-events", startDateTime="2025-03-08T00:00:00Z", endDateTime="2025-03-01T00:00:00Z")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS

    @pytest.mark.asyncio
    async def test_decline_event(self, dispatch, context):
        result = await dispatch("manage-event", eventId="e1", action="decline", comment="Busy")

        assert result.payload == {"id": "e1", "action": "decline", "done": True}
        request = sent_request(context)
        assert request.path == "me/events/e1/decline"
        assert request.json_body == {"comment": "Busy", "sendResponse": True}


class TestAuthTool:
    """auth 도구"""

    @pytest.mark.asyncio
    async def test_status_is_default(self, dispatch, context):
        context.auth_manager.get_status.return_value = {"state": "unauthenticated", "authenticated": False}

        result = await dispatch("auth")

        assert result.payload == {"state": "unauthenticated", "authenticated": False}

    @pytest.mark.asyncio
    async def test_complete_requires_session(self, dispatch, context):
        result = await dispatch("auth", action="complete", code="abc")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "sessionId"

    @pytest.mark.asyncio
    async def test_authenticate(self, dispatch, context):
        context.auth_manager.begin_authorization.return_value = {
            "auth_url": "https://login.example.com",
            "session_id": "s1",
            "expires_at": "2030-01-01T00:00:00+00:00",
        }

        result = await dispatch("auth", action="authenticate")

        assert result.payload["session_id"] == "s1"
        assert "message" in result.payload

    @pytest.mark.asyncio
    async def test_sign_out(self, dispatch, context):
        result = await dispatch("auth", action="sign-out")

        assert result.payload == {"signed_out": True}
        context.auth_manager.sign_out.assert_called_once()

    @pytest.mark.asyncio
    async def test_unknown_action(self, dispatch):
        result = await dispatch("auth", action="explode")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "action"


class TestContactRuleSettingsTools:
    """연락처 / 규칙 / 메일함 설정 / 카테고리"""

    @pytest.mark.asyncio
    async def test_search_contacts_filter(self, dispatch, context):
        await dispatch("search-contacts", query="O'Brien")

        params = sent_request(context).params
        assert params["$filter"] == (
            "(startswith(displayName, 'O''Brien') or startswith(givenName, 'O''Brien') "
            "or startswith(surname, 'O''Brien'))"
        )

    @pytest.mark.asyncio
    async def test_update_contact_sends_only_given_fields(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={"id": "c1", "jobTitle": "Engineer"})

        result = await dispatch("update-contact", id="c1", jobTitle="Engineer", emailAddresses=["a@example.com"])

        request = sent_request(context)
        assert request.method == "PATCH"
        assert request.json_body == {
            "jobTitle": "Engineer",
            "emailAddresses": [{"address": "a@example.com", "name": "a@example.com"}],
        }
        assert result.payload["job_title"] == "Engineer"

    @pytest.mark.asyncio
    async def test_update_contact_without_changes(self, dispatch, context):
        result = await dispatch("update-contact", id="c1")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        context.graph.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_rule(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=201, payload={"id": "r1", "displayName": "Boss"})

        await dispatch(
            "manage-rules",
            action="create",
            displayName="Boss",
            fromAddresses=["boss@example.com"],
            moveToFolder="archive",
        )

        body = sent_request(context).json_body
        assert body["conditions"] == {"fromAddresses": [{"emailAddress": {"address": "boss@example.com"}}]}
        assert body["actions"] == {"moveToFolder": "archive"}
        assert body["sequence"] == 1

    @pytest.mark.asyncio
    async def test_create_rule_without_action(self, dispatch):
        result = await dispatch(
            "manage-rules", action="create", displayName="Boss", fromAddresses=["boss@example.com"]
        )

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "moveToFolder"

    @pytest.mark.asyncio
    async def test_working_hours(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=200, payload={})

        result = await dispatch(
            "mailbox-settings",
            action="set-working-hours",
            daysOfWeek=["monday", "friday"],
            startTime="09:00",
            endTime="18:00",
        )

        hours = sent_request(context).json_body["workingHours"]
        assert hours["startTime"] == "09:00:00.0000000"
        assert hours["endTime"] == "18:00:00.0000000"
        assert result.payload["updated"] is True

    @pytest.mark.asyncio
    async def test_scheduled_auto_reply_needs_window(self, dispatch):
        result = await dispatch(
            "mailbox-settings", action="set-auto-replies", status="scheduled", scheduledStart="2025-07-01T00:00:00"
        )

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "scheduledEnd"

    @pytest.mark.asyncio
    async def test_create_category_color(self, dispatch, context):
        context.graph.call.return_value = GraphResponse(status=201, payload={"id": "cat1"})

        await dispatch("manage-category", action="create", displayName="Projects", color="blue")

        assert sent_request(context).json_body == {"displayName": "Projects", "color": "preset7"}

    @pytest.mark.asyncio
    async def test_unknown_category_color(self, dispatch):
        result = await dispatch("manage-category", action="create", displayName="Projects", color="ultraviolet")

        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert result.details[0]["field"] == "color"
