"""
Graph URL Helpers - OData 쿼리 / 페이지 커서 / 엔드포인트 분류

Classes:
    - FilterBuilder: $filter 쿼리 빌더 (문자열 리터럴 이스케이프 포함)
    - SearchBuilder: $search KQL 쿼리 빌더

Functions:
    - escape_odata_string: OData 문자열 리터럴 이스케이프
    - resolve_endpoint_class: 경로 -> 스로틀링 그룹
    - encode_cursor / decode_cursor: @odata.nextLink <-> 불투명 커서
"""

import base64
import binascii
from datetime import datetime
from typing import Any, List, Optional
from urllib.parse import quote

from core.errors import InvalidArgumentsError
from .graph_types import EndpointClass

# 목록 조회 시 기본 $select 필드
EMAIL_SUMMARY_FIELDS = [
    "id", "subject", "from", "toRecipients", "receivedDateTime",
    "isRead", "hasAttachments", "importance", "bodyPreview", "categories", "flag",
]
EMAIL_DETAIL_FIELDS = EMAIL_SUMMARY_FIELDS + [
    "ccRecipients", "bccRecipients", "body", "sentDateTime", "conversationId", "parentFolderId",
    "internetMessageId",
]
EVENT_SUMMARY_FIELDS = [
    "id", "subject", "start", "end", "location", "organizer",
    "isAllDay", "isCancelled", "showAs", "webLink",
]
CONTACT_FIELDS = [
    "id", "displayName", "givenName", "surname", "emailAddresses",
    "businessPhones", "mobilePhone", "companyName", "jobTitle",
]
FOLDER_FIELDS = [
    "id", "displayName", "parentFolderId", "childFolderCount", "unreadItemCount", "totalItemCount",
]
ATTACHMENT_FIELDS = ["id", "name", "contentType", "size", "isInline", "lastModifiedDateTime"]
# 내용을 텍스트로 돌려줄 첨부 MIME 타입 (접두사)
TEXT_ATTACHMENT_TYPES = ("text/", "application/json", "application/xml", "application/javascript")

WELL_KNOWN_FOLDERS = {
    "inbox": "inbox",
    "drafts": "drafts",
    "sent": "sentitems",
    "sentitems": "sentitems",
    "deleted": "deleteditems",
    "deleteditems": "deleteditems",
    "junk": "junkemail",
    "junkemail": "junkemail",
    "archive": "archive",
    "outbox": "outbox",
}

# 경로 세그먼트 -> 스로틀링 그룹 (앞쪽 세그먼트 우선)
_SEGMENT_CLASSES = {
    "messages": EndpointClass.MAIL,
    "mailfolders": EndpointClass.MAIL,
    "sendmail": EndpointClass.MAIL,
    "inferenceclassification": EndpointClass.MAIL,
    "events": EndpointClass.CALENDAR,
    "calendar": EndpointClass.CALENDAR,
    "calendars": EndpointClass.CALENDAR,
    "calendarview": EndpointClass.CALENDAR,
    "contacts": EndpointClass.CONTACTS,
    "contactfolders": EndpointClass.CONTACTS,
    "people": EndpointClass.PEOPLE,
    "outlook": EndpointClass.CATEGORIES,
    "mailboxsettings": EndpointClass.SETTINGS,
    "$batch": EndpointClass.BATCH,
}


def escape_odata_string(value: str) -> str:
    """OData 문자열 리터럴 이스케이프 (' -> '')"""
    return value.replace("'", "''")


def format_query_value(value: Any) -> str:
    """쿼리 파라미터 값 직렬화 (bool -> true/false)"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def format_odata_datetime(value: datetime) -> str:
    return value.strftime('%Y-%m-%dT%H:%M:%SZ')


def resolve_folder(folder: Optional[str]) -> str:
    """well-known 폴더 이름을 Graph 이름으로, 그 외는 폴더 ID로 간주"""
    if not folder:
        return "inbox"
    return WELL_KNOWN_FOLDERS.get(folder.lower(), folder)


def quote_id(item_id: str) -> str:
    """경로에 들어갈 Graph ID 인코딩"""
    return quote(item_id, safe="")


def resolve_endpoint_class(path: str) -> EndpointClass:
    """
    요청 경로에서 스로틀링 그룹 결정

    Args:
        path: 상대 경로 또는 절대 URL

    Returns:
        EndpointClass
    """
    path = path.split("?", 1)[0]
    for segment in path.strip("/").split("/"):
        endpoint_class = _SEGMENT_CLASSES.get(segment.lower())
        if endpoint_class:
            return endpoint_class
    return EndpointClass.DEFAULT


def encode_cursor(link: Optional[str]) -> Optional[str]:
    """@odata.nextLink / deltaLink 를 불투명 커서로 변환"""
    if not link:
        return None
    return base64.urlsafe_b64encode(link.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, graph_endpoint: str) -> str:
    """
    커서를 원래 URL로 복원

    Args:
        cursor: encode_cursor 가 만든 커서
        graph_endpoint: 허용되는 Graph 기본 URL

    Returns:
        절대 URL

    Raises:
        InvalidArgumentsError: 해석 불가하거나 Graph 엔드포인트 밖을 가리키는 커서
    """
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        url = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidArgumentsError(
            "Invalid pagination cursor",
            details=[{"field": "cursor", "message": "not a cursor returned by this server"}],
        )

    if not url.startswith(graph_endpoint):
        raise InvalidArgumentsError(
            "Invalid pagination cursor",
            details=[{"field": "cursor", "message": "cursor does not point at the Graph API endpoint"}],
        )
    return url


class FilterBuilder:
    """
    Graph API $filter 쿼리 빌더

    문자열 값은 모두 escape_odata_string 을 거친다.
    """

    def __init__(self):
        self._filters: List[str] = []

    def unread(self, value: bool = True) -> "FilterBuilder":
        """읽지 않은 메일 필터"""
        self._filters.append(f"isRead eq {str(not value).lower()}")
        return self

    def has_attachments(self, value: bool = True) -> "FilterBuilder":
        """첨부파일 있는 메일 필터"""
        self._filters.append(f"hasAttachments eq {str(value).lower()}")
        return self

    def importance(self, value: str) -> "FilterBuilder":
        """중요도 필터 (low, normal, high)"""
        self._filters.append(f"importance eq '{escape_odata_string(value)}'")
        return self

    def from_sender(self, email: str) -> "FilterBuilder":
        """특정 발신자 필터"""
        self._filters.append(f"from/emailAddress/address eq '{escape_odata_string(email)}'")
        return self

    def subject_contains(self, text: str) -> "FilterBuilder":
        """제목에 텍스트 포함 필터"""
        self._filters.append(f"contains(subject, '{escape_odata_string(text)}')")
        return self

    def received_after(self, date: datetime) -> "FilterBuilder":
        """특정 시각 이후 수신 메일"""
        self._filters.append(f"receivedDateTime ge {format_odata_datetime(date)}")
        return self

    def received_before(self, date: datetime) -> "FilterBuilder":
        """특정 시각 이전 수신 메일"""
        self._filters.append(f"receivedDateTime le {format_odata_datetime(date)}")
        return self

    def internet_message_id(self, message_id: str) -> "FilterBuilder":
        """Message-ID 헤더 값 일치 (꺾쇠 포함 전체 값)"""
        self._filters.append(f"internetMessageId eq '{escape_odata_string(message_id)}'")
        return self

    def starts_with(self, field: str, text: str) -> "FilterBuilder":
        self._filters.append(f"startswith({field}, '{escape_odata_string(text)}')")
        return self

    def any_of(self, builders: List["FilterBuilder"]) -> "FilterBuilder":
        """하위 조건들을 OR 로 묶어 추가"""
        parts = [b.build() for b in builders if b.build()]
        if parts:
            self._filters.append(f"({' or '.join(parts)})")
        return self

    def build(self) -> str:
        """
        필터 쿼리 문자열 생성

        Returns:
            $filter 쿼리 문자열 (빈 경우 빈 문자열)
        """
        return " and ".join(self._filters) if self._filters else ""


class SearchBuilder:
    """
    Graph API $search KQL 쿼리 빌더

    Graph는 $search 값 전체를 큰따옴표로 감싸야 한다.
    """

    def __init__(self):
        self._terms: List[str] = []

    def keyword(self, text: str) -> "SearchBuilder":
        """키워드 검색"""
        self._terms.append(text)
        return self

    def from_sender(self, email: str) -> "SearchBuilder":
        """발신자 검색"""
        self._terms.append(f"from:{email}")
        return self

    def subject(self, text: str) -> "SearchBuilder":
        """제목 검색"""
        self._terms.append(f"subject:{text}")
        return self

    def has_attachment(self) -> "SearchBuilder":
        """첨부파일 있는 메일 검색"""
        self._terms.append("hasattachments:true")
        return self

    def received_after(self, date: datetime) -> "SearchBuilder":
        self._terms.append(f"received>={date.strftime('%Y-%m-%d')}")
        return self

    def received_before(self, date: datetime) -> "SearchBuilder":
        self._terms.append(f"received<={date.strftime('%Y-%m-%d')}")
        return self

    def build(self) -> str:
        if not self._terms:
            return ""
        query = " ".join(self._terms).replace('"', '\\"')
        return f'"{query}"'
