"""
Contact Tools
연락처 CRUD, 연락처 검색, 관련 인물(People) 검색
"""

from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic.alias_generators import to_camel

from ..graph_types import GraphRequest
from ..graph_url import CONTACT_FIELDS, FilterBuilder, quote_id
from ..mcp_server.tool_registry import mcp_tool
from .common import PagedInput, ToolInput, invalid_argument, list_payload


def summarize_contact(contact: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": contact.get("id"),
        "display_name": contact.get("displayName"),
        "given_name": contact.get("givenName"),
        "surname": contact.get("surname"),
        "emails": [e.get("address") for e in contact.get("emailAddresses", []) if e.get("address")],
        "mobile_phone": contact.get("mobilePhone"),
        "business_phones": contact.get("businessPhones", []),
        "company": contact.get("companyName"),
        "job_title": contact.get("jobTitle"),
    }


class ListContactsInput(PagedInput):
    pass


@mcp_tool("list-contacts", ListContactsInput)
async def handle_list_contacts(args: ListContactsInput, context):
    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor))
    else:
        response = await context.graph.call(GraphRequest(
            path="me/contacts",
            params={
                "$top": context.config.page_size(args.count),
                "$select": ",".join(CONTACT_FIELDS),
                "$orderby": "displayName",
            },
        ))
    return list_payload(response, "contacts", summarize_contact)


class SearchContactsInput(PagedInput):
    query: str = Field(..., min_length=1, description="이름 앞부분")


@mcp_tool("search-contacts", SearchContactsInput)
async def handle_search_contacts(args: SearchContactsInput, context):
    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor))
    else:
        name_filter = FilterBuilder().any_of([
            FilterBuilder().starts_with("displayName", args.query),
            FilterBuilder().starts_with("givenName", args.query),
            FilterBuilder().starts_with("surname", args.query),
        ])
        response = await context.graph.call(GraphRequest(
            path="me/contacts",
            params={
                "$top": context.config.page_size(args.count),
                "$select": ",".join(CONTACT_FIELDS),
                "$filter": name_filter.build(),
            },
        ))
    return list_payload(response, "contacts", summarize_contact)


class GetContactInput(ToolInput):
    id: str = Field(..., min_length=1, description="연락처 ID")


@mcp_tool("get-contact", GetContactInput)
async def handle_get_contact(args: GetContactInput, context):
    response = await context.graph.call(GraphRequest(
        path=f"me/contacts/{quote_id(args.id)}",
        params={"$select": ",".join(CONTACT_FIELDS)},
    ))
    return summarize_contact(response.payload)


class ContactFields(ToolInput):
    given_name: Optional[str] = None
    surname: Optional[str] = None
    display_name: Optional[str] = None
    email_addresses: Optional[List[str]] = None
    mobile_phone: Optional[str] = None
    business_phones: Optional[List[str]] = None
    company_name: Optional[str] = None
    job_title: Optional[str] = None

    def to_graph(self) -> Dict[str, Any]:
        """설정된 필드만 Graph 연락처 본문으로 변환"""
        contact: Dict[str, Any] = {}
        for name in ("given_name", "surname", "display_name", "mobile_phone",
                     "business_phones", "company_name", "job_title"):
            value = getattr(self, name)
            if value is not None:
                contact[to_camel(name)] = value
        if self.email_addresses is not None:
            contact["emailAddresses"] = [{"address": a, "name": a} for a in self.email_addresses]
        return contact


class CreateContactInput(ContactFields):
    pass


@mcp_tool("create-contact", CreateContactInput)
async def handle_create_contact(args: CreateContactInput, context):
    contact = args.to_graph()
    if not (contact.get("givenName") or contact.get("displayName") or contact.get("emailAddresses")):
        raise invalid_argument("givenName", "a name or an email address is required")

    response = await context.graph.call(GraphRequest(method="POST", path="me/contacts", json_body=contact))
    return summarize_contact(response.payload)


class UpdateContactInput(ContactFields):
    id: str = Field(..., min_length=1, description="연락처 ID")


@mcp_tool("update-contact", UpdateContactInput)
async def handle_update_contact(args: UpdateContactInput, context):
    changes = args.to_graph()
    if not changes:
        raise invalid_argument("id", "no fields to update")

    response = await context.graph.call(GraphRequest(
        method="PATCH",
        path=f"me/contacts/{quote_id(args.id)}",
        json_body=changes,
    ))
    return summarize_contact(response.payload)


class DeleteContactInput(ToolInput):
    id: str = Field(..., min_length=1, description="연락처 ID")


@mcp_tool("delete-contact", DeleteContactInput)
async def handle_delete_contact(args: DeleteContactInput, context):
    await context.graph.call(GraphRequest(method="DELETE", path=f"me/contacts/{quote_id(args.id)}"))
    return {"id": args.id, "deleted": True}


class SearchPeopleInput(ToolInput):
    query: str = Field(..., min_length=1, description="이름 또는 주소 일부")
    count: Optional[int] = Field(None, ge=1)


@mcp_tool("search-people", SearchPeopleInput)
async def handle_search_people(args: SearchPeopleInput, context):
    response = await context.graph.call(GraphRequest(
        path="me/people",
        params={
            "$search": f'"{args.query}"',
            "$top": context.config.page_size(args.count),
        },
    ))

    def summarize_person(person: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": person.get("id"),
            "display_name": person.get("displayName"),
            "emails": [e.get("address") for e in person.get("scoredEmailAddresses", []) if e.get("address")],
            "company": person.get("companyName"),
            "job_title": person.get("jobTitle"),
        }

    return list_payload(response, "people", summarize_person)
