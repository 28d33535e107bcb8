"""
Folder Tools
메일 폴더 목록/생성/통계
"""

from typing import Optional

from pydantic import Field

from ..graph_types import GraphRequest
from ..graph_url import FOLDER_FIELDS, quote_id, resolve_folder
from ..mcp_server.tool_registry import mcp_tool
from .common import PagedInput, ToolInput, list_payload


class ListFoldersInput(PagedInput):
    parent_folder: Optional[str] = Field(None, description="하위 폴더를 조회할 상위 폴더 (생략 시 최상위)")


@mcp_tool("list-folders", ListFoldersInput)
async def handle_list_folders(args: ListFoldersInput, context):
    if args.cursor:
        response = await context.graph.call(GraphRequest(cursor=args.cursor))
    else:
        path = "me/mailFolders"
        if args.parent_folder:
            path = f"me/mailFolders/{quote_id(resolve_folder(args.parent_folder))}/childFolders"
        response = await context.graph.call(GraphRequest(
            path=path,
            params={"$top": context.config.page_size(args.count), "$select": ",".join(FOLDER_FIELDS)},
        ))
    return list_payload(response, "folders")


class CreateFolderInput(ToolInput):
    display_name: str = Field(..., min_length=1, description="새 폴더 이름")
    parent_folder: Optional[str] = Field(None, description="상위 폴더 (생략 시 최상위)")


@mcp_tool("create-folder", CreateFolderInput)
async def handle_create_folder(args: CreateFolderInput, context):
    path = "me/mailFolders"
    if args.parent_folder:
        path = f"me/mailFolders/{quote_id(resolve_folder(args.parent_folder))}/childFolders"
    response = await context.graph.call(GraphRequest(
        method="POST",
        path=path,
        json_body={"displayName": args.display_name},
    ))
    folder = response.payload
    return {"id": folder.get("id"), "display_name": folder.get("displayName"), "created": True}


class FolderStatsInput(ToolInput):
    folder: str = Field("inbox", description="폴더 (well-known 이름 또는 ID)")


@mcp_tool("get-folder-stats", FolderStatsInput)
async def handle_get_folder_stats(args: FolderStatsInput, context):
    response = await context.graph.call(GraphRequest(
        path=f"me/mailFolders/{quote_id(resolve_folder(args.folder))}",
        params={"$select": ",".join(FOLDER_FIELDS + ["sizeInBytes"])},
    ))
    folder = response.payload
    return {
        "id": folder.get("id"),
        "display_name": folder.get("displayName"),
        "total_items": folder.get("totalItemCount", 0),
        "unread_items": folder.get("unreadItemCount", 0),
        "child_folders": folder.get("childFolderCount", 0),
        "size_bytes": folder.get("sizeInBytes"),
    }
