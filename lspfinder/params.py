"""请求参数构建

位置按目标客户端的编码转换。
"""

from __future__ import annotations

from typing import List, Optional

from .editor import EditorService, buffer_uri, encode_position, line_byte_length
from .items import RequestContext
from .lsp.protocol import OffsetEncoding, Position, Range


async def text_document_identifier(editor: EditorService, buffer: int) -> dict:
    return {"uri": await buffer_uri(editor, buffer)}


async def position_params(
    editor: EditorService,
    request: RequestContext,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
) -> dict:
    """TextDocumentPositionParams (光标位置)"""
    cursor = await editor.get_cursor(request.window)
    position = await encode_position(editor, request.buffer, cursor, encoding)
    return {
        "textDocument": await text_document_identifier(editor, request.buffer),
        "position": position.to_dict(),
    }


async def reference_params(
    editor: EditorService,
    request: RequestContext,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
    include_declaration: bool = True,
) -> dict:
    params = await position_params(editor, request, encoding)
    params["context"] = {"includeDeclaration": include_declaration}
    return params


async def selection_range(
    editor: EditorService,
    request: RequestContext,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
) -> Range:
    """当前选区 (普通模式下为光标位置)

    行选择模式 ("V") 扩展为整行。
    """
    first, second, mode = await editor.get_selection(request.window)
    start, end = (first, second) if not second.is_before(first) else (second, first)

    if mode == "V":
        start = Position(start.line, 0)
        end = Position(end.line, await line_byte_length(editor, request.buffer, end.line))

    return Range(
        start=await encode_position(editor, request.buffer, start, encoding),
        end=await encode_position(editor, request.buffer, end, encoding),
    )


async def code_action_params(
    editor: EditorService,
    request: RequestContext,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
    diagnostics: Optional[List[dict]] = None,
) -> dict:
    """CodeActionParams"""
    selected = await selection_range(editor, request, encoding)
    return {
        "textDocument": await text_document_identifier(editor, request.buffer),
        "range": selected.to_dict(),
        "context": {"diagnostics": diagnostics or []},
    }


def workspace_symbol_params(query: str = "") -> dict:
    return {"query": query}
