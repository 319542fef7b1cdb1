"""跳转类结果归一化

definition / declaration / typeDefinition / implementation / references
的结果可能是 Location、Location[] 或 LocationLink[]。
"""

from __future__ import annotations

from typing import Any, List, Optional

from ..items import ActionKind, ActionRecord, Item, ItemContext, RequestContext
from ..lsp.protocol import Location, uri_to_path
from .common import as_list, convert_each, display_path, is_deno_fragment_uri, position_suffix


def location_item(
    raw: dict, context: ItemContext, request: RequestContext
) -> Optional[Item]:
    """单个 Location/LocationLink -> Item，deno 版本片段 URI 返回 None"""
    location = Location.from_dict(raw)
    if is_deno_fragment_uri(location.uri):
        return None

    path = display_path(uri_to_path(location.uri), request.cwd)
    start = location.range.start
    return Item(
        label=path,
        display=path + position_suffix(start.line, start.character),
        action=ActionRecord(
            kind=ActionKind.LOCATION,
            context=context,
            uri=location.uri,
            range=location.range,
            encoding=context.client.offset_encoding,
        ),
        payload=raw,
        is_tree=False,
    )


def normalize_locations(
    result: Any, context: ItemContext, request: RequestContext
) -> List[Item]:
    """跳转类结果 -> Item 列表"""
    return convert_each(
        as_list(result, context.method.value),
        lambda raw: location_item(raw, context, request),
        "location",
    )
