"""调用层级与类型层级归一化

两阶段: prepare 请求得到根节点，之后每一层由展开操作单独请求
(incomingCalls/outgoingCalls 或 supertypes/subtypes)。
"""

from __future__ import annotations

from typing import Any, List, Optional

from ..items import ActionKind, ActionRecord, Item, ItemContext, RequestContext, TreePath
from ..lsp.protocol import Method, Range, uri_to_path
from .common import (
    PathAllocator,
    as_list,
    convert_each,
    display_path,
    is_deno_fragment_uri,
    position_suffix,
)

# prepare 方法 -> 可用的子节点方法
CHILD_METHODS = {
    Method.PREPARE_CALL_HIERARCHY: (Method.INCOMING_CALLS, Method.OUTGOING_CALLS),
    Method.PREPARE_TYPE_HIERARCHY: (Method.SUPERTYPES, Method.SUBTYPES),
}


def _hierarchy_item(
    raw: dict, context: ItemContext, paths: PathAllocator, level: int
) -> Optional[Item]:
    """CallHierarchyItem / TypeHierarchyItem -> Item"""
    if is_deno_fragment_uri(raw["uri"]):
        return None
    return Item(
        label=raw["name"],
        tree_path=paths.allocate(raw["name"]),
        action=ActionRecord(
            kind=ActionKind.LOCATION,
            context=context,
            uri=raw["uri"],
            range=Range.from_dict(raw.get("selectionRange") or raw["range"]),
            encoding=context.client.offset_encoding,
        ),
        payload=raw,
        level=level,
    )


def normalize_hierarchy_items(
    result: Any,
    context: ItemContext,
    request: RequestContext,
    parent: TreePath = (),
    level: int = 0,
) -> List[Item]:
    """prepare 结果或 supertypes/subtypes 结果 -> Item 列表 (未探测)"""
    paths = PathAllocator(parent)
    return convert_each(
        as_list(result, context.method.value),
        lambda raw: _hierarchy_item(raw, context, paths, level),
        "hierarchy item",
    )


def normalize_calls(
    result: Any,
    context: ItemContext,
    request: RequestContext,
    parent: Item,
) -> List[Item]:
    """incomingCalls/outgoingCalls 结果 -> Item 列表

    每个 fromRanges 生成一个条目，相同的范围只保留一个。
    outgoingCalls 的 fromRanges 位于调用方 (即父节点) 的文件中。
    """
    paths = PathAllocator(parent.tree_path)
    items: List[Item] = []

    def convert(call: dict) -> List[Item]:
        incoming = "from" in call
        linked = call["from"] if incoming else call["to"]
        uri = linked["uri"] if incoming else parent.action.uri
        if is_deno_fragment_uri(uri):
            return []
        path = display_path(uri_to_path(uri), request.cwd)

        seen = set()
        converted = []
        for raw_range in call.get("fromRanges") or []:
            call_range = Range.from_dict(raw_range)
            if call_range.key() in seen:
                continue
            seen.add(call_range.key())

            start = call_range.start
            display = f"{linked['name']} ({path}{position_suffix(start.line, start.character)})"
            converted.append(
                Item(
                    label=linked["name"],
                    display=display,
                    tree_path=paths.allocate(display),
                    action=ActionRecord(
                        kind=ActionKind.LOCATION,
                        context=context,
                        uri=uri,
                        range=call_range,
                        encoding=context.client.offset_encoding,
                    ),
                    payload=linked,
                    level=parent.level + 1,
                )
            )
        return converted

    for group in convert_each(as_list(result, context.method.value), convert, "call"):
        items.extend(group)
    return items
