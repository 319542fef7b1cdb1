"""符号结果归一化

- textDocument/documentSymbol: SymbolInformation[] (扁平) 或 DocumentSymbol[] (嵌套)
- workspace/symbol: SymbolInformation[] 或 WorkspaceSymbol[]，后者可能缺少 range，
  需要在使用时通过 workspaceSymbol/resolve 补全
"""

from __future__ import annotations

from typing import Any, List, Optional

from ..items import (
    ActionKind,
    ActionRecord,
    Item,
    ItemContext,
    RequestContext,
    ResolveState,
    TreePath,
)
from ..lsp.protocol import Location, Range
from .common import (
    PathAllocator,
    as_list,
    convert_each,
    is_deno_fragment_uri,
    kind_label,
)


def _start_key(item: Item) -> tuple[int, int]:
    start = item.action.range.start if item.action.range else None
    return (start.line, start.character) if start else (0, 0)


def _sort_siblings(items: List[Item]) -> List[Item]:
    return sorted(items, key=_start_key)


def _symbol_information(raw: dict, context: ItemContext) -> Optional[Item]:
    location = Location.from_dict(raw["location"])
    if is_deno_fragment_uri(location.uri):
        return None
    return Item(
        label=kind_label(raw.get("kind"), raw["name"]),
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


def _document_symbols(
    symbols: List[Any], context: ItemContext, parent: TreePath, level: int
) -> List[Item]:
    """递归构建 DocumentSymbol 子树 (文档符号通常很小，一次全部展开)"""
    paths = PathAllocator(parent)

    def convert(raw: dict) -> Item:
        item = Item(
            label=kind_label(raw.get("kind"), raw["name"]),
            action=ActionRecord(
                kind=ActionKind.LOCATION,
                context=context,
                buffer=context.buffer,
                range=Range.from_dict(raw.get("selectionRange") or raw["range"]),
                encoding=context.client.offset_encoding,
            ),
            payload=raw,
            level=level,
        )
        return item

    items = _sort_siblings(convert_each(symbols, convert, "documentSymbol"))
    for item in items:
        item.tree_path = paths.allocate(item.payload["name"])
        children = item.payload.get("children") or []
        if children:
            item.children = _document_symbols(children, context, item.tree_path, level + 1)
        item.is_tree = bool(item.children)
        if not item.is_tree:
            item.children = None
    return items


def normalize_document_symbols(
    result: Any, context: ItemContext, request: RequestContext
) -> List[Item]:
    """documentSymbol 结果 -> Item 列表 (嵌套结果返回根节点，子节点挂在 children 上)"""
    symbols = as_list(result, context.method.value)
    flat = [s for s in symbols if isinstance(s, dict) and "location" in s]
    nested = [s for s in symbols if isinstance(s, dict) and "location" not in s]

    items = convert_each(flat, lambda raw: _symbol_information(raw, context), "symbol")
    if nested:
        items.extend(_document_symbols(nested, context, (), 0))
    return _sort_siblings(items)


def _workspace_symbol(raw: dict, context: ItemContext) -> Optional[Item]:
    location = raw["location"]
    uri = location["uri"]
    if is_deno_fragment_uri(uri):
        return None

    # WorkspaceSymbol 的 location 可以只有 uri
    has_range = "range" in location
    return Item(
        label=kind_label(raw.get("kind"), raw["name"]),
        action=ActionRecord(
            kind=ActionKind.LOCATION,
            context=context,
            uri=uri,
            range=Location.from_dict(location).range if has_range else None,
            encoding=context.client.offset_encoding,
            state=ResolveState.RESOLVED if has_range else ResolveState.UNRESOLVED,
        ),
        payload=raw,
        is_tree=False,
    )


def normalize_workspace_symbols(
    result: Any, context: ItemContext, request: RequestContext
) -> List[Item]:
    """workspace/symbol 结果 -> Item 列表"""
    return convert_each(
        as_list(result, context.method.value),
        lambda raw: _workspace_symbol(raw, context),
        "workspaceSymbol",
    )
