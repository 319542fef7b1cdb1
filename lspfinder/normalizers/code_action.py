"""代码操作归一化

textDocument/codeAction 的结果混合了 Command 和 CodeAction:
Command 的 command 字段是字符串，CodeAction 的 command 字段 (如果有) 是 Command 对象。
"""

from __future__ import annotations

from typing import Any, List

from ..items import ActionKind, ActionRecord, Item, ItemContext, RequestContext, ResolveState
from .common import as_list, convert_each


def is_command(raw: dict) -> bool:
    """是否为 Command (而非 CodeAction)"""
    return isinstance(raw.get("command"), str)


def _code_action_item(raw: dict, context: ItemContext) -> Item:
    title = str(raw["title"])
    if is_command(raw):
        action = ActionRecord(kind=ActionKind.CODE_ACTION, context=context, command=raw)
        display = title
    else:
        edit = raw.get("edit")
        action = ActionRecord(
            kind=ActionKind.CODE_ACTION,
            context=context,
            edit=edit,
            command=raw.get("command"),
            encoding=context.client.offset_encoding,
            # 没有 edit 的 CodeAction 需要 codeAction/resolve 才能知道编辑内容
            state=ResolveState.RESOLVED if edit is not None else ResolveState.UNRESOLVED,
        )
        display = f"[{raw['kind']}] {title}" if raw.get("kind") else title
    return Item(label=title, display=display, action=action, payload=raw, is_tree=False)


def normalize_code_actions(
    result: Any, context: ItemContext, request: RequestContext
) -> List[Item]:
    """codeAction 结果 -> Item 列表"""
    return convert_each(
        as_list(result, context.method.value),
        lambda raw: _code_action_item(raw, context),
        "codeAction",
    )
