"""结果归一化

把各 LSP 方法的原始结果转换为 Item，格式错误的条目在这里被丢弃。
"""

from typing import Any, Callable, Dict, List

from ..items import Item, ItemContext, RequestContext
from ..lsp.protocol import LOCATION_METHODS, Method
from .code_action import is_command, normalize_code_actions
from .common import is_deno_fragment_uri
from .hierarchy import CHILD_METHODS, normalize_calls, normalize_hierarchy_items
from .location import normalize_locations
from .symbol import normalize_document_symbols, normalize_workspace_symbols

Normalizer = Callable[[Any, ItemContext, RequestContext], List[Item]]

NORMALIZERS: Dict[Method, Normalizer] = {
    **{method: normalize_locations for method in LOCATION_METHODS},
    Method.DOCUMENT_SYMBOL: normalize_document_symbols,
    Method.WORKSPACE_SYMBOL: normalize_workspace_symbols,
    Method.PREPARE_CALL_HIERARCHY: normalize_hierarchy_items,
    Method.PREPARE_TYPE_HIERARCHY: normalize_hierarchy_items,
    Method.CODE_ACTION: normalize_code_actions,
}


def normalize(result: Any, context: ItemContext, request: RequestContext) -> List[Item]:
    """按请求方法归一化结果

    Raises:
        ValueError: 该方法不能用于列表
    """
    normalizer = NORMALIZERS.get(context.method)
    if normalizer is None:
        raise ValueError(f"无法列出 {context.method.value} 的结果")
    return normalizer(result, context, request)


__all__ = [
    "CHILD_METHODS",
    "NORMALIZERS",
    "is_command",
    "is_deno_fragment_uri",
    "normalize",
    "normalize_calls",
    "normalize_code_actions",
    "normalize_document_symbols",
    "normalize_hierarchy_items",
    "normalize_locations",
    "normalize_workspace_symbols",
]
