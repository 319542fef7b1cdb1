"""归一化公共工具"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from ..items import Item, TreePath
from ..lsp.protocol import SYMBOL_KIND_NAMES

logger = logging.getLogger(__name__)

T = TypeVar("T")

# deno 虚拟文档中带版本片段的 URI (#^ #~ #< #=)
_DENO_FRAGMENT_RE = re.compile(r"^deno:.*%23(%5E|%7E|%3C|%3D)")

# 会被丢弃的格式错误
MALFORMED_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def is_deno_fragment_uri(uri: Optional[str]) -> bool:
    """是否为带版本片段的 deno 虚拟 URI"""
    return bool(uri) and _DENO_FRAGMENT_RE.match(uri) is not None


def as_list(result: Any, what: str) -> List[Any]:
    """单个对象包装为列表，None 视为空列表，其他类型丢弃并记录警告"""
    if result is None:
        return []
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        return [result]
    logger.warning(f"忽略格式不正确的 {what} 结果: {type(result).__name__}")
    return []


def convert_each(
    entries: Iterable[Any], convert: Callable[[Any], Optional[T]], what: str
) -> List[T]:
    """逐个转换，格式错误的条目被丢弃并记录警告"""
    converted = []
    for entry in entries:
        try:
            value = convert(entry)
        except MALFORMED_ERRORS as e:
            logger.warning(f"忽略格式不正确的 {what}: {e!r}")
            continue
        if value is not None:
            converted.append(value)
    return converted


def display_path(path: str, cwd: str) -> str:
    """cwd 下的文件显示为相对路径"""
    if not os.path.isabs(path) or not cwd:
        return path
    cwd = os.path.abspath(cwd)
    if path == cwd or path.startswith(cwd.rstrip(os.sep) + os.sep):
        return os.path.relpath(path, cwd)
    return path


def position_suffix(line: int, character: int) -> str:
    """0-indexed 协议位置 -> ":line:col" (1-indexed)"""
    return f":{line + 1}:{character + 1}"


def kind_label(kind: Any, name: str) -> str:
    """"[Kind]" 前缀 + 名称"""
    kind_name = SYMBOL_KIND_NAMES.get(kind, "Unknown")
    return f"{'[' + kind_name + ']':<15} {name}"


class PathAllocator:
    """为同级节点分配唯一的 tree_path

    同名的兄弟节点依次加上 #2、#3 后缀。
    """

    def __init__(self, parent: TreePath = ()):
        self.parent = tuple(parent)
        self._seen: Dict[str, int] = {}

    def allocate(self, segment: str) -> TreePath:
        count = self._seen.get(segment, 0) + 1
        self._seen[segment] = count
        if count > 1:
            segment = f"{segment}#{count}"
        return self.parent + (segment,)


def set_levels(items: List[Item], level: int) -> None:
    """递归设置层级"""
    for item in items:
        item.level = level
        if item.children:
            set_levels(item.children, level + 1)
