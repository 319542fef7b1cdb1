"""条目模型

Item 是列表中的一行，ActionRecord 是条目附带的动作数据。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .backends.base import ClientDescriptor
from .lsp.protocol import Method, OffsetEncoding, Range, uri_to_path

TreePath = Tuple[str, ...]


@dataclass(frozen=True)
class RequestContext:
    """发起请求时的编辑器状态

    在列表开始时采集一次，之后显式传递，不再查询编辑器。
    """

    buffer: int
    window: int = 0
    cwd: str = "."


@dataclass(frozen=True)
class ItemContext:
    """条目来源: 哪个客户端对哪个缓冲区发出的哪个请求"""

    client: ClientDescriptor
    buffer: int
    method: Method


class ActionKind(str, Enum):
    """动作类型"""

    LOCATION = "location"
    DIAGNOSTIC = "diagnostic"
    CODE_ACTION = "code_action"


class ResolveState(str, Enum):
    """延迟字段的解析状态"""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(eq=False)
class ActionRecord:
    """条目动作

    range 使用 encoding 编码，lnum/col 为解析后的编辑器位置 (1-indexed，列为字节)。
    未解析的记录只在使用时解析一次，解析结果或错误都会被缓存。
    """

    kind: ActionKind
    context: Optional[ItemContext] = None
    uri: Optional[str] = None
    buffer: Optional[int] = None
    range: Optional[Range] = None
    encoding: OffsetEncoding = OffsetEncoding.UTF16
    edit: Optional[dict] = None
    command: Optional[dict] = None
    state: ResolveState = ResolveState.RESOLVED
    error: Optional[Exception] = None
    lnum: Optional[int] = None
    col: Optional[int] = None
    _lock: Optional[asyncio.Lock] = field(default=None, repr=False)

    @property
    def path(self) -> Optional[str]:
        return uri_to_path(self.uri) if self.uri else None

    @property
    def lock(self) -> asyncio.Lock:
        """解析锁 (首次使用时创建)"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def needs_resolve(self) -> bool:
        return self.state == ResolveState.UNRESOLVED

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"kind": self.kind.value, "state": self.state.value}
        if self.context is not None:
            result["client"] = self.context.client.label
            result["method"] = self.context.method.value
        for key in ("uri", "buffer", "lnum", "col"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.range is not None:
            result["range"] = self.range.to_dict()
            result["encoding"] = self.encoding.value
        if self.edit is not None:
            result["edit"] = self.edit
        if self.command is not None:
            result["command"] = self.command
        return result


@dataclass(eq=False)
class Item:
    """列表条目

    is_tree: None 未探测，False 确定没有子节点，True 可展开。
    children 为 None 表示尚未展开。tree_id 标识条目所属的树。
    """

    label: str
    action: ActionRecord
    payload: Any = None
    display: Optional[str] = None
    tree_path: TreePath = ()
    is_tree: Optional[bool] = None
    is_expanded: bool = False
    children: Optional[List["Item"]] = None
    highlights: List[dict] = field(default_factory=list)
    level: int = 0
    tree_id: Optional[int] = None

    @property
    def is_leaf(self) -> bool:
        return self.is_tree is False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "word": self.label,
            "display": self.display if self.display is not None else self.label,
            "treePath": list(self.tree_path),
            "isTree": self.is_tree,
            "isExpanded": self.is_expanded,
            "level": self.level,
            "action": self.action.to_dict(),
            "data": self.payload,
        }
        if self.children is not None:
            result["children"] = [child.to_dict() for child in self.children]
        if self.highlights:
            result["highlights"] = self.highlights
        return result
