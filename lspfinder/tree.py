"""延迟树构建

调用层级、类型层级等递归结构每次只构建一层。节点状态:

    未探测 (is_tree=None) -> 叶子 (False) | 可展开 (True) -> 已展开 (is_expanded=True)

节点保存在以 tree_path 为键的 TreeArena 中，父节点通过路径引用，
展开某个节点只是一次字典查找，不会遍历或修改其他节点。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from .backends.base import BackendError
from .dispatcher import RequestDispatcher
from .items import Item, ItemContext, RequestContext, TreePath
from .lsp.protocol import Method
from .normalizers import normalize_calls, normalize_hierarchy_items

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    """树节点

    pending 保存探测时取得、尚未展开的子节点。
    """

    item: Item
    parent: Optional[TreePath] = None
    pending: Optional[List[Item]] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class TreeArena:
    """按 tree_path 索引的节点表"""

    def __init__(self, tree_id: Optional[int] = None):
        self.tree_id = tree_id
        self._nodes: Dict[TreePath, TreeNode] = {}
        self._roots: List[TreePath] = []

    def __contains__(self, path: TreePath) -> bool:
        return tuple(path) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[TreeNode]:
        return iter(self._nodes.values())

    def get(self, path: TreePath) -> Optional[TreeNode]:
        return self._nodes.get(tuple(path))

    @property
    def roots(self) -> List[Item]:
        return [self._nodes[path].item for path in self._roots]

    def add_root(self, item: Item) -> Item:
        """添加根节点，与已有根节点同名时追加 #n 后缀"""
        if item.tree_path in self._nodes or not item.tree_path:
            base = item.tree_path[0] if item.tree_path else item.label
            count = 2 if item.tree_path else 1
            candidate: TreePath = (base,) if count == 1 else (f"{base}#{count}",)
            while candidate in self._nodes:
                count += 1
                candidate = (f"{base}#{count}",)
            _rebase(item, candidate)
        self._register(item, None)
        self._roots.append(item.tree_path)
        return item

    def add_children(self, parent: TreePath, children: List[Item]) -> None:
        for child in children:
            self._register(child, tuple(parent))

    def _register(self, item: Item, parent: Optional[TreePath]) -> None:
        item.tree_id = self.tree_id
        self._nodes[item.tree_path] = TreeNode(item=item, parent=parent)
        for child in item.children or []:
            self._register(child, item.tree_path)

    def parent_of(self, path: TreePath) -> Optional[Item]:
        node = self.get(path)
        if node is None or node.parent is None:
            return None
        return self._nodes[node.parent].item


def _rebase(item: Item, path: TreePath) -> None:
    """修改节点路径，并同步修改已加载的子孙节点"""
    old = item.tree_path
    item.tree_path = path
    for child in item.children or []:
        _rebase(child, path + child.tree_path[len(old):])


class LazyTreeBuilder:
    """延迟树构建器

    Args:
        dispatcher: 请求分发器
        request: 发起列表时的上下文
        child_method: 获取子节点的方法 (incomingCalls/outgoingCalls/supertypes/subtypes)，
            None 表示子节点已全部加载 (documentSymbol)
        auto_expand_single: 只有一个根节点时自动展开一层
        tree_id: 写入各节点的树标识
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        request: RequestContext,
        child_method: Optional[Method] = None,
        auto_expand_single: bool = True,
        tree_id: Optional[int] = None,
    ):
        self.dispatcher = dispatcher
        self.request = request
        self.child_method = Method(child_method) if child_method else None
        self.auto_expand_single = auto_expand_single
        self.arena = TreeArena(tree_id)

    async def build_roots(self, items: List[Item]) -> List[Item]:
        """添加并探测根节点"""
        roots = [self.arena.add_root(item) for item in items]
        await asyncio.gather(*(self.probe(item) for item in roots))
        return roots

    async def auto_expand(self, roots: List[Item]) -> List[Item]:
        """只有一个可展开的根节点时展开一层

        Returns:
            第一层子节点，不需要展开时为空列表
        """
        if self.auto_expand_single and len(roots) == 1 and roots[0].is_tree:
            return await self.expand(roots[0].tree_path)
        return []

    async def probe(self, item: Item) -> Item:
        """探测节点是否有子节点

        子节点被暂存，直到节点被展开。请求失败时节点视为叶子。
        """
        if item.is_tree is not None:
            return item
        if item.children is not None:
            item.is_tree = bool(item.children)
            return item
        if self.child_method is None:
            item.is_tree = False
            return item

        node = self.arena.get(item.tree_path)
        try:
            children = await self._fetch_children(item)
        except BackendError as e:
            logger.warning(f"探测 {'/'.join(item.tree_path)} 失败: {e}")
            children = []

        item.is_tree = bool(children)
        if node is not None:
            node.pending = children
        return item

    async def expand(self, path: TreePath) -> List[Item]:
        """展开节点，返回 (已探测的) 子节点

        只修改该节点的 children/is_expanded，兄弟和祖先节点不变。

        Raises:
            KeyError: 节点不存在
        """
        node = self.arena.get(path)
        if node is None:
            raise KeyError(f"节点不存在: {'/'.join(path)}")

        async with node.lock:
            item = node.item
            if item.is_expanded:
                return list(item.children or [])

            await self.probe(item)
            if not item.is_tree:
                return []

            children = item.children if item.children is not None else (node.pending or [])
            for child in children:
                child.level = item.level + 1
            self.arena.add_children(item.tree_path, children)
            await asyncio.gather(*(self.probe(child) for child in children))

            item.children = children
            item.is_expanded = True
            node.pending = None
            return list(children)

    async def _fetch_children(self, item: Item) -> List[Item]:
        if item.action.context is None:
            return []
        client = item.action.context.client
        result = await self.dispatcher.request_one(
            client, self.child_method, {"item": item.payload}, self.request.buffer
        )
        context = ItemContext(client=client, buffer=self.request.buffer, method=self.child_method)
        if self.child_method in (Method.INCOMING_CALLS, Method.OUTGOING_CALLS):
            return normalize_calls(result, context, self.request, parent=item)
        return normalize_hierarchy_items(
            result, context, self.request, parent=item.tree_path, level=item.level + 1
        )
