"""LspFinder: 对外接口

列表以批次流的形式返回 (每个响应的客户端一批)，
可展开的条目通过 expand() 按需加载下一层。
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Sequence, Union

from .actions import ActionExecutor, ResolvedLocation
from .backends import create_adapter
from .backends.base import BackendError, BackendName, ClientDescriptor
from .channel import HostChannel
from .config import FinderConfig
from .diagnostics import DiagnosticAggregator
from .dispatcher import DispatchOutcome, PerClientResult, RequestDispatcher
from .editor import EditorService
from .items import ActionKind, ActionRecord, Item, ItemContext, RequestContext
from .lsp.manager import LSPManager
from .lsp.protocol import LOCATION_METHODS, Method, OffsetEncoding
from .normalizers import normalize
from .params import (
    code_action_params,
    position_params,
    reference_params,
    text_document_identifier,
    workspace_symbol_params,
)
from .registry import ClientRegistry
from .tree import LazyTreeBuilder

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[str], None]

# 列出层级时使用的 prepare 方法
HIERARCHY_PREPARE = {
    Method.INCOMING_CALLS: Method.PREPARE_CALL_HIERARCHY,
    Method.OUTGOING_CALLS: Method.PREPARE_CALL_HIERARCHY,
    Method.SUPERTYPES: Method.PREPARE_TYPE_HIERARCHY,
    Method.SUBTYPES: Method.PREPARE_TYPE_HIERARCHY,
}

LISTABLE_METHODS = frozenset(
    LOCATION_METHODS
    | set(HIERARCHY_PREPARE)
    | {Method.DOCUMENT_SYMBOL, Method.WORKSPACE_SYMBOL, Method.CODE_ACTION, Method.DIAGNOSTIC}
)


@dataclass
class ListOptions:
    """列表选项

    Attributes:
        include_declaration: references 是否包含声明
        query: workspace/symbol 的查询字符串
        auto_expand_single: 层级只有一个根节点时自动展开
        buffers: 诊断的缓冲区，None 为全部，0 为当前缓冲区
    """

    include_declaration: bool = True
    query: str = ""
    auto_expand_single: bool = True
    buffers: Union[None, int, Sequence[int]] = 0


def _log_notify(message: str) -> None:
    logger.info(message)


class LspFinder:
    """LSP 结果查找器"""

    def __init__(
        self,
        editor: EditorService,
        registry: ClientRegistry,
        config: Optional[FinderConfig] = None,
        notify: Optional[NotifyCallback] = None,
    ):
        self.editor = editor
        self.registry = registry
        self.config = config or FinderConfig()
        self.notify = notify or _log_notify
        self.dispatcher = RequestDispatcher(registry, self.config.request.dispatch_timeout)
        self.diagnostics = DiagnosticAggregator(registry, editor)
        self.executor = ActionExecutor(self.dispatcher, editor)
        self._trees: "OrderedDict[int, LazyTreeBuilder]" = OrderedDict()
        self._tree_ids = itertools.count(1)

    @classmethod
    def create(
        cls,
        editor: EditorService,
        channel: Optional[HostChannel] = None,
        config: Optional[FinderConfig] = None,
        notify: Optional[NotifyCallback] = None,
    ) -> "LspFinder":
        """创建查找器并注册可用的后端

        有宿主通道时注册编辑器内的后端，stdio 后端总是可用。
        """
        config = config or FinderConfig.load()
        registry = ClientRegistry(config.default_backend)
        manager = LSPManager(config.workspace_dir, config.servers)
        for backend in BackendName:
            if backend != BackendName.STDIO and channel is None:
                continue
            registry.register(
                create_adapter(
                    backend,
                    editor,
                    channel=channel,
                    manager=manager,
                    timeout=config.request.timeout,
                )
            )
        return cls(editor, registry, config, notify)

    async def context(self, buffer: int, window: int = 0) -> RequestContext:
        """采集请求上下文"""
        return RequestContext(buffer=buffer, window=window, cwd=await self.editor.get_cwd(window))

    # ------------------------------------------------------------------
    # 列表
    # ------------------------------------------------------------------

    async def list_items(
        self,
        backend: Union[str, BackendName, None],
        context: RequestContext,
        method: Method,
        options: Optional[ListOptions] = None,
    ) -> AsyncIterator[List[Item]]:
        """列出条目

        每个响应的客户端产生一批条目。没有服务器或方法不受支持时不产生条目，
        只通过 notify 提示。

        Raises:
            ValueError: 该方法不能用于列表
            UnknownBackendError: 未知的后端
        """
        backend = self.registry.resolve_backend(backend)
        method = Method(method)
        options = options or ListOptions()
        if method not in LISTABLE_METHODS:
            raise ValueError(f"无法列出 {method.value} 的结果")

        if method == Method.DIAGNOSTIC:
            yield await self._list_diagnostics(backend, context, options)
            return

        request_method = HIERARCHY_PREPARE.get(method, method)
        builder = self._tree_builder(method, context, options)
        queue: asyncio.Queue = asyncio.Queue()
        workers: List[asyncio.Future] = []

        async def process(per_client: PerClientResult) -> None:
            item_context = ItemContext(
                client=per_client.client, buffer=context.buffer, method=request_method
            )
            items = normalize(per_client.result, item_context, context)
            if builder is None:
                queue.put_nowait(items)
                return
            roots = await builder.build_roots(items)
            queue.put_nowait(roots)
            queue.put_nowait(await builder.auto_expand(roots))

        def on_result(per_client: PerClientResult) -> None:
            # 归一化和探测不计入分发期限，探测请求各自受单次请求超时限制
            workers.append(asyncio.ensure_future(process(per_client)))

        task = asyncio.ensure_future(
            self.dispatcher.dispatch(
                backend,
                context.buffer,
                request_method,
                self._params_factory(backend, request_method, context, options),
                on_result,
            )
        )
        getter: Optional[asyncio.Future] = None
        try:
            while True:
                running = {t for t in [task, *workers] if not t.done()}
                if not running and queue.empty():
                    break
                getter = asyncio.ensure_future(queue.get())
                await asyncio.wait({getter} | running, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    continue
                batch = getter.result()
                if batch:
                    yield batch

            for worker in workers:
                worker.result()
            self._report(task.result())
        finally:
            # 调用方提前停止迭代时取消未完成的请求和探测
            if getter is not None and not getter.done():
                getter.cancel()
            for pending in [task, *workers]:
                if not pending.done():
                    pending.cancel()

    async def _list_diagnostics(
        self, backend: BackendName, context: RequestContext, options: ListOptions
    ) -> List[Item]:
        diagnostics = await self.diagnostics.gather(backend, options.buffers, context.buffer)
        encoding = self.registry.adapter(backend).diagnostic_encoding
        return self.diagnostics.to_items(diagnostics, context, encoding)

    def _tree_builder(
        self, method: Method, context: RequestContext, options: ListOptions
    ) -> Optional[LazyTreeBuilder]:
        if method in HIERARCHY_PREPARE:
            child_method: Optional[Method] = method
            auto_expand = options.auto_expand_single and self.config.listing.auto_expand_single
        elif method == Method.DOCUMENT_SYMBOL:
            child_method = None
            auto_expand = False
        else:
            return None

        tree_id = next(self._tree_ids)
        builder = LazyTreeBuilder(
            self.dispatcher,
            context,
            child_method=child_method,
            auto_expand_single=auto_expand,
            tree_id=tree_id,
        )
        self._trees[tree_id] = builder
        while len(self._trees) > self.config.listing.max_trees:
            self._trees.popitem(last=False)
        return builder

    def _params_factory(
        self,
        backend: BackendName,
        method: Method,
        context: RequestContext,
        options: ListOptions,
    ):
        async def build(client: ClientDescriptor) -> dict:
            encoding = client.offset_encoding
            if method == Method.REFERENCES:
                include = options.include_declaration and self.config.listing.include_declaration
                return await reference_params(self.editor, context, encoding, include)
            if method in LOCATION_METHODS or method in HIERARCHY_PREPARE.values():
                return await position_params(self.editor, context, encoding)
            if method == Method.DOCUMENT_SYMBOL:
                return {"textDocument": await text_document_identifier(self.editor, context.buffer)}
            if method == Method.WORKSPACE_SYMBOL:
                return workspace_symbol_params(options.query)
            if method == Method.CODE_ACTION:
                diagnostics = await self._code_action_diagnostics(backend, context.buffer, encoding)
                return await code_action_params(self.editor, context, encoding, diagnostics)
            raise ValueError(f"无法构建 {method.value} 的参数")

        return build

    async def _code_action_diagnostics(
        self, backend: BackendName, buffer: int, encoding: OffsetEncoding
    ) -> List[dict]:
        try:
            return await self.diagnostics.lsp_diagnostics(backend, buffer, encoding)
        except BackendError as e:
            logger.warning(f"读取诊断失败: {e}")
            return []

    def _report(self, outcome: DispatchOutcome) -> None:
        if outcome.message:
            self.notify(outcome.message)

    # ------------------------------------------------------------------
    # 展开与动作
    # ------------------------------------------------------------------

    async def expand(self, item: Item) -> List[Item]:
        """展开条目，返回子节点

        Raises:
            KeyError: 条目不属于仍保留的树
        """
        builder = self._trees.get(item.tree_id) if item.tree_id is not None else None
        if builder is None:
            raise KeyError(f"条目不可展开: {item.label}")
        return await builder.expand(item.tree_path)

    async def resolve_action(self, item: Item) -> Union[ResolvedLocation, ActionRecord]:
        """补全条目的动作: 位置条目返回编辑器位置，代码操作返回 resolve 后的记录

        Raises:
            ResolveError: 补全失败
        """
        if item.action.kind == ActionKind.CODE_ACTION:
            return await self.executor.resolve_code_action(item)
        return await self.executor.resolve_location(item)

    async def apply_edit(
        self, edit: dict, encoding: Union[str, OffsetEncoding] = OffsetEncoding.UTF16
    ) -> None:
        """应用 WorkspaceEdit"""
        await self.executor.apply_edit(edit, OffsetEncoding.parse(encoding))

    async def apply_code_action(self, item: Item) -> None:
        await self.executor.apply_code_action(item)

    async def preview(self, item: Item, cwd: Optional[str] = None) -> List[str]:
        """代码操作预览 (unified diff，路径相对于 cwd)"""
        return await self.executor.preview(item, cwd)
