"""
lspfinder - 多后端 LSP 结果查找器

向编辑器中的 LSP 客户端 (nvim-lsp、coc.nvim、vim-lsp) 或自行启动的语言服务器
并发发送请求，把跳转、符号、调用层级、诊断、代码操作的结果统一为可展开的列表条目。
"""

__version__ = "0.1.0"

from .actions import ActionExecutor, EditError, ResolvedLocation, ResolveError
from .backends import (
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    NoResponseError,
    UnknownBackendError,
    UnsupportedMethodError,
    create_adapter,
)
from .channel import ChannelError, HostChannel
from .config import ConfigError, FinderConfig, ListConfig, RequestConfig
from .diagnostics import DiagnosticAggregator
from .dispatcher import DispatchOutcome, DispatchStatus, PerClientResult, RequestDispatcher
from .editor import EditorService
from .finder import ListOptions, LspFinder
from .items import ActionKind, ActionRecord, Item, ItemContext, RequestContext, ResolveState
from .lsp.protocol import Method, OffsetEncoding
from .registry import ClientRegistry
from .tree import LazyTreeBuilder, TreeArena

__all__ = [
    # 入口
    "LspFinder",
    "ListOptions",
    "FinderConfig",
    "ListConfig",
    "RequestConfig",
    "ConfigError",
    # 宿主
    "EditorService",
    "HostChannel",
    "ChannelError",
    # 后端
    "BackendAdapter",
    "BackendName",
    "ClientDescriptor",
    "ClientRegistry",
    "create_adapter",
    "BackendError",
    "NoResponseError",
    "UnknownBackendError",
    "UnsupportedMethodError",
    # 请求
    "Method",
    "OffsetEncoding",
    "RequestDispatcher",
    "DispatchOutcome",
    "DispatchStatus",
    "PerClientResult",
    # 条目
    "Item",
    "ItemContext",
    "RequestContext",
    "ActionKind",
    "ActionRecord",
    "ResolveState",
    "LazyTreeBuilder",
    "TreeArena",
    "DiagnosticAggregator",
    # 动作
    "ActionExecutor",
    "ResolvedLocation",
    "ResolveError",
    "EditError",
]
