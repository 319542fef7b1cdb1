"""后端适配器

- nvim-lsp: Neovim 内置 LSP 客户端
- coc.nvim: coc.nvim 扩展
- vim-lsp: vim-lsp 插件
- stdio: 自行启动的语言服务器进程
"""

from typing import Optional

from ..channel import HostChannel
from ..editor import EditorService
from ..lsp.manager import LSPManager
from .base import (
    DEFAULT_REQUEST_TIMEOUT,
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    MalformedResponseError,
    NoResponseError,
    UnknownBackendError,
    UnsupportedMethodError,
    parse_backend,
)
from .coc import CocAdapter
from .nvim_lsp import NvimLspAdapter
from .stdio import StdioAdapter
from .vim_lsp import VimLspAdapter


def create_adapter(
    backend: BackendName,
    editor: EditorService,
    channel: Optional[HostChannel] = None,
    manager: Optional[LSPManager] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> BackendAdapter:
    """创建后端适配器

    Raises:
        BackendError: 缺少后端所需的通道或管理器
    """
    backend = parse_backend(backend)
    if backend == BackendName.STDIO:
        if manager is None:
            raise BackendError("stdio 后端需要 LSPManager")
        return StdioAdapter(manager, editor, timeout)

    if channel is None:
        raise BackendError(f"{backend.value} 后端需要宿主通道")
    if backend == BackendName.NVIM_LSP:
        return NvimLspAdapter(channel, timeout)
    if backend == BackendName.COC:
        return CocAdapter(channel, editor, timeout)
    if backend == BackendName.VIM_LSP:
        return VimLspAdapter(channel, editor, timeout)
    raise AssertionError(f"未处理的后端: {backend.value}")


__all__ = [
    "BackendAdapter",
    "BackendError",
    "BackendName",
    "ClientDescriptor",
    "CocAdapter",
    "DEFAULT_REQUEST_TIMEOUT",
    "MalformedResponseError",
    "NoResponseError",
    "NvimLspAdapter",
    "StdioAdapter",
    "UnknownBackendError",
    "UnsupportedMethodError",
    "VimLspAdapter",
    "create_adapter",
    "parse_backend",
]
