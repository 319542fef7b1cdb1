"""测试替身

不依赖真实编辑器和语言服务器的内存实现，用于单元测试和脚本。

使用方式:
```python
from lspfinder.testing import MemoryEditor, StaticAdapter

editor = MemoryEditor(cwd="/work")
buffer = editor.add_buffer("/work/a.ts", "const x = 1\\n")
adapter = StaticAdapter(
    clients=[1],
    responses={Method.DEFINITION: [{"uri": "file:///work/x.ts", "range": ...}]},
)
```

也可以从 YAML 文件加载预设响应:
```yaml
backend: nvim-lsp
clients:
  - id: 1
    encoding: utf-16
responses:
  textDocument/definition:
    - uri: file:///work/x.ts
      range: {start: {line: 4, character: 10}, end: {line: 4, character: 11}}
```
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import yaml

from ..backends.base import (
    DEFAULT_REQUEST_TIMEOUT,
    BackendAdapter,
    BackendName,
    ClientDescriptor,
    ClientId,
    UnsupportedMethodError,
    parse_backend,
)
from ..channel import HostChannel
from ..editor import EditorService, splice_lines
from ..lsp.protocol import Diagnostic, Method, Position, capability_supports


class MemoryEditor(EditorService):
    """内存中的编辑器

    缓冲区编号从 1 开始，不存在的文件以空缓冲区打开。
    """

    def __init__(self, cwd: str = "/"):
        self.cwd = cwd
        self.cursor = Position(0, 0)
        self.selection: Optional[Tuple[Position, Position, str]] = None
        self.buffers: Dict[int, List[str]] = {}
        self.paths: Dict[int, str] = {}
        self.filetypes: Dict[int, str] = {}
        self.virtual: Dict[int, bool] = {}
        self._next_buffer = 1

    def add_buffer(
        self, path: str, text: Union[str, List[str]] = "", filetype: str = ""
    ) -> int:
        """添加缓冲区，返回编号"""
        buffer = self._next_buffer
        self._next_buffer += 1
        self.buffers[buffer] = list(text) if isinstance(text, list) else text.split("\n")
        self.paths[buffer] = path
        self.filetypes[buffer] = filetype
        return buffer

    def text(self, buffer: int) -> str:
        return "\n".join(self.buffers[buffer])

    async def get_line(self, buffer: int, line: int) -> str:
        lines = self.buffers[buffer]
        if line == -1:
            return lines[-1] if lines else ""
        if 0 <= line < len(lines):
            return lines[line]
        return ""

    async def get_lines(self, buffer: int) -> List[str]:
        return list(self.buffers[buffer])

    async def line_count(self, buffer: int) -> int:
        return max(len(self.buffers[buffer]), 1)

    async def set_text(
        self, buffer: int, start: Position, end: Position, lines: List[str]
    ) -> None:
        self.buffers[buffer] = splice_lines(self.buffers[buffer], start, end, lines)

    async def append_lines(self, buffer: int, lines: List[str]) -> None:
        self.buffers[buffer].extend(lines)

    async def buffer_for_path(self, path: str) -> int:
        buffer = await self.find_buffer(path)
        if buffer is not None:
            return buffer
        file = Path(path)
        text = file.read_text(encoding="utf-8") if file.is_file() else ""
        return self.add_buffer(path, text)

    async def find_buffer(self, path: str) -> Optional[int]:
        for buffer, buffer_path in self.paths.items():
            if buffer_path == path:
                return buffer
        return None

    async def path_for_buffer(self, buffer: int) -> str:
        return self.paths[buffer]

    async def get_cursor(self, window: int) -> Position:
        return self.cursor

    async def get_selection(self, window: int) -> Tuple[Position, Position, str]:
        if self.selection is None:
            return self.cursor, self.cursor, "n"
        return self.selection

    async def get_cwd(self, window: int) -> str:
        return self.cwd

    async def get_filetype(self, buffer: int) -> str:
        return self.filetypes.get(buffer, "")

    async def set_virtual_lines(self, buffer: int, lines: List[str]) -> None:
        self.buffers[buffer] = list(lines)
        self.virtual[buffer] = True

    async def delete_buffer(self, buffer: int) -> None:
        self.buffers.pop(buffer, None)
        self.paths.pop(buffer, None)

    async def rename_path(self, old_path: str, new_path: str) -> None:
        buffer = await self.find_buffer(old_path)
        if buffer is not None:
            self.paths[buffer] = new_path


class FakeChannel(HostChannel):
    """可编程的宿主通道

    handlers 中的值可以是返回值、异常实例，或接收调用参数的 (异步) 函数。
    所有调用记录在 calls 中。
    """

    def __init__(
        self,
        handlers: Optional[Dict[str, Any]] = None,
        host: str = "nvim",
        on_eval: Optional[Callable[..., Any]] = None,
    ):
        self.handlers: Dict[str, Any] = dict(handlers or {})
        self.on_eval = on_eval
        self.calls: List[Tuple[str, tuple]] = []
        self.callbacks: Dict[str, Callable[[Any], None]] = {}
        self._host = host
        self._next_callback = 1

    @property
    def host(self) -> str:
        return self._host

    async def call(self, fn: str, *args: Any) -> Any:
        self.calls.append((fn, args))
        if fn not in self.handlers:
            return None
        return await _respond(self.handlers[fn], *args)

    async def eval(self, expr: str, context: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("eval", (expr, context)))
        if self.on_eval is None:
            return None
        return await _respond(self.on_eval, self, expr, context or {})

    def register(self, callback: Callable[[Any], None]) -> str:
        callback_id = f"cb{self._next_callback}"
        self._next_callback += 1
        self.callbacks[callback_id] = callback
        return callback_id

    def unregister(self, callback_id: str) -> None:
        self.callbacks.pop(callback_id, None)

    def callback_expr(self, callback_id: str) -> str:
        return f"function('LspFinderCallback', ['{callback_id}'])"

    def fire(self, callback_id: str, data: Any) -> None:
        """模拟宿主调用已注册的回调"""
        self.callbacks[callback_id](data)

    def called(self, fn: str) -> List[tuple]:
        """某个函数的所有调用参数"""
        return [args for name, args in self.calls if name == fn]


async def _respond(handler: Any, *args: Any) -> Any:
    if isinstance(handler, BaseException):
        raise handler
    if callable(handler):
        result = handler(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
    return handler


ResponseKey = Union[Method, Tuple[ClientId, Method]]


class StaticAdapter(BackendAdapter):
    """返回预设响应的后端适配器

    Args:
        name: 后端名称
        clients: 客户端 ID 或 ClientDescriptor
        responses: method 或 (client_id, method) -> 结果 / 异常 / 函数(params)
        diagnostics: 诊断存储
        delays: client_id -> 响应延迟 (秒)
        capabilities: client_id -> ServerCapabilities，用于 supports()
        timeout: 单个请求超时
    """

    def __init__(
        self,
        name: Union[str, BackendName] = BackendName.NVIM_LSP,
        clients: Iterable[Union[ClientId, ClientDescriptor]] = (),
        responses: Optional[Dict[ResponseKey, Any]] = None,
        diagnostics: Optional[List[Diagnostic]] = None,
        delays: Optional[Dict[ClientId, float]] = None,
        capabilities: Optional[Dict[ClientId, dict]] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        super().__init__(timeout)
        self._name = parse_backend(name)
        self.clients = [
            client if isinstance(client, ClientDescriptor) else self.descriptor(client)
            for client in clients
        ]
        self.responses: Dict[ResponseKey, Any] = dict(responses or {})
        self.diagnostics = list(diagnostics or [])
        self.delays = dict(delays or {})
        self.capabilities = dict(capabilities or {})
        self.requests: List[Tuple[ClientId, Method, Any]] = []
        self.attached: List[Tuple[ClientId, int]] = []

    @property
    def name(self) -> BackendName:
        return self._name

    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        return list(self.clients)

    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        self.requests.append((client.id, method, params))
        delay = self.delays.get(client.id)
        if delay:
            await asyncio.sleep(delay)

        if (client.id, method) in self.responses:
            response = self.responses[(client.id, method)]
        elif method in self.responses:
            response = self.responses[method]
        else:
            raise UnsupportedMethodError(f"不支持的方法: {method.value}")
        return await _respond(response, params)

    async def supports(self, client: ClientDescriptor, method: Method) -> Optional[bool]:
        return capability_supports(self.capabilities.get(client.id), method)

    async def attach_buffer(self, client: ClientDescriptor, buffer: int) -> None:
        self.attached.append((client.id, buffer))

    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        return [
            dataclasses.replace(diag)
            for diag in self.diagnostics
            if buffers is None or diag.buffer in buffers
        ]

    def requested(self, method: Method) -> List[Tuple[ClientId, Any]]:
        """某个方法的所有请求 (client_id, params)"""
        return [(client_id, params) for client_id, m, params in self.requests if m == method]

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs: Any) -> "StaticAdapter":
        """从字典创建 (格式见模块文档)"""
        adapter = cls(name=data.get("backend", BackendName.NVIM_LSP), **kwargs)
        adapter.clients = [
            adapter.descriptor(entry["id"], entry.get("encoding"), entry.get("name"))
            for entry in data.get("clients") or []
        ]
        for method, result in (data.get("responses") or {}).items():
            adapter.responses[Method(method)] = result
        adapter.diagnostics = [
            Diagnostic.from_dict(entry, buffer=entry.get("buffer"), path=entry.get("path"))
            for entry in data.get("diagnostics") or []
        ]
        return adapter

    @classmethod
    def load(cls, path: Union[str, Path], **kwargs: Any) -> "StaticAdapter":
        """从 YAML 文件加载"""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data, **kwargs)


__all__ = [
    "FakeChannel",
    "MemoryEditor",
    "StaticAdapter",
]
