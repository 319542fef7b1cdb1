"""vim-lsp 后端

vim-lsp 的请求是异步的，响应通过 on_notification 回调返回。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from ..channel import HostChannel
from ..editor import EditorService, buffer_uri
from ..lsp.protocol import (
    METHOD_NOT_FOUND,
    Diagnostic,
    Method,
    capability_supports,
    uri_to_path,
)
from .base import (
    DEFAULT_REQUEST_TIMEOUT,
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    NoResponseError,
    UnsupportedMethodError,
    ensure_dict,
    ensure_list,
)

logger = logging.getLogger(__name__)

SEND_REQUEST_EXPR = (
    "lsp#send_request(l:server, extend(l:request, {'on_notification': %s}))"
)

DIAGNOSTICS_FOR_URI = (
    "lsp#internal#diagnostics#state#_get_all_diagnostics_grouped_by_server_for_uri"
)
DIAGNOSTICS_ALL = (
    "lsp#internal#diagnostics#state#_get_all_diagnostics_grouped_by_uri_and_server"
)


class VimLspAdapter(BackendAdapter):
    """vim-lsp 适配器"""

    def __init__(
        self,
        channel: HostChannel,
        editor: EditorService,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        super().__init__(timeout)
        self.channel = channel
        self.editor = editor

    @property
    def name(self) -> BackendName:
        return BackendName.VIM_LSP

    async def _capabilities(self, server: str) -> Optional[dict]:
        capabilities = await self.channel.call("lsp#get_server_capabilities", server)
        return capabilities if isinstance(capabilities, dict) else None

    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        servers = ensure_list(
            await self.channel.call("lsp#get_allowed_servers", buffer), "allowed servers"
        )
        clients = []
        for server in servers:
            capabilities = await self._capabilities(server) or {}
            clients.append(
                self.descriptor(server, capabilities.get("positionEncoding"), server)
            )
        return clients

    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def on_notification(data: Any) -> None:
            if not future.done():
                future.set_result(data)

        callback_id = self.channel.register(on_notification)
        try:
            await self.channel.eval(
                SEND_REQUEST_EXPR % self.channel.callback_expr(callback_id),
                {"server": client.id, "request": {"method": method.value, "params": params}},
            )
            try:
                data = await asyncio.wait_for(future, timeout=self.timeout)
            except asyncio.TimeoutError:
                raise NoResponseError(f"服务器 {client.id} 无响应") from None
        finally:
            self.channel.unregister(callback_id)

        notification = ensure_dict(data, "vim-lsp 通知")
        response = ensure_dict(notification.get("response"), "vim-lsp 响应")
        error = response.get("error")
        if error:
            if isinstance(error, dict) and error.get("code") == METHOD_NOT_FOUND:
                raise UnsupportedMethodError(f"不支持的方法: {method.value}")
            message = error.get("message") if isinstance(error, dict) else error
            raise BackendError(f"LSP 错误: {message}")
        return response.get("result")

    async def supports(self, client: ClientDescriptor, method: Method) -> Optional[bool]:
        return capability_supports(await self._capabilities(str(client.id)), method)

    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        if buffers is not None:
            for buffer in buffers:
                uri = await buffer_uri(self.editor, buffer)
                by_server = await self.channel.call(DIAGNOSTICS_FOR_URI, uri)
                self._collect(diagnostics, by_server, buffer, uri_to_path(uri))
        else:
            by_uri = await self.channel.call(DIAGNOSTICS_ALL)
            for uri, by_server in (by_uri if isinstance(by_uri, dict) else {}).items():
                path = uri_to_path(uri)
                buffer = await self.editor.find_buffer(path)
                self._collect(diagnostics, by_server, buffer, path)
        return diagnostics

    def _collect(
        self, diagnostics: List[Diagnostic], by_server: Any, buffer: Optional[int], path: str
    ) -> None:
        """展开 {服务器名: publishDiagnostics 通知} 映射"""
        if not isinstance(by_server, dict):
            return
        for server, notification in by_server.items():
            try:
                items = notification["params"]["diagnostics"]
            except (KeyError, TypeError):
                items = None
            if not isinstance(items, list):
                logger.warning(f"忽略格式不正确的诊断通知: {server}")
                continue
            for item in items:
                try:
                    diagnostics.append(Diagnostic.from_dict(item, buffer=buffer, path=path))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"忽略格式不正确的诊断: {e}")
