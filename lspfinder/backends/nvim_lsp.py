"""Neovim 内置 LSP 客户端后端

通过 luaeval 调用 vim.lsp 的 API。
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from ..channel import ChannelError, HostChannel
from ..lsp.protocol import (
    METHOD_NOT_FOUND,
    Diagnostic,
    DiagnosticSeverity,
    Method,
    OffsetEncoding,
    Position,
    Range,
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

LIST_CLIENTS_LUA = (
    "vim.tbl_map(function(c) "
    "return {id = c.id, name = c.name, offset_encoding = c.offset_encoding} end, "
    "(vim.lsp.get_clients or vim.lsp.get_active_clients)({bufnr = _A}))"
)

REQUEST_LUA = (
    "(function(id, method, params, bufnr, timeout) "
    "local client = vim.lsp.get_client_by_id(id) "
    "if client == nil then return {missing = true} end "
    "local resp, err = client.request_sync(method, params, timeout, bufnr) "
    "if resp == nil then return {timeout = true, message = err} end "
    "return {result = resp.result, err = resp.err} "
    "end)(_A[1], _A[2], _A[3], _A[4], _A[5])"
)

SUPPORTS_LUA = (
    "(function(id, method) "
    "local client = vim.lsp.get_client_by_id(id) "
    "return client ~= nil and client.supports_method(method) "
    "end)(_A[1], _A[2])"
)

ATTACH_LUA = "vim.lsp.buf_attach_client(_A[1], _A[2])"


class NvimLspAdapter(BackendAdapter):
    """Neovim 内置 LSP 适配器"""

    diagnostic_encoding = OffsetEncoding.UTF8

    def __init__(self, channel: HostChannel, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        super().__init__(timeout)
        self.channel = channel

    @property
    def name(self) -> BackendName:
        return BackendName.NVIM_LSP

    def _ensure_nvim(self) -> None:
        if self.channel.host != "nvim":
            raise BackendError("nvim-lsp 在 vim 中不可用")

    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        self._ensure_nvim()
        clients = ensure_list(
            await self.channel.call("luaeval", LIST_CLIENTS_LUA, buffer), "客户端列表"
        )
        return [
            self.descriptor(c["id"], c.get("offset_encoding"), c.get("name"))
            for c in clients
            if isinstance(c, dict) and "id" in c
        ]

    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        self._ensure_nvim()
        timeout_ms = int(self.timeout * 1000)
        try:
            response = await self.channel.call(
                "luaeval",
                REQUEST_LUA,
                [client.id, method.value, params, buffer, timeout_ms],
            )
        except ChannelError as e:
            raise BackendError(f"nvim-lsp 请求失败: {e}") from e

        response = ensure_dict(response, "nvim-lsp 响应")
        if response.get("missing"):
            raise BackendError(f"客户端不存在: {client.id}")
        if response.get("timeout"):
            raise NoResponseError(
                f"服务器 {client.label} 无响应: {response.get('message') or method.value}"
            )
        err = response.get("err")
        if err:
            if isinstance(err, dict) and err.get("code") == METHOD_NOT_FOUND:
                raise UnsupportedMethodError(f"不支持的方法: {method.value}")
            message = err.get("message") if isinstance(err, dict) else err
            raise BackendError(f"LSP 错误: {message}")
        return response.get("result")

    async def supports(self, client: ClientDescriptor, method: Method) -> Optional[bool]:
        if method == Method.VIRTUAL_TEXT_DOCUMENT:
            return None
        try:
            return bool(await self.channel.call("luaeval", SUPPORTS_LUA, [client.id, method.value]))
        except ChannelError as e:
            logger.debug(f"查询能力失败: {e}")
            return None

    async def attach_buffer(self, client: ClientDescriptor, buffer: int) -> None:
        await self.channel.call("luaeval", ATTACH_LUA, [buffer, client.id])

    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        self._ensure_nvim()
        if buffers is not None and len(buffers) == 1:
            raw = await self.channel.call("luaeval", "vim.diagnostic.get(_A)", buffers[0])
        else:
            raw = await self.channel.call("luaeval", "vim.diagnostic.get()")

        diagnostics = []
        for item in ensure_list(raw, "vim.diagnostic"):
            if not isinstance(item, dict):
                continue
            if buffers is not None and item.get("bufnr") not in buffers:
                continue
            try:
                diagnostics.append(_from_nvim_diagnostic(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"忽略格式不正确的诊断: {e}")
        return diagnostics


def _from_nvim_diagnostic(item: dict) -> Diagnostic:
    """vim.diagnostic 条目 -> Diagnostic (位置为字节偏移)"""
    severity = item.get("severity")
    lsp_data = (item.get("user_data") or {}).get("lsp") or {}
    return Diagnostic(
        range=Range(
            start=Position(line=item["lnum"], character=item["col"]),
            end=Position(
                line=item.get("end_lnum", item["lnum"]),
                character=item.get("end_col", item["col"]),
            ),
        ),
        message=str(item.get("message", "")),
        severity=DiagnosticSeverity(severity) if severity else None,
        code=item.get("code"),
        source=item.get("source"),
        codeDescription=lsp_data.get("codeDescription"),
        tags=lsp_data.get("tags"),
        relatedInformation=lsp_data.get("relatedInformation"),
        data=lsp_data.get("data"),
        buffer=item.get("bufnr"),
    )
