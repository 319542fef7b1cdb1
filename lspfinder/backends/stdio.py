"""stdio 后端

由本包自行启动语言服务器进程 (LSPManager)，不依赖编辑器内的 LSP 客户端。
客户端 ID 为语言 ID，每种语言一个服务器。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from ..editor import EditorService, decode_position
from ..lsp.client import LSPClient, LSPClientError, LSPResponseError
from ..lsp.manager import LSPManager
from ..lsp.protocol import (
    METHOD_NOT_FOUND,
    Diagnostic,
    Method,
    OffsetEncoding,
    Range,
    capability_supports,
    detect_language_id,
    path_to_uri,
)
from .base import (
    DEFAULT_REQUEST_TIMEOUT,
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    NoResponseError,
    UnsupportedMethodError,
)

logger = logging.getLogger(__name__)


class StdioAdapter(BackendAdapter):
    """stdio 语言服务器适配器

    诊断在返回前已转换为字节偏移。
    """

    diagnostic_encoding = OffsetEncoding.UTF8

    def __init__(
        self,
        manager: LSPManager,
        editor: EditorService,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        super().__init__(timeout)
        self.manager = manager
        self.editor = editor

    @property
    def name(self) -> BackendName:
        return BackendName.STDIO

    async def _language(self, buffer: int) -> str:
        filetype = await self.editor.get_filetype(buffer)
        if filetype:
            return filetype
        return detect_language_id(await self.editor.path_for_buffer(buffer))

    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        language = await self._language(buffer)
        client = await self.manager.get_client(language)
        if client is None:
            return []
        return [
            self.descriptor(language, client.position_encoding, client.config.command)
        ]

    def _client(self, descriptor: ClientDescriptor) -> LSPClient:
        client = self.manager.running_client(str(descriptor.id))
        if client is None:
            raise BackendError(f"LSP 服务器未运行: {descriptor.label}")
        return client

    async def _sync_buffer(self, client: LSPClient, language: str, buffer: int) -> str:
        """把缓冲区当前内容同步给服务器，返回文件路径"""
        path = await self.editor.path_for_buffer(buffer)
        text = "\n".join(await self.editor.get_lines(buffer))
        await client.open_file(path, text=text, language_id=language)
        return path

    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        lsp_client = self._client(client)
        try:
            await self._sync_buffer(lsp_client, str(client.id), buffer)
            return await lsp_client.request(method.value, params, timeout=self.timeout)
        except LSPResponseError as e:
            if e.code == METHOD_NOT_FOUND:
                raise UnsupportedMethodError(f"不支持的方法: {method.value}") from e
            raise BackendError(str(e)) from e
        except asyncio.TimeoutError:
            raise NoResponseError(f"服务器 {client.label} 无响应: {method.value}") from None
        except LSPClientError as e:
            raise BackendError(str(e)) from e

    async def supports(self, client: ClientDescriptor, method: Method) -> Optional[bool]:
        lsp_client = self.manager.running_client(str(client.id))
        if lsp_client is None:
            return None
        return capability_supports(lsp_client.capabilities, method)

    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        diagnostics: List[Diagnostic] = []
        if buffers is None:
            for path, diags in self.manager.get_diagnostics().items():
                buffer = await self.editor.buffer_for_path(path)
                # 推送诊断不区分客户端，按文件类型找到对应的服务器编码
                encoding = await self._encoding_for(buffer)
                for diag in diags:
                    diagnostics.append(await self._to_bytes(diag, buffer, path, encoding))
            return diagnostics

        for buffer in buffers:
            language = await self._language(buffer)
            client = self.manager.running_client(language)
            if client is None:
                continue
            path = await self._sync_buffer(client, language, buffer)
            for diag in await self._pull_or_stored(client, path):
                diagnostics.append(
                    await self._to_bytes(diag, buffer, path, client.position_encoding)
                )
        return diagnostics

    async def _encoding_for(self, buffer: int) -> OffsetEncoding:
        client = self.manager.running_client(await self._language(buffer))
        return client.position_encoding if client else OffsetEncoding.UTF16

    async def _pull_or_stored(self, client: LSPClient, path: str) -> List[Diagnostic]:
        """支持 textDocument/diagnostic 时主动拉取，否则读取推送的诊断"""
        if capability_supports(client.capabilities, Method.DIAGNOSTIC):
            try:
                report = await client.request(
                    Method.DIAGNOSTIC.value,
                    {"textDocument": {"uri": path_to_uri(path)}},
                    timeout=self.timeout,
                )
            except (LSPClientError, asyncio.TimeoutError) as e:
                logger.warning(f"拉取诊断失败，改用推送的诊断: {e}")
            else:
                if isinstance(report, dict) and report.get("kind") == "full":
                    result = []
                    for item in report.get("items") or []:
                        try:
                            result.append(Diagnostic.from_dict(item))
                        except (KeyError, TypeError, ValueError) as e:
                            logger.warning(f"忽略格式不正确的诊断: {e}")
                    return result
        return client.get_diagnostics(path).get(path, [])

    async def _to_bytes(
        self, diag: Diagnostic, buffer: int, path: str, encoding: OffsetEncoding
    ) -> Diagnostic:
        """协议位置 -> 字节偏移"""
        start = await decode_position(self.editor, buffer, diag.range.start, encoding)
        end = await decode_position(self.editor, buffer, diag.range.end, encoding)
        diag_dict = diag.to_dict()
        diag_dict["range"] = Range(start=start, end=end).to_dict()
        return Diagnostic.from_dict(diag_dict, buffer=buffer, path=path)
