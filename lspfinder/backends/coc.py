"""coc.nvim 后端

coc.nvim 在编辑器内部聚合多个语言服务器，位置编码固定为 utf-16。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..channel import ChannelError, HostChannel
from ..editor import EditorService
from ..lsp.protocol import Diagnostic, DiagnosticSeverity, Method, Range
from .base import (
    DEFAULT_REQUEST_TIMEOUT,
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    NoResponseError,
    UnsupportedMethodError,
    ensure_list,
)

logger = logging.getLogger(__name__)

COC_SEVERITY = {
    "Error": DiagnosticSeverity.Error,
    "Warning": DiagnosticSeverity.Warning,
    "Information": DiagnosticSeverity.Information,
    "Info": DiagnosticSeverity.Information,
    "Hint": DiagnosticSeverity.Hint,
}


def classify_coc_error(error: Exception, method: Method) -> BackendError:
    """CocRequest 的错误只有文本，按内容区分超时与不支持"""
    text = str(error).lower()
    if "timeout" in text or "timed out" in text:
        return NoResponseError(f"coc.nvim 请求超时: {method.value}")
    if "not supported" in text or "unsupported" in text or "-32601" in text or "not found" in text:
        return UnsupportedMethodError(f"不支持的方法: {method.value}")
    return BackendError(f"coc.nvim 请求失败: {error}")


class CocAdapter(BackendAdapter):
    """coc.nvim 适配器"""

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
        return BackendName.COC

    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        filetype = await self.editor.get_filetype(buffer)
        services = ensure_list(await self.channel.call("CocAction", "services"), "services")
        return [
            self.descriptor(service["id"], "utf-16", service["id"])
            for service in services
            if isinstance(service, dict)
            and service.get("state") == "running"
            and filetype in (service.get("languageIds") or [])
        ]

    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        try:
            return await self.channel.call("CocRequest", client.id, method.value, params)
        except ChannelError as e:
            raise classify_coc_error(e, method) from e

    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        raw = await self.channel.call("CocAction", "diagnosticList")
        entries = [entry for entry in ensure_list(raw, "diagnosticList") if isinstance(entry, dict)]

        # 只查找已打开的缓冲区，未打开的文件由调用方按需加载
        to_buffer: Dict[str, Optional[int]] = {}
        for entry in entries:
            file = entry.get("file")
            if file and file not in to_buffer:
                to_buffer[file] = await self.editor.find_buffer(file)

        diagnostics = []
        for entry in entries:
            buffer = to_buffer.get(entry.get("file", ""))
            if buffers is not None and buffer not in buffers:
                continue
            try:
                diagnostics.append(
                    Diagnostic(
                        range=Range.from_dict(entry["location"]["range"]),
                        message=str(entry.get("message", "")),
                        severity=COC_SEVERITY.get(entry.get("severity")),
                        code=entry.get("code"),
                        source=entry.get("source"),
                        buffer=buffer,
                        path=entry.get("file"),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"忽略格式不正确的诊断: {e}")
        return diagnostics
