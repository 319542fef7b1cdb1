"""诊断汇总

从后端各自的诊断存储读取诊断，统一为 Diagnostic，去重并按
(缓冲区, 严重程度, 行, 列, 消息, 来源, 代码) 排序。
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

from .backends.base import BackendName
from .editor import EditorService, decode_position, encode_position
from .items import ActionKind, ActionRecord, Item, RequestContext
from .lsp.protocol import Diagnostic, OffsetEncoding, Range, path_to_uri
from .normalizers.common import display_path, position_suffix
from .registry import ClientRegistry

logger = logging.getLogger(__name__)

BufferSelector = Union[None, int, Sequence[int]]


def sort_key(diag: Diagnostic) -> tuple:
    """排序键 (缺省严重程度按 Error 排序)"""
    start = diag.range.start
    return (
        diag.buffer if diag.buffer is not None else -1,
        int(diag.severity) if diag.severity is not None else 1,
        start.line,
        start.character,
        diag.message,
        diag.source or "",
        "" if diag.code is None else str(diag.code),
    )


def dedup_key(diag: Diagnostic) -> tuple:
    return (
        diag.buffer,
        diag.path,
        int(diag.severity) if diag.severity is not None else None,
        diag.range.key(),
        diag.message,
        diag.source,
        "" if diag.code is None else str(diag.code),
    )


def sort_diagnostics(diagnostics: Sequence[Diagnostic]) -> List[Diagnostic]:
    """排序 (全序，与输入顺序无关)"""
    return sorted(diagnostics, key=sort_key)


def dedup_diagnostics(diagnostics: Sequence[Diagnostic]) -> List[Diagnostic]:
    """去除完全相同的诊断，保留第一次出现的"""
    seen = set()
    result = []
    for diag in diagnostics:
        key = dedup_key(diag)
        if key in seen:
            continue
        seen.add(key)
        result.append(diag)
    return result


class DiagnosticAggregator:
    """诊断汇总器"""

    def __init__(self, registry: ClientRegistry, editor: EditorService):
        self.registry = registry
        self.editor = editor

    async def gather(
        self,
        backend: Union[str, BackendName, None],
        buffers: BufferSelector = None,
        current_buffer: Optional[int] = None,
    ) -> List[Diagnostic]:
        """读取诊断

        Args:
            backend: 后端名称
            buffers: None 表示全部缓冲区，0 表示当前缓冲区
            current_buffer: 当前缓冲区

        Returns:
            已去重、排序的诊断
        """
        adapter = self.registry.adapter(backend)
        selected = self._select(buffers, current_buffer)
        diagnostics = await adapter.get_diagnostics(selected)

        for diag in diagnostics:
            if diag.buffer is None and diag.path:
                diag.buffer = await self.editor.buffer_for_path(diag.path)
            elif diag.path is None and diag.buffer is not None:
                diag.path = await self.editor.path_for_buffer(diag.buffer)

        logger.debug(f"{adapter.name.value} 诊断: {len(diagnostics)} 条")
        return sort_diagnostics(dedup_diagnostics(diagnostics))

    def _select(
        self, buffers: BufferSelector, current_buffer: Optional[int]
    ) -> Optional[List[int]]:
        if buffers is None:
            return None
        if isinstance(buffers, int):
            buffers = [buffers]
        return [
            current_buffer if buffer == 0 and current_buffer is not None else buffer
            for buffer in buffers
        ]

    def to_items(
        self,
        diagnostics: Sequence[Diagnostic],
        request: RequestContext,
        encoding: OffsetEncoding,
    ) -> List[Item]:
        """诊断 -> Item 列表 (顺序不变)"""
        items = []
        for diag in diagnostics:
            label = diag.message.split("\n")[0]
            start = diag.range.start
            location = ""
            if diag.path:
                location = display_path(diag.path, request.cwd)
                location += position_suffix(start.line, start.character) + ": "
            items.append(
                Item(
                    label=label,
                    display=f"{location}{diag.severity_str}: {label}",
                    action=ActionRecord(
                        kind=ActionKind.DIAGNOSTIC,
                        uri=path_to_uri(diag.path) if diag.path else None,
                        buffer=diag.buffer,
                        range=diag.range,
                        encoding=encoding,
                    ),
                    payload={**diag.to_dict(), "bufNr": diag.buffer, "path": diag.path},
                    is_tree=False,
                )
            )
        return items

    async def lsp_diagnostics(
        self,
        backend: Union[str, BackendName, None],
        buffer: int,
        encoding: OffsetEncoding = OffsetEncoding.UTF16,
    ) -> List[dict]:
        """缓冲区的诊断 (协议格式，位置转换为 encoding)，用于 codeAction 请求的 context"""
        adapter = self.registry.adapter(backend)
        diagnostics = await self.gather(backend, [buffer])
        source_encoding = adapter.diagnostic_encoding
        result = []
        for diag in diagnostics:
            data = diag.to_dict()
            if source_encoding != encoding:
                converted = await self._reencode(buffer, diag.range, source_encoding, encoding)
                data["range"] = converted.to_dict()
            result.append(data)
        return result

    async def _reencode(
        self, buffer: int, range: Range, source: OffsetEncoding, target: OffsetEncoding
    ) -> Range:
        positions = []
        for position in (range.start, range.end):
            editor_position = await decode_position(self.editor, buffer, position, source)
            positions.append(await encode_position(self.editor, buffer, editor_position, target))
        return Range(start=positions[0], end=positions[1])
