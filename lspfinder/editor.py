"""编辑器服务接口

核心逻辑通过 EditorService 读取缓冲区文本、查询光标与选区、执行文本替换。
所有坐标均为 0-indexed，列号为 UTF-8 字节偏移。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .lsp.offset import byte_length, byte_to_char_index, to_editor_offset, to_protocol_offset
from .lsp.protocol import OffsetEncoding, Position, path_to_uri


class EditorService(ABC):
    """编辑器服务抽象基类"""

    @abstractmethod
    async def get_line(self, buffer: int, line: int) -> str:
        """获取指定行，越界时返回空字符串 (line 为 -1 表示最后一行)"""
        pass

    @abstractmethod
    async def get_lines(self, buffer: int) -> List[str]:
        """获取缓冲区全部行"""
        pass

    @abstractmethod
    async def line_count(self, buffer: int) -> int:
        """缓冲区行数"""
        pass

    @abstractmethod
    async def set_text(
        self, buffer: int, start: Position, end: Position, lines: List[str]
    ) -> None:
        """用 lines 替换 [start, end) 之间的文本 (字节坐标)"""
        pass

    @abstractmethod
    async def append_lines(self, buffer: int, lines: List[str]) -> None:
        """在缓冲区末尾追加行"""
        pass

    @abstractmethod
    async def buffer_for_path(self, path: str) -> int:
        """获取 (必要时创建并加载) 路径对应的缓冲区"""
        pass

    @abstractmethod
    async def find_buffer(self, path: str) -> Optional[int]:
        """查找已存在的缓冲区，不存在时返回 None"""
        pass

    @abstractmethod
    async def path_for_buffer(self, buffer: int) -> str:
        """缓冲区的绝对路径"""
        pass

    @abstractmethod
    async def get_cursor(self, window: int) -> Position:
        """窗口光标位置"""
        pass

    @abstractmethod
    async def get_selection(self, window: int) -> Tuple[Position, Position, str]:
        """选区两端位置和当前模式 ("n"/"v"/"V"...)

        普通模式下两端都是光标位置。
        """
        pass

    @abstractmethod
    async def get_cwd(self, window: int) -> str:
        """窗口的工作目录"""
        pass

    @abstractmethod
    async def get_filetype(self, buffer: int) -> str:
        """缓冲区文件类型"""
        pass

    @abstractmethod
    async def set_virtual_lines(self, buffer: int, lines: List[str]) -> None:
        """写入只读的虚拟文档内容"""
        pass

    async def delete_buffer(self, buffer: int) -> None:
        """删除缓冲区"""
        pass

    async def rename_path(self, old_path: str, new_path: str) -> None:
        """文件重命名后，让旧路径下的缓冲区指向新路径"""
        pass


def splice_lines(
    lines: List[str], start: Position, end: Position, texts: List[str]
) -> List[str]:
    """在行列表上执行字节坐标的文本替换，返回新列表"""
    result = list(lines) or [""]
    start_line = min(start.line, len(result) - 1)
    end_line = min(end.line, len(result) - 1)
    first = result[start_line]
    last = result[end_line]
    before = first[: byte_to_char_index(first, start.character)]
    after = last[byte_to_char_index(last, end.character):]

    replaced = list(texts) or [""]
    replaced[0] = before + replaced[0]
    replaced[-1] = replaced[-1] + after
    result[start_line : end_line + 1] = replaced
    return result


async def encode_position(
    editor: EditorService,
    buffer: int,
    position: Position,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
) -> Position:
    """编辑器位置 -> 协议位置"""
    line = await editor.get_line(buffer, position.line)
    return Position(
        line=position.line,
        character=to_protocol_offset(line, position.character, encoding),
    )


async def decode_position(
    editor: EditorService,
    buffer: int,
    position: Position,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
) -> Position:
    """协议位置 -> 编辑器位置"""
    line = await editor.get_line(buffer, position.line)
    return Position(
        line=position.line,
        character=to_editor_offset(line, position.character, encoding),
    )


async def buffer_uri(editor: EditorService, buffer: int) -> str:
    """缓冲区的文档 URI"""
    return path_to_uri(await editor.path_for_buffer(buffer))


async def line_byte_length(editor: EditorService, buffer: int, line: int) -> int:
    """指定行的字节长度"""
    return byte_length(await editor.get_line(buffer, line))
