"""位置编码转换

在编辑器的 UTF-8 字节偏移与协议的 UTF-16/UTF-32 码元偏移之间转换单行内的列号。

- utf-8: 与字节偏移一致
- utf-16: BMP 以外的字符 (码点 > 0xFFFF) 占 2 个码元
- utf-32: 每个码点占 1 个码元

落在多字节字符内部的下标向下取整到最近的字符边界，越界下标截断到行尾，
不会抛出异常。
"""

from __future__ import annotations

from .protocol import OffsetEncoding

# surrogateescape 解码出的原始字节
_ESCAPED_BYTE_MIN = 0xDC80
_ESCAPED_BYTE_MAX = 0xDCFF


def _char_widths(char: str) -> tuple[int, int, int]:
    """单个字符的 (UTF-8 字节数, UTF-16 码元数, UTF-32 码元数)"""
    code_point = ord(char)
    if code_point < 0x80:
        return 1, 1, 1
    if code_point < 0x800:
        return 2, 1, 1
    if _ESCAPED_BYTE_MIN <= code_point <= _ESCAPED_BYTE_MAX:
        # 无效字节按一个码点计
        return 1, 1, 1
    if code_point <= 0xFFFF:
        return 3, 1, 1
    return 4, 2, 1


def _units(widths: tuple[int, int, int], encoding: OffsetEncoding) -> int:
    if encoding == OffsetEncoding.UTF16:
        return widths[1]
    return widths[2]


def byte_length(line: str) -> int:
    """行的 UTF-8 字节长度"""
    return sum(_char_widths(char)[0] for char in line)


def to_protocol_offset(
    line: str,
    byte_index: int,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
    eol_sentinel: bool = False,
) -> int:
    """字节偏移 -> 协议偏移

    Args:
        line: 行文本
        byte_index: 0-indexed 字节偏移
        encoding: 协议使用的编码
        eol_sentinel: 为 True 时下标 0 表示行尾

    Returns:
        协议偏移
    """
    encoding = OffsetEncoding(encoding)
    if encoding == OffsetEncoding.UTF8:
        if eol_sentinel and byte_index == 0:
            return byte_length(line)
        return max(byte_index, 0)

    consumed = 0
    units = 0
    for char in line:
        widths = _char_widths(char)
        if consumed + widths[0] > byte_index:
            break
        consumed += widths[0]
        units += _units(widths, encoding)
    return units


def to_editor_offset(
    line: str,
    protocol_index: int,
    encoding: OffsetEncoding = OffsetEncoding.UTF16,
    eol_sentinel: bool = False,
) -> int:
    """协议偏移 -> 字节偏移

    Args:
        line: 行文本
        protocol_index: 0-indexed 协议偏移
        encoding: 协议使用的编码
        eol_sentinel: 为 True 时下标 0 表示行尾

    Returns:
        字节偏移
    """
    encoding = OffsetEncoding(encoding)
    if encoding == OffsetEncoding.UTF8:
        if eol_sentinel and protocol_index == 0:
            return byte_length(line)
        return max(protocol_index, 0)

    consumed = 0
    units = 0
    for char in line:
        widths = _char_widths(char)
        units += _units(widths, encoding)
        if units > protocol_index:
            break
        consumed += widths[0]
    return consumed


def byte_to_char_index(line: str, byte_index: int) -> int:
    """字节偏移 -> Python 字符串下标 (向下取整)"""
    consumed = 0
    for index, char in enumerate(line):
        size = _char_widths(char)[0]
        if consumed + size > byte_index:
            return index
        consumed += size
    return len(line)
