"""LSP (Language Server Protocol) 支持

主要组件:
- protocol: 协议类型与 JSON-RPC 消息模型
- offset: 位置编码转换
- LSPClient: stdio 语言服务器客户端
- LSPManager: 多语言 LSP 管理器
"""

from .client import LSPClient, LSPClientError, LSPConfig, LSPResponseError
from .manager import LSPManager
from .offset import byte_length, to_editor_offset, to_protocol_offset
from .protocol import (
    Diagnostic,
    DiagnosticSeverity,
    DocumentUri,
    Location,
    Method,
    OffsetEncoding,
    Position,
    Range,
    TextDocumentIdentifier,
    detect_language_id,
)

__all__ = [
    "LSPClient",
    "LSPClientError",
    "LSPConfig",
    "LSPManager",
    "LSPResponseError",
    "Diagnostic",
    "DiagnosticSeverity",
    "DocumentUri",
    "Location",
    "Method",
    "OffsetEncoding",
    "Position",
    "Range",
    "TextDocumentIdentifier",
    "byte_length",
    "detect_language_id",
    "to_editor_offset",
    "to_protocol_offset",
]
