"""LSP 协议类型定义

基于 LSP 3.17 规范定义核心类型，以及 JSON-RPC 2.0 消息模型。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Literal, Optional, Union
from urllib.parse import quote, unquote, urlparse

from pydantic import BaseModel

# 基础类型
DocumentUri = str

# JSON-RPC 错误码: 方法不存在
METHOD_NOT_FOUND = -32601


class OffsetEncoding(str, Enum):
    """位置编码 (character 字段的计数单位)"""

    UTF8 = "utf-8"
    UTF16 = "utf-16"
    UTF32 = "utf-32"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OffsetEncoding":
        """解析编码名称，未声明或无法识别时按协议默认为 utf-16"""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.UTF16
        normalized = str(value).lower().replace("_", "-")
        if normalized in ("utf8", "utf16", "utf32"):
            normalized = f"utf-{normalized[3:]}"
        try:
            return cls(normalized)
        except ValueError:
            return cls.UTF16


class Method(str, Enum):
    """支持的 LSP 方法 (封闭集合)"""

    DECLARATION = "textDocument/declaration"
    DEFINITION = "textDocument/definition"
    TYPE_DEFINITION = "textDocument/typeDefinition"
    IMPLEMENTATION = "textDocument/implementation"
    REFERENCES = "textDocument/references"
    DOCUMENT_SYMBOL = "textDocument/documentSymbol"
    WORKSPACE_SYMBOL = "workspace/symbol"
    WORKSPACE_SYMBOL_RESOLVE = "workspaceSymbol/resolve"
    PREPARE_CALL_HIERARCHY = "textDocument/prepareCallHierarchy"
    INCOMING_CALLS = "callHierarchy/incomingCalls"
    OUTGOING_CALLS = "callHierarchy/outgoingCalls"
    PREPARE_TYPE_HIERARCHY = "textDocument/prepareTypeHierarchy"
    SUPERTYPES = "typeHierarchy/supertypes"
    SUBTYPES = "typeHierarchy/subtypes"
    CODE_ACTION = "textDocument/codeAction"
    CODE_ACTION_RESOLVE = "codeAction/resolve"
    EXECUTE_COMMAND = "workspace/executeCommand"
    DIAGNOSTIC = "textDocument/diagnostic"
    VIRTUAL_TEXT_DOCUMENT = "deno/virtualTextDocument"


# 跳转类方法
LOCATION_METHODS = frozenset(
    {
        Method.DECLARATION,
        Method.DEFINITION,
        Method.TYPE_DEFINITION,
        Method.IMPLEMENTATION,
        Method.REFERENCES,
    }
)

# 方法 -> (服务器能力字段, 子字段)
METHOD_CAPABILITIES: Dict[Method, tuple[str, Optional[str]]] = {
    Method.DECLARATION: ("declarationProvider", None),
    Method.DEFINITION: ("definitionProvider", None),
    Method.TYPE_DEFINITION: ("typeDefinitionProvider", None),
    Method.IMPLEMENTATION: ("implementationProvider", None),
    Method.REFERENCES: ("referencesProvider", None),
    Method.DOCUMENT_SYMBOL: ("documentSymbolProvider", None),
    Method.WORKSPACE_SYMBOL: ("workspaceSymbolProvider", None),
    Method.WORKSPACE_SYMBOL_RESOLVE: ("workspaceSymbolProvider", "resolveProvider"),
    Method.PREPARE_CALL_HIERARCHY: ("callHierarchyProvider", None),
    Method.INCOMING_CALLS: ("callHierarchyProvider", None),
    Method.OUTGOING_CALLS: ("callHierarchyProvider", None),
    Method.PREPARE_TYPE_HIERARCHY: ("typeHierarchyProvider", None),
    Method.SUPERTYPES: ("typeHierarchyProvider", None),
    Method.SUBTYPES: ("typeHierarchyProvider", None),
    Method.CODE_ACTION: ("codeActionProvider", None),
    Method.CODE_ACTION_RESOLVE: ("codeActionProvider", "resolveProvider"),
    Method.EXECUTE_COMMAND: ("executeCommandProvider", None),
    Method.DIAGNOSTIC: ("diagnosticProvider", None),
}


def capability_supports(capabilities: Optional[dict], method: Method) -> Optional[bool]:
    """根据 ServerCapabilities 判断是否支持方法

    Returns:
        True/False，无法判断时返回 None
    """
    if capabilities is None:
        return None
    entry = METHOD_CAPABILITIES.get(method)
    if entry is None:
        # 扩展方法无法从能力中得知
        return None
    key, sub_key = entry
    provider = capabilities.get(key)
    if not provider:
        return False
    if sub_key is None:
        return True
    return isinstance(provider, dict) and bool(provider.get(sub_key))


@dataclass
class Position:
    """文档中的位置"""

    line: int  # 0-indexed
    character: int  # 0-indexed

    def to_dict(self) -> dict:
        return {"line": self.line, "character": self.character}

    @classmethod
    def from_dict(cls, data: dict) -> "Position":
        return cls(line=int(data["line"]), character=int(data["character"]))

    def is_before(self, other: "Position") -> bool:
        """是否在 other 之前 (先比较行，再比较列)"""
        return (self.line, self.character) < (other.line, other.character)

    def clamped(self) -> "Position":
        """将负数坐标截断为 0"""
        return Position(line=max(self.line, 0), character=max(self.character, 0))


@dataclass
class Range:
    """文档中的范围"""

    start: Position
    end: Position

    def to_dict(self) -> dict:
        return {"start": self.start.to_dict(), "end": self.end.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "Range":
        return cls(
            start=Position.from_dict(data["start"]),
            end=Position.from_dict(data["end"]),
        )

    def normalized(self) -> "Range":
        """起点在终点之后时交换两者"""
        if self.end.is_before(self.start):
            return Range(start=self.end, end=self.start)
        return Range(start=self.start, end=self.end)

    def key(self) -> tuple[int, int, int, int]:
        """结构化哈希键"""
        return (self.start.line, self.start.character, self.end.line, self.end.character)


@dataclass
class Location:
    """文档位置

    同时接受 LocationLink，取 targetUri/targetSelectionRange。
    """

    uri: DocumentUri
    range: Range

    def to_dict(self) -> dict:
        return {"uri": self.uri, "range": self.range.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "Location":
        if "targetUri" in data:
            return cls(
                uri=data["targetUri"],
                range=Range.from_dict(data["targetSelectionRange"]),
            )
        return cls(uri=data["uri"], range=Range.from_dict(data["range"]))


@dataclass
class TextDocumentIdentifier:
    """文档标识符"""

    uri: DocumentUri

    def to_dict(self) -> dict:
        return {"uri": self.uri}


@dataclass
class VersionedTextDocumentIdentifier(TextDocumentIdentifier):
    """带版本的文档标识符"""

    version: int

    def to_dict(self) -> dict:
        return {"uri": self.uri, "version": self.version}


@dataclass
class TextDocumentItem:
    """文档项"""

    uri: DocumentUri
    languageId: str
    version: int
    text: str

    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "languageId": self.languageId,
            "version": self.version,
            "text": self.text,
        }


class DiagnosticSeverity(IntEnum):
    """诊断严重程度"""

    Error = 1
    Warning = 2
    Information = 3
    Hint = 4


SEVERITY_NAMES = {
    DiagnosticSeverity.Error: "Error",
    DiagnosticSeverity.Warning: "Warning",
    DiagnosticSeverity.Information: "Info",
    DiagnosticSeverity.Hint: "Hint",
}


@dataclass
class Diagnostic:
    """诊断信息

    buffer/path 为来源缓冲区信息，不属于协议字段。
    severity 缺省时保持 None，仅在排序时视为 Error。
    """

    range: Range
    message: str
    severity: Optional[DiagnosticSeverity] = None
    code: Optional[Union[int, str]] = None
    source: Optional[str] = None
    codeDescription: Optional[dict] = None
    tags: Optional[list[int]] = None
    relatedInformation: Optional[list[dict]] = None
    data: Any = None
    buffer: Optional[int] = None
    path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict, **extra: Any) -> "Diagnostic":
        severity = None
        if data.get("severity") is not None:
            severity = DiagnosticSeverity(int(data["severity"]))

        return cls(
            range=Range.from_dict(data["range"]),
            message=str(data.get("message", "")),
            severity=severity,
            code=data.get("code"),
            source=data.get("source"),
            codeDescription=data.get("codeDescription"),
            tags=data.get("tags"),
            relatedInformation=data.get("relatedInformation"),
            data=data.get("data"),
            **extra,
        )

    def to_dict(self) -> dict:
        """转换为协议格式 (过滤各客户端自行添加的字段)"""
        result: dict = {"range": self.range.to_dict(), "message": self.message}
        if self.severity is not None:
            result["severity"] = int(self.severity)
        for key in ("code", "source", "codeDescription", "tags", "relatedInformation", "data"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result

    @property
    def severity_str(self) -> str:
        """获取严重程度字符串"""
        if self.severity is None:
            return "Error"
        return SEVERITY_NAMES.get(self.severity, "Unknown")

    def format(self) -> str:
        """格式化诊断信息"""
        line = self.range.start.line + 1  # 转为 1-indexed
        col = self.range.start.character + 1
        source = f"[{self.source}] " if self.source else ""
        return f"{source}{self.severity_str} at line {line}:{col}: {self.message}"


# SymbolKind -> 名称
SYMBOL_KIND_NAMES = {
    1: "File",
    2: "Module",
    3: "Namespace",
    4: "Package",
    5: "Class",
    6: "Method",
    7: "Property",
    8: "Field",
    9: "Constructor",
    10: "Enum",
    11: "Interface",
    12: "Function",
    13: "Variable",
    14: "Constant",
    15: "String",
    16: "Number",
    17: "Boolean",
    18: "Array",
    19: "Object",
    20: "Key",
    21: "Null",
    22: "EnumMember",
    23: "Struct",
    24: "Event",
    25: "Operator",
    26: "TypeParameter",
}


# LSP 请求/响应类型


@dataclass
class InitializeParams:
    """初始化参数"""

    processId: Optional[int]
    rootUri: Optional[DocumentUri]
    capabilities: dict = field(default_factory=dict)
    workspaceFolders: Optional[list[dict]] = None

    def to_dict(self) -> dict:
        result = {
            "processId": self.processId,
            "rootUri": self.rootUri,
            "capabilities": self.capabilities,
        }
        if self.workspaceFolders:
            result["workspaceFolders"] = self.workspaceFolders
        return result


@dataclass
class InitializeResult:
    """初始化结果"""

    capabilities: dict

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "InitializeResult":
        return cls(capabilities=(data or {}).get("capabilities", {}))

    @property
    def position_encoding(self) -> OffsetEncoding:
        """服务器选定的位置编码"""
        return OffsetEncoding.parse(self.capabilities.get("positionEncoding"))


@dataclass
class PublishDiagnosticsParams:
    """发布诊断参数"""

    uri: DocumentUri
    diagnostics: list[Diagnostic]
    version: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PublishDiagnosticsParams":
        return cls(
            uri=data["uri"],
            diagnostics=[Diagnostic.from_dict(d) for d in data["diagnostics"]],
            version=data.get("version"),
        )


# =============================================================================
# JSON-RPC 2.0 基础类型
# =============================================================================


class JSONRPCRequest(BaseModel):
    """JSON-RPC 2.0 请求"""

    jsonrpc: Literal["2.0"] = "2.0"
    id: Union[str, int]
    method: str
    params: Optional[Any] = None


class JSONRPCNotification(BaseModel):
    """JSON-RPC 2.0 通知 (无 id)"""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Optional[Any] = None


class JSONRPCError(BaseModel):
    """JSON-RPC 2.0 错误"""

    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCResponse(BaseModel):
    """JSON-RPC 2.0 响应"""

    jsonrpc: Literal["2.0"] = "2.0"
    id: Union[str, int, None] = None
    result: Optional[Any] = None
    error: Optional[JSONRPCError] = None


# =============================================================================
# URI 工具
# =============================================================================


def uri_to_path(uri: str) -> str:
    """file:// URI 转为本地路径，其他 scheme 原样返回"""
    if uri.startswith("file://"):
        return unquote(urlparse(uri).path)
    return uri


def path_to_uri(path: str) -> str:
    """本地路径转为 file:// URI，非绝对路径原样返回"""
    if os.path.isabs(path):
        return "file://" + quote(path)
    return path


# 语言 ID 映射
LANGUAGE_ID_MAP = {
    ".py": "python",
    ".js": "javascript",
    ".ts": "typescript",
    ".jsx": "javascriptreact",
    ".tsx": "typescriptreact",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".lua": "lua",
    ".sh": "shellscript",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".html": "html",
    ".css": "css",
    ".md": "markdown",
}


def detect_language_id(file_path: str) -> str:
    """根据文件扩展名检测语言 ID"""
    ext = os.path.splitext(file_path)[1].lower()
    return LANGUAGE_ID_MAP.get(ext, "plaintext")
