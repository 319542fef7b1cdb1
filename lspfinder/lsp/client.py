"""LSP 客户端

通过 stdio 与语言服务器通信 (Content-Length 分帧的 JSON-RPC)。
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .protocol import (
    Diagnostic,
    DocumentUri,
    InitializeParams,
    InitializeResult,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    OffsetEncoding,
    PublishDiagnosticsParams,
    TextDocumentIdentifier,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
    detect_language_id,
    path_to_uri,
    uri_to_path,
)

logger = logging.getLogger(__name__)

# 请求默认超时 (秒)
DEFAULT_TIMEOUT = 30.0

# 进程终止超时
PROCESS_TERMINATION_TIMEOUT = 2.0

# 向服务器声明的客户端能力
CLIENT_CAPABILITIES = {
    "general": {"positionEncodings": ["utf-8", "utf-16", "utf-32"]},
    "textDocument": {
        "synchronization": {"dynamicRegistration": True, "didSave": True},
        "publishDiagnostics": {"versionSupport": True, "relatedInformation": True},
        "documentSymbol": {"hierarchicalDocumentSymbolSupport": True},
        "codeAction": {
            "codeActionLiteralSupport": {
                "codeActionKind": {"valueSet": ["", "quickfix", "refactor", "source"]}
            },
            "resolveSupport": {"properties": ["edit"]},
        },
        "callHierarchy": {"dynamicRegistration": False},
        "typeHierarchy": {"dynamicRegistration": False},
        "diagnostic": {"dynamicRegistration": False},
    },
    "workspace": {
        "workspaceFolders": True,
        "applyEdit": True,
        "workspaceEdit": {
            "documentChanges": True,
            "resourceOperations": ["create", "rename", "delete"],
        },
        "symbol": {"resolveSupport": {"properties": ["location.range"]}},
    },
}


class LSPClientError(Exception):
    """LSP 客户端错误"""

    pass


class LSPResponseError(LSPClientError):
    """服务器返回的错误响应"""

    def __init__(self, code: int, message: str):
        super().__init__(f"LSP 错误 ({code}): {message}")
        self.code = code


@dataclass
class LSPConfig:
    """LSP 配置"""

    command: str
    args: list[str] = field(default_factory=list)
    env: Optional[dict[str, str]] = None
    enabled: bool = True


class LSPClient:
    """LSP 客户端"""

    def __init__(
        self,
        config: LSPConfig,
        workspace_dir: str,
        on_diagnostics: Optional[Callable[[str, list[Diagnostic]], None]] = None,
    ):
        self.config = config
        self.workspace_dir = workspace_dir
        self.on_diagnostics = on_diagnostics

        self._process: Optional[asyncio.subprocess.Process] = None
        self._request_id = 0
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._diagnostics: Dict[DocumentUri, list[Diagnostic]] = {}
        self._open_files: Dict[DocumentUri, tuple[int, str]] = {}  # uri -> (version, text)
        self._initialized = False
        self._write_lock = asyncio.Lock()
        self._read_task: Optional[asyncio.Task] = None
        self.capabilities: dict = {}
        self.position_encoding = OffsetEncoding.UTF16

    @property
    def is_running(self) -> bool:
        """检查 LSP 服务器是否运行中"""
        return self._process is not None and self._process.returncode is None

    async def start(self) -> bool:
        """启动 LSP 服务器"""
        if self.is_running:
            return True

        env = os.environ.copy()
        if self.config.env:
            env.update(self.config.env)

        cmd = [self.config.command] + self.config.args
        logger.debug(f"启动 LSP 服务器: {' '.join(cmd)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                env=env,
                cwd=self.workspace_dir,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.warning(f"LSP 启动失败: {e}")
            return False

        self._read_task = asyncio.create_task(self._read_messages())
        try:
            await self._initialize()
        except (LSPClientError, asyncio.TimeoutError) as e:
            logger.warning(f"LSP 初始化失败: {e}")
            await self.stop()
            return False

        self._initialized = True
        logger.info(
            f"LSP 服务器已启动: {self.config.command} "
            f"(PID: {self._process.pid}, 编码: {self.position_encoding.value})"
        )
        return True

    async def stop(self) -> None:
        """停止 LSP 服务器"""
        if self._process is None:
            return

        try:
            if self._initialized:
                for uri in list(self._open_files):
                    await self.close_file(uri_to_path(uri))
                await self.request("shutdown", None, timeout=PROCESS_TERMINATION_TIMEOUT)
                await self._notify("exit", None)
        except (LSPClientError, asyncio.TimeoutError, ConnectionError) as e:
            logger.debug(f"LSP 关闭请求失败: {e}")
        finally:
            if self._read_task:
                self._read_task.cancel()
                try:
                    await self._read_task
                except asyncio.CancelledError:
                    pass
                self._read_task = None

            if self._process.returncode is None:
                self._process.terminate()
                try:
                    await asyncio.wait_for(
                        self._process.wait(), timeout=PROCESS_TERMINATION_TIMEOUT
                    )
                except asyncio.TimeoutError:
                    logger.warning("LSP 服务器未响应，强制终止")
                    self._process.kill()

            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(LSPClientError("LSP 服务器已停止"))
            self._pending_requests.clear()
            self._process = None
            self._initialized = False

    async def _initialize(self) -> None:
        """初始化 LSP 连接"""
        root_uri = path_to_uri(os.path.abspath(self.workspace_dir))
        params = InitializeParams(
            processId=os.getpid(),
            rootUri=root_uri,
            capabilities=CLIENT_CAPABILITIES,
            workspaceFolders=[{"uri": root_uri, "name": Path(self.workspace_dir).name}],
        )

        result = InitializeResult.from_dict(await self.request("initialize", params.to_dict()))
        self.capabilities = result.capabilities
        self.position_encoding = result.position_encoding

        await self._notify("initialized", {})

    async def open_file(
        self,
        file_path: str,
        text: Optional[str] = None,
        language_id: Optional[str] = None,
    ) -> None:
        """打开文件 (已打开且内容变化时发送 didChange)

        Args:
            file_path: 文件路径
            text: 文件内容，None 时从磁盘读取
            language_id: 语言 ID，None 时按扩展名检测
        """
        if not self._initialized:
            return

        uri = path_to_uri(os.path.abspath(file_path))
        if text is None:
            try:
                with open(file_path, "r", encoding="utf-8", errors="surrogateescape") as f:
                    text = f.read()
            except OSError as e:
                logger.warning(f"读取文件失败: {e}")
                return

        if uri in self._open_files:
            version, current = self._open_files[uri]
            if current == text:
                return
            version += 1
            self._open_files[uri] = (version, text)
            document = VersionedTextDocumentIdentifier(uri=uri, version=version)
            await self._notify(
                "textDocument/didChange",
                {"textDocument": document.to_dict(), "contentChanges": [{"text": text}]},
            )
            return

        item = TextDocumentItem(
            uri=uri,
            languageId=language_id or detect_language_id(file_path),
            version=1,
            text=text,
        )
        await self._notify("textDocument/didOpen", {"textDocument": item.to_dict()})
        self._open_files[uri] = (1, text)

    async def close_file(self, file_path: str) -> None:
        """关闭文件"""
        if not self._initialized:
            return

        uri = path_to_uri(os.path.abspath(file_path))
        if uri not in self._open_files:
            return

        await self._notify(
            "textDocument/didClose",
            {"textDocument": TextDocumentIdentifier(uri=uri).to_dict()},
        )
        del self._open_files[uri]

    def get_diagnostics(self, file_path: Optional[str] = None) -> dict[str, list[Diagnostic]]:
        """获取 publishDiagnostics 推送的诊断信息"""
        if file_path:
            uri = path_to_uri(os.path.abspath(file_path))
            if uri in self._diagnostics:
                return {file_path: self._diagnostics[uri]}
            return {}

        return {uri_to_path(uri): diags for uri, diags in self._diagnostics.items()}

    async def request(
        self, method: str, params: Optional[Any], timeout: float = DEFAULT_TIMEOUT
    ) -> Any:
        """发送请求并等待响应

        Raises:
            LSPResponseError: 服务器返回错误
            LSPClientError: 服务器未运行
            asyncio.TimeoutError: 超时
        """
        if not self.is_running:
            raise LSPClientError("LSP 服务器未运行")

        self._request_id += 1
        request_id = self._request_id

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future
        try:
            await self._send_message(
                JSONRPCRequest(id=request_id, method=method, params=params).model_dump(
                    exclude_none=True
                )
            )
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._pending_requests.pop(request_id, None)

    async def _notify(self, method: str, params: Optional[Any]) -> None:
        """发送通知（无需响应）"""
        if not self.is_running:
            return
        await self._send_message(
            JSONRPCNotification(method=method, params=params).model_dump(exclude_none=True)
        )

    async def _send_message(self, message: dict) -> None:
        """发送 LSP 消息"""
        if not self._process or not self._process.stdin:
            raise LSPClientError("LSP 服务器未运行")

        content = json.dumps(message, ensure_ascii=False).encode("utf-8", "surrogateescape")
        header = f"Content-Length: {len(content)}\r\n\r\n".encode("ascii")
        logger.debug(f"发送: {message.get('method', message.get('id'))}")

        async with self._write_lock:
            self._process.stdin.write(header + content)
            await self._process.stdin.drain()

    async def _read_messages(self) -> None:
        """读取 LSP 消息"""
        if not self._process or not self._process.stdout:
            return
        stdout = self._process.stdout

        while True:
            try:
                content_length = await self._read_header(stdout)
                if content_length is None:
                    break
                if content_length <= 0:
                    continue
                content = await stdout.readexactly(content_length)
            except asyncio.IncompleteReadError:
                break

            try:
                message = json.loads(content.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"无法解析 LSP 消息: {e}")
                continue
            await self._handle_message(message)

        logger.info(f"LSP 服务器输出已关闭: {self.config.command}")

    async def _read_header(self, stdout: asyncio.StreamReader) -> Optional[int]:
        """读取消息头，返回 Content-Length (EOF 时返回 None)"""
        content_length = 0
        while True:
            line = await stdout.readline()
            if not line:
                return None
            line = line.strip()
            if not line:
                return content_length
            content_length = self._parse_content_length(line) or content_length

    def _parse_content_length(self, line: bytes) -> int:
        """解析 Content-Length"""
        text = line.decode("ascii", "replace")
        if text.lower().startswith("content-length:"):
            try:
                return int(text.split(":", 1)[1].strip())
            except ValueError:
                return 0
        return 0

    async def _handle_message(self, message: dict) -> None:
        """处理 LSP 消息"""
        if "method" in message:
            if "id" in message:
                await self._handle_server_request(message)
            else:
                await self._handle_notification(message)
            return

        try:
            response = JSONRPCResponse.model_validate(message)
        except ValidationError as e:
            logger.warning(f"忽略格式不正确的响应: {e}")
            return
        future = self._pending_requests.pop(response.id, None)
        if future is None or future.done():
            return
        if response.error is not None:
            future.set_exception(LSPResponseError(response.error.code, response.error.message))
        else:
            future.set_result(response.result)

    async def _handle_notification(self, message: dict) -> None:
        """处理通知"""
        method = message.get("method", "")
        params = message.get("params") or {}

        if method == "textDocument/publishDiagnostics":
            self._handle_diagnostics(params)

    def _handle_diagnostics(self, params: dict) -> None:
        """处理诊断通知"""
        try:
            diag_params = PublishDiagnosticsParams.from_dict(params)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"处理诊断失败: {e}")
            return

        self._diagnostics[diag_params.uri] = diag_params.diagnostics
        if self.on_diagnostics:
            self.on_diagnostics(uri_to_path(diag_params.uri), diag_params.diagnostics)

    async def _handle_server_request(self, message: dict) -> None:
        """处理服务器请求"""
        method = message.get("method", "")

        result: Any = None
        if method == "workspace/configuration":
            items = (message.get("params") or {}).get("items") or [{}]
            result = [None for _ in items]

        await self._send_message({"jsonrpc": "2.0", "id": message.get("id"), "result": result})
