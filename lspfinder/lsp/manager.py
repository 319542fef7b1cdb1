"""LSP 管理器

按语言管理 stdio LSP 客户端，每种语言最多一个服务器进程。
"""

from __future__ import annotations

import logging
import shutil
from typing import Optional

from .client import LSPClient, LSPConfig
from .protocol import Diagnostic, detect_language_id

logger = logging.getLogger(__name__)

_TYPESCRIPT = LSPConfig(command="typescript-language-server", args=["--stdio"])

# 默认 LSP 配置
DEFAULT_LSP_CONFIGS: dict[str, LSPConfig] = {
    "python": LSPConfig(command="pylsp"),
    "typescript": _TYPESCRIPT,
    "typescriptreact": _TYPESCRIPT,
    "javascript": _TYPESCRIPT,
    "javascriptreact": _TYPESCRIPT,
    "go": LSPConfig(command="gopls"),
    "rust": LSPConfig(command="rust-analyzer"),
}


class LSPManager:
    """LSP 管理器"""

    def __init__(
        self,
        workspace_dir: str,
        configs: Optional[dict[str, LSPConfig]] = None,
    ):
        self.workspace_dir = workspace_dir
        self.configs = configs or {}
        self._clients: dict[str, LSPClient] = {}

    def get_config(self, language: str) -> Optional[LSPConfig]:
        """获取语言的 LSP 配置"""
        # 优先使用用户配置
        if language in self.configs:
            return self.configs[language]
        return DEFAULT_LSP_CONFIGS.get(language)

    async def get_client(self, language: str) -> Optional[LSPClient]:
        """获取或创建语言的 LSP 客户端"""
        client = self._clients.get(language)
        if client is not None and client.is_running:
            return client

        config = self.get_config(language)
        if not config or not config.enabled:
            return None

        if not self._command_exists(config.command):
            logger.debug(f"找不到 LSP 命令: {config.command}")
            return None

        client = LSPClient(config, self.workspace_dir)
        if await client.start():
            self._clients[language] = client
            return client

        return None

    def running_client(self, language: str) -> Optional[LSPClient]:
        """已启动的客户端，不会启动新进程"""
        client = self._clients.get(language)
        if client is not None and client.is_running:
            return client
        return None

    def _command_exists(self, command: str) -> bool:
        """检查命令是否存在"""
        return shutil.which(command) is not None

    async def get_client_for_file(
        self, file_path: str, language: Optional[str] = None
    ) -> Optional[LSPClient]:
        """根据文件获取 LSP 客户端"""
        return await self.get_client(language or detect_language_id(file_path))

    def get_diagnostics(self, file_path: Optional[str] = None) -> dict[str, list[Diagnostic]]:
        """汇总所有客户端推送的诊断信息"""
        result: dict[str, list[Diagnostic]] = {}
        for client in self._clients.values():
            for path, diags in client.get_diagnostics(file_path).items():
                result.setdefault(path, []).extend(diags)
        return result

    async def stop_all(self) -> None:
        """停止所有 LSP 客户端"""
        for client in self._clients.values():
            await client.stop()
        self._clients.clear()

    def list_available_languages(self) -> list[str]:
        """列出可用的语言"""
        return [
            lang
            for lang, config in {**DEFAULT_LSP_CONFIGS, **self.configs}.items()
            if config.enabled and self._command_exists(config.command)
        ]
