"""配置管理"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .backends.base import DEFAULT_REQUEST_TIMEOUT, BackendName, UnknownBackendError, parse_backend
from .lsp.client import LSPConfig

logger = logging.getLogger(__name__)

# 环境变量覆盖默认后端
BACKEND_ENV_VAR = "LSPFINDER_BACKEND"

CONFIG_FILENAME = "lspfinder.yaml"


class ConfigError(ValueError):
    """配置错误"""

    pass


@dataclass
class RequestConfig:
    """请求配置"""

    timeout: float = DEFAULT_REQUEST_TIMEOUT
    dispatch_timeout: float = 10.0


@dataclass
class ListConfig:
    """列表配置"""

    auto_expand_single: bool = True
    include_declaration: bool = True
    max_trees: int = 16


@dataclass
class FinderConfig:
    """主配置"""

    default_backend: BackendName = BackendName.NVIM_LSP
    request: RequestConfig = field(default_factory=RequestConfig)
    listing: ListConfig = field(default_factory=ListConfig)
    workspace_dir: str = "."
    servers: Dict[str, LSPConfig] = field(default_factory=dict)

    @classmethod
    def load(cls, config_path: Union[str, Path, None] = None) -> "FinderConfig":
        """加载配置

        未指定路径且找不到配置文件时使用默认配置。
        """
        if config_path is None:
            config_path = cls._find_config_file()

        if config_path is None:
            config = cls()
        else:
            if not Path(config_path).exists():
                raise ConfigError(f"配置文件不存在: {config_path}")
            config = cls.from_yaml(config_path)

        env_backend = os.environ.get(BACKEND_ENV_VAR)
        if env_backend:
            try:
                config.default_backend = parse_backend(env_backend)
            except UnknownBackendError as e:
                raise ConfigError(f"{BACKEND_ENV_VAR}: {e}") from e
        return config

    @classmethod
    def _find_config_file(cls) -> Optional[Path]:
        """查找配置文件"""
        # 优先级: 当前目录 > 用户目录
        search_paths = [
            Path.cwd() / "config" / CONFIG_FILENAME,
            Path.home() / ".lspfinder" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> "FinderConfig":
        """从 YAML 文件加载配置"""
        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"配置文件格式错误: {e}") from e

        logger.debug(f"加载配置: {config_path}")
        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinderConfig":
        """从字典创建配置"""
        if not isinstance(data, dict):
            raise ConfigError("配置必须是映射")

        try:
            default_backend = parse_backend(data.get("default_backend", BackendName.NVIM_LSP))
        except UnknownBackendError as e:
            raise ConfigError(str(e)) from e

        # 请求配置
        request_data = data.get("request", {})
        request = RequestConfig(
            timeout=float(request_data.get("timeout", DEFAULT_REQUEST_TIMEOUT)),
            dispatch_timeout=float(request_data.get("dispatch_timeout", 10.0)),
        )
        if request.timeout <= 0 or request.dispatch_timeout <= 0:
            raise ConfigError("超时时间必须为正数")

        # 列表配置
        listing_data = data.get("listing", {})
        listing = ListConfig(
            auto_expand_single=listing_data.get("auto_expand_single", True),
            include_declaration=listing_data.get("include_declaration", True),
            max_trees=int(listing_data.get("max_trees", 16)),
        )

        # stdio 语言服务器
        servers: Dict[str, LSPConfig] = {}
        for language, server_data in (data.get("servers") or {}).items():
            if not server_data.get("command"):
                raise ConfigError(f"语言服务器缺少 command: {language}")
            servers[language] = LSPConfig(
                command=server_data["command"],
                args=server_data.get("args", []),
                env=server_data.get("env"),
                enabled=server_data.get("enabled", True),
            )

        return cls(
            default_backend=default_backend,
            request=request,
            listing=listing,
            workspace_dir=data.get("workspace_dir", "."),
            servers=servers,
        )
