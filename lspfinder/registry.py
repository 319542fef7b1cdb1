"""客户端注册表

按后端名称持有适配器，并列出附加到缓冲区的客户端。
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from .backends.base import (
    BackendAdapter,
    BackendError,
    BackendName,
    ClientDescriptor,
    parse_backend,
)
from .channel import ChannelError

logger = logging.getLogger(__name__)


class ClientRegistry:
    """客户端注册表"""

    def __init__(self, default_backend: BackendName = BackendName.NVIM_LSP):
        self.default_backend = parse_backend(default_backend)
        self._adapters: Dict[BackendName, BackendAdapter] = {}

    def register(self, adapter: BackendAdapter) -> None:
        """注册适配器 (同名后端会被替换)"""
        self._adapters[adapter.name] = adapter

    def resolve_backend(self, name: Union[str, BackendName, None]) -> BackendName:
        """解析后端名称，空值使用默认后端

        Raises:
            UnknownBackendError: 未知的后端
        """
        if not name:
            return self.default_backend
        return parse_backend(name)

    def adapter(self, backend: Union[str, BackendName, None]) -> BackendAdapter:
        """获取后端适配器

        Raises:
            BackendError: 后端未注册
        """
        name = self.resolve_backend(backend)
        adapter = self._adapters.get(name)
        if adapter is None:
            raise BackendError(f"后端未注册: {name.value}")
        return adapter

    def get(self, backend: Union[str, BackendName, None]) -> Optional[BackendAdapter]:
        return self._adapters.get(self.resolve_backend(backend))

    async def list_clients(
        self, buffer: int, backend: Union[str, BackendName, None] = None
    ) -> List[ClientDescriptor]:
        """列出附加到缓冲区的客户端

        没有服务器时返回空列表，枚举失败也视为没有服务器。
        """
        adapter = self.adapter(backend)
        try:
            return await adapter.list_clients(buffer)
        except (BackendError, ChannelError) as e:
            logger.warning(f"{adapter.name.value} 枚举客户端失败: {e}")
            return []
