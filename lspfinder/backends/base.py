"""后端适配器基类

每个后端把逻辑请求 (method, params) 翻译为自身的 RPC 调用，
并把返回值和诊断存储翻译回统一结构。
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from ..lsp.protocol import Diagnostic, Method, OffsetEncoding

logger = logging.getLogger(__name__)

# 单个请求的默认超时 (秒)
DEFAULT_REQUEST_TIMEOUT = 5.0

ClientId = Union[int, str]


class BackendName(str, Enum):
    """后端名称"""

    NVIM_LSP = "nvim-lsp"
    COC = "coc.nvim"
    VIM_LSP = "vim-lsp"
    STDIO = "stdio"


class UnknownBackendError(ValueError):
    """未知的后端名称"""

    pass


def parse_backend(name: Union[str, BackendName]) -> BackendName:
    """解析后端名称"""
    try:
        return BackendName(name)
    except ValueError:
        raise UnknownBackendError(f"未知的后端: {name}") from None


@dataclass(frozen=True)
class ClientDescriptor:
    """后端中的一个语言服务器客户端

    每次请求时重新创建，不跨请求缓存。
    """

    backend: BackendName
    id: ClientId
    offset_encoding: OffsetEncoding = OffsetEncoding.UTF16
    name: Optional[str] = None

    @property
    def label(self) -> str:
        """用于日志的名称"""
        return f"{self.backend.value}:{self.name or self.id}"


class BackendError(Exception):
    """后端请求错误"""

    pass


class NoResponseError(BackendError):
    """服务器无响应 (超时)"""

    pass


class UnsupportedMethodError(BackendError):
    """服务器不支持该方法"""

    pass


class MalformedResponseError(BackendError):
    """响应格式不正确"""

    pass


class BackendAdapter(ABC):
    """后端适配器抽象基类"""

    #: 诊断位置使用的编码
    diagnostic_encoding: OffsetEncoding = OffsetEncoding.UTF16

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.timeout = timeout

    @property
    @abstractmethod
    def name(self) -> BackendName:
        """后端名称"""
        pass

    @abstractmethod
    async def list_clients(self, buffer: int) -> List[ClientDescriptor]:
        """列出附加到缓冲区的客户端，没有时返回空列表"""
        pass

    @abstractmethod
    async def _request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        """发送请求 (由子类实现，无需处理超时)"""
        pass

    @abstractmethod
    async def get_diagnostics(self, buffers: Optional[Sequence[int]]) -> List[Diagnostic]:
        """读取后端的诊断存储

        Args:
            buffers: 缓冲区列表，None 表示全部
        """
        pass

    async def supports(self, client: ClientDescriptor, method: Method) -> Optional[bool]:
        """客户端是否支持该方法，无法判断时返回 None"""
        return None

    async def attach_buffer(self, client: ClientDescriptor, buffer: int) -> None:
        """把客户端附加到新建的缓冲区 (虚拟文档)"""
        pass

    async def request(
        self, client: ClientDescriptor, method: Method, params: Any, buffer: int
    ) -> Any:
        """发送请求

        Returns:
            原始结果，None 表示没有数据

        Raises:
            NoResponseError: 超时
            UnsupportedMethodError: 不支持该方法
            BackendError: 其他错误
        """
        method = Method(method)
        logger.debug(f"{client.label} 请求 {method.value}")
        try:
            return await asyncio.wait_for(
                self._request(client, method, params, buffer), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise NoResponseError(f"服务器 {client.label} 无响应: {method.value}") from None

    def descriptor(
        self,
        client_id: ClientId,
        offset_encoding: Optional[str] = None,
        name: Optional[str] = None,
    ) -> ClientDescriptor:
        """创建客户端描述"""
        return ClientDescriptor(
            backend=self.name,
            id=client_id,
            offset_encoding=OffsetEncoding.parse(offset_encoding),
            name=name,
        )


def ensure_dict(value: Any, what: str) -> dict:
    """校验响应为字典"""
    if not isinstance(value, dict):
        raise MalformedResponseError(f"{what} 格式不正确: {type(value).__name__}")
    return value


def ensure_list(value: Any, what: str) -> list:
    """校验响应为列表 (None 视为空列表)"""
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedResponseError(f"{what} 格式不正确: {type(value).__name__}")
    return value
