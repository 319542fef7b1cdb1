"""宿主编辑器 RPC 通道

各后端适配器通过 HostChannel 调用编辑器内的函数 (Vim script / Lua)。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional


class ChannelError(Exception):
    """宿主调用失败"""

    pass


class HostChannel(ABC):
    """宿主编辑器通道抽象基类"""

    @property
    @abstractmethod
    def host(self) -> str:
        """宿主类型: "nvim" 或 "vim" """
        pass

    @abstractmethod
    async def call(self, fn: str, *args: Any) -> Any:
        """调用宿主函数"""
        pass

    @abstractmethod
    async def eval(self, expr: str, context: Optional[Dict[str, Any]] = None) -> Any:
        """在宿主中求值表达式，context 中的键可用 l:name 引用"""
        pass

    @abstractmethod
    def register(self, callback: Callable[[Any], None]) -> str:
        """注册回调，返回回调 ID"""
        pass

    @abstractmethod
    def unregister(self, callback_id: str) -> None:
        """注销回调"""
        pass

    @abstractmethod
    def callback_expr(self, callback_id: str) -> str:
        """返回一个 Vim 函数引用表达式，调用它会把参数转发给已注册的回调"""
        pass
