"""请求分发器

把一个逻辑请求并发发送给后端的所有客户端，汇总各客户端的结果并分类:

- OK: 所有客户端都有响应
- PARTIAL: 部分客户端失败 (失败原因只记录日志)
- NO_SERVER: 没有附加的服务器
- UNSUPPORTED: 所有客户端都不支持该方法
- FAILED: 所有客户端都失败
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .backends.base import (
    BackendError,
    BackendName,
    ClientId,
    ClientDescriptor,
    MalformedResponseError,
    NoResponseError,
    UnsupportedMethodError,
)
from .channel import ChannelError
from .lsp.protocol import Method
from .registry import ClientRegistry

logger = logging.getLogger(__name__)

# 一次分发的总期限 (秒)
DEFAULT_DISPATCH_TIMEOUT = 10.0

ParamsFactory = Callable[[ClientDescriptor], Awaitable[Any]]


class DispatchStatus(str, Enum):
    """分发结果状态"""

    OK = "ok"
    PARTIAL = "partial"
    NO_SERVER = "no_server"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


@dataclass
class PerClientResult:
    """单个客户端的结果 (result 为 None 表示没有数据)"""

    client: ClientDescriptor
    result: Any


ResultCallback = Callable[[PerClientResult], Union[None, Awaitable[None]]]


@dataclass
class DispatchOutcome:
    """分发结果"""

    status: DispatchStatus
    method: Method
    results: List[PerClientResult] = field(default_factory=list)
    errors: Dict[ClientId, BackendError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """是否至少有一个客户端响应"""
        return self.status in (DispatchStatus.OK, DispatchStatus.PARTIAL)

    @property
    def message(self) -> Optional[str]:
        """面向用户的提示"""
        if self.status == DispatchStatus.NO_SERVER:
            return "没有附加到当前缓冲区的语言服务器"
        if self.status == DispatchStatus.UNSUPPORTED:
            return f"所有语言服务器都不支持 {self.method.value}"
        if self.status == DispatchStatus.FAILED:
            return f"{self.method.value} 请求失败"
        return None


class RequestDispatcher:
    """请求分发器"""

    def __init__(self, registry: ClientRegistry, timeout: float = DEFAULT_DISPATCH_TIMEOUT):
        self.registry = registry
        self.timeout = timeout

    async def dispatch(
        self,
        backend: Union[str, BackendName, None],
        buffer: int,
        method: Method,
        params: Union[Any, ParamsFactory],
        on_result: Optional[ResultCallback] = None,
    ) -> DispatchOutcome:
        """向后端的所有客户端发送请求

        Args:
            backend: 后端名称，None 为默认后端
            buffer: 缓冲区
            method: LSP 方法
            params: 请求参数，或按客户端生成参数的异步函数
            on_result: 每个客户端响应后立即调用 (计入分发期限，应尽快返回)

        Returns:
            DispatchOutcome，不会因单个客户端失败而抛出异常
        """
        method = Method(method)
        clients = await self.registry.list_clients(buffer, backend)
        if not clients:
            return DispatchOutcome(status=DispatchStatus.NO_SERVER, method=method)

        adapter = self.registry.adapter(backend)
        tasks: Dict[asyncio.Task, ClientDescriptor] = {
            asyncio.ensure_future(
                self._request_client(adapter, client, method, params, buffer, on_result)
            ): client
            for client in clients
        }
        try:
            done, pending = await asyncio.wait(tasks, timeout=self.timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        outcome = DispatchOutcome(status=DispatchStatus.OK, method=method)
        for task in pending:
            task.cancel()
            client = tasks[task]
            outcome.errors[client.id] = NoResponseError(f"服务器 {client.label} 无响应")
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        # 按客户端顺序收集，保证结果顺序稳定
        for task, client in tasks.items():
            if task not in done:
                continue
            error = task.exception()
            if error is None:
                outcome.results.append(task.result())
            elif isinstance(error, (BackendError, ChannelError)):
                outcome.errors[client.id] = (
                    error if isinstance(error, BackendError) else BackendError(str(error))
                )
            else:
                raise error

        outcome.status = self._classify(outcome)
        for client_id, error in outcome.errors.items():
            logger.info(f"客户端 {client_id} {method.value} 失败: {error}")
        return outcome

    async def _request_client(
        self,
        adapter,
        client: ClientDescriptor,
        method: Method,
        params: Union[Any, ParamsFactory],
        buffer: int,
        on_result: Optional[ResultCallback],
    ) -> PerClientResult:
        if await adapter.supports(client, method) is False:
            raise UnsupportedMethodError(f"{client.label} 不支持 {method.value}")

        client_params = await params(client) if callable(params) else params
        try:
            result = await adapter.request(client, method, client_params, buffer)
        except MalformedResponseError as e:
            logger.warning(f"{client.label} 响应格式不正确: {e}")
            result = None

        per_client = PerClientResult(client=client, result=result)
        if on_result is not None:
            ret = on_result(per_client)
            if inspect.isawaitable(ret):
                await ret
        return per_client

    def _classify(self, outcome: DispatchOutcome) -> DispatchStatus:
        if outcome.results:
            return DispatchStatus.PARTIAL if outcome.errors else DispatchStatus.OK
        if all(isinstance(e, UnsupportedMethodError) for e in outcome.errors.values()):
            return DispatchStatus.UNSUPPORTED
        return DispatchStatus.FAILED

    async def request_one(
        self,
        client: ClientDescriptor,
        method: Method,
        params: Any,
        buffer: int,
    ) -> Any:
        """向单个客户端发送请求 (展开节点、resolve 等)

        Raises:
            BackendError: 请求失败
        """
        adapter = self.registry.adapter(client.backend)
        try:
            return await adapter.request(client, Method(method), params, buffer)
        except ChannelError as e:
            raise BackendError(str(e)) from e
