"""动作执行

- 跳转: 在使用时补全延迟字段 (workspaceSymbol/resolve、deno 虚拟文档)，
  并把协议位置转换为编辑器位置
- 代码操作: codeAction/resolve (最多一次)、应用 WorkspaceEdit、执行命令
- 预览: 代码操作的 unified diff
"""

from __future__ import annotations

import difflib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .backends.base import BackendError
from .dispatcher import RequestDispatcher
from .editor import EditorService, decode_position, splice_lines
from .items import ActionKind, ActionRecord, Item, ResolveState
from .lsp.offset import byte_length, to_editor_offset
from .lsp.protocol import Method, OffsetEncoding, Position, Range, uri_to_path

logger = logging.getLogger(__name__)


class ResolveError(Exception):
    """使用条目时无法补全动作"""

    pass


class EditError(Exception):
    """应用 WorkspaceEdit 失败"""

    pass


@dataclass
class ResolvedLocation:
    """编辑器中的位置 (1-indexed，列为字节)"""

    buffer: int
    path: str
    lnum: int
    col: int


TextEdit = Dict[str, Any]


def normalize_text_edits(edits: List[TextEdit]) -> List[Tuple[Range, str]]:
    """交换反向范围、统一换行符，并按起点从后往前排序

    从后往前应用，前面的编辑不会使后面的位置偏移。
    """
    normalized = [
        (
            Range.from_dict(edit["range"]).normalized(),
            edit.get("newText", "").replace("\r\n", "\n").replace("\r", "\n"),
        )
        for edit in edits
    ]
    return sorted(
        normalized,
        key=lambda pair: (pair[0].start.line, pair[0].start.character),
        reverse=True,
    )


def edit_bounds(
    get_line: Callable[[int], str],
    line_count: int,
    edit_range: Range,
    new_text: str,
    encoding: OffsetEncoding,
) -> Optional[Tuple[Position, Position, List[str]]]:
    """计算一次文本替换的字节范围和新行

    Returns:
        (start, end, lines)；起点超出缓冲区末尾时返回 None，表示追加到末尾
    """
    texts = new_text.split("\n")
    if edit_range.start.line + 1 > line_count:
        return None

    start = edit_range.start.clamped()
    end = edit_range.end.clamped()
    start = Position(start.line, to_editor_offset(get_line(start.line), start.character, encoding))
    last_line = get_line(min(end.line, line_count - 1))
    last_len = byte_length(last_line)

    if end.line + 1 > line_count:
        # 部分服务器返回的范围会多出一行
        end = Position(line_count - 1, last_len)
    else:
        end = Position(end.line, to_editor_offset(last_line, end.character, encoding))
        if end.character + 1 > last_len and new_text.endswith("\n"):
            # 替换超出行尾时不额外添加空行
            texts.pop()
    end = Position(end.line, min(end.character, last_len))
    return start, end, texts


def apply_text_edits_to_lines(
    lines: List[str], edits: List[TextEdit], encoding: OffsetEncoding
) -> List[str]:
    """在行列表上应用 TextEdit[]，返回新列表"""
    result = list(lines)
    for edit_range, new_text in normalize_text_edits(edits):
        bounds = edit_bounds(
            lambda n: result[n] if 0 <= n < len(result) else "",
            len(result),
            edit_range,
            new_text,
            encoding,
        )
        if bounds is None:
            result.extend(new_text.split("\n"))
        else:
            result = splice_lines(result, *bounds)
    return result


class ActionExecutor:
    """动作执行器"""

    def __init__(self, dispatcher: RequestDispatcher, editor: EditorService):
        self.dispatcher = dispatcher
        self.editor = editor

    # ------------------------------------------------------------------
    # 跳转
    # ------------------------------------------------------------------

    async def resolve_location(self, item: Item) -> ResolvedLocation:
        """补全条目的编辑器位置 (结果缓存在 ActionRecord 上)

        Raises:
            ResolveError: 无法得到位置
        """
        action = item.action
        if action.kind == ActionKind.CODE_ACTION:
            raise ResolveError(f"代码操作没有位置: {item.label}")

        async with action.lock:
            if action.state == ResolveState.FAILED:
                raise ResolveError(f"无法解析 {item.label}: {action.error}") from action.error
            if action.lnum is None:
                try:
                    await self._resolve_location(item)
                except (BackendError, ResolveError) as e:
                    action.state = ResolveState.FAILED
                    action.error = e
                    raise ResolveError(f"无法解析 {item.label}: {e}") from e

        path = action.path or await self.editor.path_for_buffer(action.buffer)
        return ResolvedLocation(buffer=action.buffer, path=path, lnum=action.lnum, col=action.col)

    async def _resolve_location(self, item: Item) -> None:
        action = item.action
        if action.state == ResolveState.UNRESOLVED:
            action.state = ResolveState.RESOLVING
            await self._resolve_workspace_symbol(item)

        if action.range is None:
            raise ResolveError("没有位置信息")
        if action.buffer is None:
            if action.uri is None:
                raise ResolveError("没有文件或缓冲区")
            action.buffer = await self.editor.buffer_for_path(action.path)
            if action.uri.startswith("deno:"):
                await self._load_virtual_document(action)

        position = await decode_position(
            self.editor, action.buffer, action.range.start.clamped(), action.encoding
        )
        action.lnum = position.line + 1
        action.col = position.character + 1
        action.state = ResolveState.RESOLVED

    async def _resolve_workspace_symbol(self, item: Item) -> None:
        """workspaceSymbol/resolve 补全 range"""
        context = item.action.context
        resolved = await self.dispatcher.request_one(
            context.client, Method.WORKSPACE_SYMBOL_RESOLVE, item.payload, context.buffer
        )
        try:
            item.action.range = Range.from_dict(resolved["location"]["range"])
        except (KeyError, TypeError, ValueError):
            raise ResolveError("workspaceSymbol/resolve 没有返回位置") from None

    async def _load_virtual_document(self, action: ActionRecord) -> None:
        """deno 虚拟文档: 首次打开时向服务器请求内容"""
        lines = await self.editor.get_lines(action.buffer)
        if lines and lines != [""]:
            return

        context = action.context
        text = await self.dispatcher.request_one(
            context.client,
            Method.VIRTUAL_TEXT_DOCUMENT,
            {"textDocument": {"uri": action.uri}},
            context.buffer,
        )
        if not isinstance(text, str):
            return
        await self.editor.set_virtual_lines(action.buffer, text.split("\n"))
        adapter = self.dispatcher.registry.adapter(context.client.backend)
        await adapter.attach_buffer(context.client, action.buffer)

    # ------------------------------------------------------------------
    # 代码操作
    # ------------------------------------------------------------------

    async def resolve_code_action(self, item: Item) -> ActionRecord:
        """需要时发送 codeAction/resolve (每个条目最多一次)

        resolve 失败但带有命令时仍可执行命令，只记录警告。

        Raises:
            ResolveError: resolve 失败且没有可执行的命令
        """
        action = item.action
        if action.kind != ActionKind.CODE_ACTION:
            raise ResolveError(f"不是代码操作: {item.label}")

        async with action.lock:
            if action.state == ResolveState.FAILED:
                raise ResolveError(f"codeAction/resolve 失败: {action.error}") from action.error
            if action.state != ResolveState.UNRESOLVED:
                return action

            action.state = ResolveState.RESOLVING
            context = action.context
            adapter = self.dispatcher.registry.adapter(context.client.backend)
            if await adapter.supports(context.client, Method.CODE_ACTION_RESOLVE) is False:
                action.state = ResolveState.RESOLVED
                return action

            try:
                resolved = await self.dispatcher.request_one(
                    context.client, Method.CODE_ACTION_RESOLVE, item.payload, context.buffer
                )
            except BackendError as e:
                if action.command is not None:
                    logger.warning(f"codeAction/resolve 失败，仅执行命令: {e}")
                    action.state = ResolveState.RESOLVED
                    return action
                action.state = ResolveState.FAILED
                action.error = e
                raise ResolveError(f"codeAction/resolve 失败: {e}") from e

            if isinstance(resolved, dict):
                action.edit = resolved.get("edit")
                if action.command is None:
                    action.command = resolved.get("command")
            action.state = ResolveState.RESOLVED
            return action

    async def apply_code_action(self, item: Item) -> None:
        """应用代码操作: 先应用编辑，再执行命令

        Raises:
            ResolveError: 没有可执行的内容
            EditError: 应用编辑失败
            BackendError: 执行命令失败
        """
        action = await self.resolve_code_action(item)
        if action.edit is None and action.command is None:
            raise ResolveError(f"代码操作没有可执行的内容: {item.label}")

        if action.edit is not None:
            await self.apply_edit(action.edit, action.encoding)
        if action.command is not None:
            command = {"command": action.command["command"]}
            if action.command.get("arguments") is not None:
                command["arguments"] = action.command["arguments"]
            context = action.context
            await self.dispatcher.request_one(
                context.client, Method.EXECUTE_COMMAND, command, context.buffer
            )

    # ------------------------------------------------------------------
    # WorkspaceEdit
    # ------------------------------------------------------------------

    async def apply_edit(
        self, edit: dict, encoding: OffsetEncoding = OffsetEncoding.UTF16
    ) -> None:
        """应用 WorkspaceEdit (documentChanges 优先于 changes)

        Raises:
            EditError: 文件操作失败或格式错误
        """
        encoding = OffsetEncoding.parse(encoding)
        try:
            if edit.get("documentChanges"):
                for change in edit["documentChanges"]:
                    kind = change.get("kind")
                    if kind is None:
                        path = uri_to_path(change["textDocument"]["uri"])
                        buffer = await self.editor.buffer_for_path(path)
                        await self.apply_text_edits(buffer, change["edits"], encoding)
                    elif kind == "create":
                        await self._create_file(change)
                    elif kind == "rename":
                        await self._rename_file(change)
                    elif kind == "delete":
                        await self._delete_file(change)
                    else:
                        raise EditError(f"未知的文件操作: {kind}")
                return

            for uri, edits in (edit.get("changes") or {}).items():
                buffer = await self.editor.buffer_for_path(uri_to_path(uri))
                await self.apply_text_edits(buffer, edits, encoding)
        except (KeyError, TypeError, ValueError) as e:
            raise EditError(f"WorkspaceEdit 格式不正确: {e!r}") from e
        except OSError as e:
            raise EditError(f"文件操作失败: {e}") from e

    async def apply_text_edits(
        self, buffer: int, edits: List[TextEdit], encoding: OffsetEncoding
    ) -> None:
        """在缓冲区上应用 TextEdit[]"""
        if not edits:
            return

        for edit_range, new_text in normalize_text_edits(edits):
            line_count = await self.editor.line_count(buffer)
            lines: Dict[int, str] = {}
            last = max(line_count - 1, 0)
            for line in (edit_range.start.line, edit_range.end.line):
                line = min(max(line, 0), last)
                if line not in lines:
                    lines[line] = await self.editor.get_line(buffer, line)

            bounds = edit_bounds(
                lambda n: lines.get(n, ""), line_count, edit_range, new_text, encoding
            )
            if bounds is None:
                await self.editor.append_lines(buffer, new_text.split("\n"))
            else:
                await self.editor.set_text(buffer, *bounds)

    async def _create_file(self, change: dict) -> None:
        path = Path(uri_to_path(change["uri"]))
        options = change.get("options") or {}
        if not path.exists() or options.get("overwrite") or not options.get("ignoreIfExists"):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"")
        await self.editor.buffer_for_path(str(path))

    async def _rename_file(self, change: dict) -> None:
        old_path = uri_to_path(change["oldUri"])
        new_path = uri_to_path(change["newUri"])
        options = change.get("options") or {}

        if os.path.exists(new_path):
            if not options.get("overwrite") or options.get("ignoreIfExists"):
                logger.info(f"重命名目标已存在，跳过: {new_path}")
                return
            _remove(new_path, recursive=True)

        os.rename(old_path, new_path)
        await self.editor.rename_path(old_path, new_path)

    async def _delete_file(self, change: dict) -> None:
        path = uri_to_path(change["uri"])
        options = change.get("options") or {}
        if not os.path.exists(path):
            if not options.get("ignoreIfNotExists"):
                raise EditError(f"无法删除不存在的文件或目录: {path}")
            return

        _remove(path, recursive=bool(options.get("recursive")))
        buffer = await self.editor.find_buffer(path)
        if buffer is not None:
            await self.editor.delete_buffer(buffer)

    # ------------------------------------------------------------------
    # 预览
    # ------------------------------------------------------------------

    async def preview(self, item: Item, cwd: Optional[str] = None) -> List[str]:
        """代码操作的预览 (unified diff)"""
        action = await self.resolve_code_action(item)
        cwd = cwd or os.getcwd()

        if action.edit is not None:
            patches: List[List[str]] = []
            if action.edit.get("documentChanges"):
                for change in action.edit["documentChanges"]:
                    patches.append(await self._change_patch(change, action.encoding, cwd))
            else:
                for uri, edits in (action.edit.get("changes") or {}).items():
                    patches.append(
                        await self._text_edit_patch(uri_to_path(uri), edits, action.encoding, cwd)
                    )
            return [line for patch in patches for line in patch + [""]]

        if action.command is not None:
            return [f"Command: {action.command.get('title', '')} ({action.command['command']})"]
        return []

    async def _change_patch(self, change: dict, encoding: OffsetEncoding, cwd: str) -> List[str]:
        kind = change.get("kind")
        if kind is None:
            return await self._text_edit_patch(
                uri_to_path(change["textDocument"]["uri"]), change["edits"], encoding, cwd
            )
        if kind == "create":
            path = os.path.relpath(uri_to_path(change["uri"]), cwd)
            return [
                f"diff --code-action a/{path} b/{path}",
                "new file",
                "--- /dev/null",
                f"+++ b/{path}",
            ]
        if kind == "rename":
            old_path = os.path.relpath(uri_to_path(change["oldUri"]), cwd)
            new_path = os.path.relpath(uri_to_path(change["newUri"]), cwd)
            return [
                f"diff --code-action a/{old_path} b/{new_path}",
                f"rename from {old_path}",
                f"rename to {new_path}",
            ]
        if kind == "delete":
            path = os.path.relpath(uri_to_path(change["uri"]), cwd)
            return [
                f"diff --code-action a/{path} b/{path}",
                "deleted file",
                f"--- a/{path}",
                "+++ /dev/null",
            ]
        raise EditError(f"未知的文件操作: {kind}")

    async def _text_edit_patch(
        self, path: str, edits: List[TextEdit], encoding: OffsetEncoding, cwd: str
    ) -> List[str]:
        buffer = await self.editor.buffer_for_path(path)
        old_lines = await self.editor.get_lines(buffer)
        new_lines = apply_text_edits_to_lines(old_lines, edits, encoding)

        relative = os.path.relpath(path, cwd)
        diff = difflib.unified_diff(
            old_lines, new_lines, fromfile=f"a/{relative}", tofile=f"b/{relative}", lineterm=""
        )
        return [f"diff --code-action a/{relative} b/{relative}"] + list(diff)


def _remove(path: str, recursive: bool) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        if recursive:
            shutil.rmtree(path)
        else:
            os.rmdir(path)
    else:
        os.remove(path)
