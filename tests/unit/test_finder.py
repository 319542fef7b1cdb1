"""LspFinder 测试"""

import asyncio

import pytest

from lspfinder.backends.base import BackendError, BackendName
from lspfinder.config import FinderConfig
from lspfinder.finder import ListOptions, LspFinder
from lspfinder.items import ActionKind, RequestContext
from lspfinder.lsp.protocol import (
    Diagnostic,
    DiagnosticSeverity,
    Method,
    Position,
    Range,
    path_to_uri,
)
from lspfinder.registry import ClientRegistry
from lspfinder.testing import FakeChannel, StaticAdapter


def rng(line, character, end_character=None):
    return {
        "start": {"line": line, "character": character},
        "end": {"line": line, "character": character if end_character is None else end_character},
    }


async def collect(batches):
    return [batch async for batch in batches]


BOX_SYMBOLS = [
    {
        "name": "Box",
        "kind": 5,
        "range": rng(0, 0),
        "selectionRange": rng(0, 6),
        "children": [
            {"name": "open", "kind": 6, "range": rng(1, 2), "selectionRange": rng(1, 2)}
        ],
    }
]


@pytest.fixture
def main_path(editor, workspace_dir):
    path = f"{workspace_dir}/main.ts"
    editor.add_buffer(path, "const a = 1\nfoo(a)\n", filetype="typescript")
    editor.cursor = Position(1, 4)
    return path


@pytest.fixture
def adapter():
    return StaticAdapter(clients=[1, 2])


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def finder(editor, adapter, notifications, main_path):
    registry = ClientRegistry(adapter.name)
    registry.register(adapter)
    return LspFinder(editor, registry, FinderConfig(), notify=notifications.append)


class TestListLocations:
    """跳转类列表测试"""

    @pytest.mark.asyncio
    async def test_definition(self, finder, adapter, request_context, workspace_dir):
        """测试每个客户端一批条目"""
        adapter.responses[(1, Method.DEFINITION)] = {
            "uri": path_to_uri(f"{workspace_dir}/x.ts"),
            "range": rng(4, 10, 11),
        }
        adapter.responses[(2, Method.DEFINITION)] = []

        batches = await collect(finder.list_items(None, request_context, Method.DEFINITION))

        assert len(batches) == 1
        assert batches[0][0].display.endswith("x.ts:5:11")
        params = adapter.requested(Method.DEFINITION)[0][1]
        assert params["position"] == {"line": 1, "character": 4}
        assert params["textDocument"]["uri"].endswith("main.ts")

    @pytest.mark.asyncio
    async def test_fast_client_streams_first(self, finder, adapter, request_context, workspace_dir):
        slow_done = asyncio.Event()

        async def slow(params):
            await asyncio.sleep(0.2)
            slow_done.set()
            return [{"uri": path_to_uri(f"{workspace_dir}/slow.ts"), "range": rng(0, 0)}]

        adapter.responses[(1, Method.REFERENCES)] = [
            {"uri": path_to_uri(f"{workspace_dir}/fast.ts"), "range": rng(0, 0)}
        ]
        adapter.responses[(2, Method.REFERENCES)] = slow

        labels = []
        async for batch in finder.list_items(None, request_context, Method.REFERENCES):
            if not labels:
                assert not slow_done.is_set()
            labels.extend(item.label for item in batch)

        assert labels == ["fast.ts", "slow.ts"]

    @pytest.mark.asyncio
    async def test_include_declaration(self, finder, adapter, request_context):
        adapter.responses[Method.REFERENCES] = []
        await collect(
            finder.list_items(
                None, request_context, Method.REFERENCES, ListOptions(include_declaration=False)
            )
        )
        params = adapter.requested(Method.REFERENCES)[0][1]
        assert params["context"] == {"includeDeclaration": False}

    @pytest.mark.asyncio
    async def test_partial_failure_is_silent(
        self, finder, adapter, request_context, notifications, workspace_dir
    ):
        adapter.responses[(1, Method.IMPLEMENTATION)] = BackendError("crashed")
        adapter.responses[(2, Method.IMPLEMENTATION)] = [
            {"uri": path_to_uri(f"{workspace_dir}/impl.ts"), "range": rng(0, 0)}
        ]

        batches = await collect(finder.list_items(None, request_context, Method.IMPLEMENTATION))

        assert [item.label for item in batches[0]] == ["impl.ts"]
        assert notifications == []

    @pytest.mark.asyncio
    async def test_no_server(self, finder, adapter, request_context, notifications):
        adapter.clients = []
        batches = await collect(finder.list_items(None, request_context, Method.DEFINITION))

        assert batches == []
        assert notifications == ["没有附加到当前缓冲区的语言服务器"]

    @pytest.mark.asyncio
    async def test_unsupported(self, finder, request_context, notifications):
        batches = await collect(finder.list_items(None, request_context, Method.TYPE_DEFINITION))

        assert batches == []
        assert "textDocument/typeDefinition" in notifications[0]

    @pytest.mark.asyncio
    async def test_not_listable(self, finder, request_context):
        with pytest.raises(ValueError):
            await collect(finder.list_items(None, request_context, Method.EXECUTE_COMMAND))

    @pytest.mark.asyncio
    async def test_early_stop_cancels_dispatch(self, finder, adapter, request_context, workspace_dir):
        adapter.responses[(1, Method.DEFINITION)] = [
            {"uri": path_to_uri(f"{workspace_dir}/x.ts"), "range": rng(0, 0)}
        ]
        adapter.delays[2] = 5.0
        adapter.responses[(2, Method.DEFINITION)] = []

        batches = finder.list_items(None, request_context, Method.DEFINITION)
        async for batch in batches:
            break
        await batches.aclose()

        assert batch[0].label == "x.ts"


class TestListTrees:
    """树形列表测试"""

    def _item(self, workspace_dir, name, line=0):
        return {
            "name": name,
            "kind": 12,
            "uri": path_to_uri(f"{workspace_dir}/{name}.ts"),
            "range": rng(line, 0),
            "selectionRange": rng(line, 0),
        }

    def _call_chain(self, adapter, workspace_dir):
        """foo <- bar <- baz"""
        graph = {
            "foo": [{"from": self._item(workspace_dir, "bar", 3), "fromRanges": [rng(3, 2)]}],
            "bar": [{"from": self._item(workspace_dir, "baz", 7), "fromRanges": [rng(7, 1)]}],
            "baz": [],
        }
        adapter.responses[Method.PREPARE_CALL_HIERARCHY] = [self._item(workspace_dir, "foo")]
        adapter.responses[Method.INCOMING_CALLS] = lambda params: graph[params["item"]["name"]]

    @pytest.mark.asyncio
    async def test_incoming_calls(self, finder, adapter, request_context, workspace_dir):
        """测试调用层级: 先产生根节点，自动展开的子节点单独成批，再按需展开"""
        adapter.clients = adapter.clients[:1]
        self._call_chain(adapter, workspace_dir)

        batches = await collect(finder.list_items(None, request_context, Method.INCOMING_CALLS))

        [foo], [bar] = batches
        assert foo.is_expanded and bar.is_tree
        assert bar.tree_path == ("foo", "bar (bar.ts:4:3)")
        assert adapter.requested(Method.PREPARE_CALL_HIERARCHY)[0][1]["position"] == {
            "line": 1,
            "character": 4,
        }

        children = await finder.expand(bar)
        assert [child.label for child in children] == ["baz"]
        assert children[0].is_tree is False
        assert children[0].level == 2

    @pytest.mark.asyncio
    async def test_probing_not_bounded_by_dispatch_deadline(
        self, editor, adapter, request_context, workspace_dir, notifications, main_path
    ):
        """测试探测子节点的时间不计入分发期限"""
        adapter.clients = adapter.clients[:1]
        adapter.delays[1] = 0.12
        self._call_chain(adapter, workspace_dir)
        config = FinderConfig()
        config.request.dispatch_timeout = 0.3
        registry = ClientRegistry(adapter.name)
        registry.register(adapter)
        finder = LspFinder(editor, registry, config, notify=notifications.append)

        batches = await collect(finder.list_items(None, request_context, Method.INCOMING_CALLS))

        assert [[item.label for item in batch] for batch in batches] == [["foo"], ["bar"]]
        assert notifications == []

    @pytest.mark.asyncio
    async def test_document_symbols(self, finder, adapter, request_context):
        adapter.clients = adapter.clients[:1]
        adapter.responses[Method.DOCUMENT_SYMBOL] = BOX_SYMBOLS

        batches = await collect(finder.list_items(None, request_context, Method.DOCUMENT_SYMBOL))

        box = batches[0][0]
        assert box.is_tree and not box.is_expanded
        children = await finder.expand(box)
        assert [child.tree_path for child in children] == [("Box", "open")]
        params = adapter.requested(Method.DOCUMENT_SYMBOL)[0][1]
        assert list(params) == ["textDocument"]
        assert params["textDocument"]["uri"].endswith("main.ts")

    @pytest.mark.asyncio
    async def test_old_trees_evicted(self, editor, adapter, request_context, main_path):
        adapter.clients = adapter.clients[:1]
        adapter.responses[Method.DOCUMENT_SYMBOL] = BOX_SYMBOLS
        config = FinderConfig()
        config.listing.max_trees = 1
        registry = ClientRegistry(adapter.name)
        registry.register(adapter)
        finder = LspFinder(editor, registry, config)

        first = await collect(finder.list_items(None, request_context, Method.DOCUMENT_SYMBOL))
        second = await collect(finder.list_items(None, request_context, Method.DOCUMENT_SYMBOL))

        assert await finder.expand(second[0][0])
        with pytest.raises(KeyError):
            await finder.expand(first[0][0])


class TestListOthers:
    """诊断、工作区符号与代码操作测试"""

    @pytest.mark.asyncio
    async def test_diagnostics(self, finder, adapter, request_context):
        adapter.diagnostics = [
            Diagnostic(
                range=Range(Position(1, 0), Position(1, 3)),
                message="w",
                severity=DiagnosticSeverity.Warning,
                buffer=1,
            ),
            Diagnostic(
                range=Range(Position(0, 6), Position(0, 7)),
                message="e",
                severity=DiagnosticSeverity.Error,
                buffer=1,
            ),
            Diagnostic(range=Range(Position(0, 0), Position(0, 1)), message="elsewhere", buffer=9),
        ]

        batches = await collect(finder.list_items(None, request_context, Method.DIAGNOSTIC))

        assert [item.label for item in batches[0]] == ["e", "w"]
        assert all(item.action.kind == ActionKind.DIAGNOSTIC for item in batches[0])

    @pytest.mark.asyncio
    async def test_workspace_symbol_query(self, finder, adapter, request_context):
        adapter.responses[Method.WORKSPACE_SYMBOL] = []
        await collect(
            finder.list_items(None, request_context, Method.WORKSPACE_SYMBOL, ListOptions(query="Calc"))
        )
        assert adapter.requested(Method.WORKSPACE_SYMBOL)[0][1] == {"query": "Calc"}

    @pytest.mark.asyncio
    async def test_code_action_round_trip(self, finder, adapter, editor, request_context, main_path):
        """测试代码操作: 请求携带诊断，resolve 后应用编辑"""
        adapter.clients = adapter.clients[:1]
        adapter.diagnostics = [
            Diagnostic(
                range=Range(Position(1, 0), Position(1, 3)),
                message="Cannot find name 'foo'.",
                buffer=1,
            )
        ]
        adapter.responses[Method.CODE_ACTION] = [{"title": "Add import", "kind": "quickfix", "data": 1}]
        adapter.responses[Method.CODE_ACTION_RESOLVE] = lambda params: {
            **params,
            "edit": {
                "changes": {
                    path_to_uri(main_path): [
                        {"range": rng(0, 0), "newText": "import { foo } from './foo'\n"}
                    ]
                }
            },
        }

        batches = await collect(finder.list_items(None, request_context, Method.CODE_ACTION))
        item = batches[0][0]
        params = adapter.requested(Method.CODE_ACTION)[0][1]

        assert item.display == "[quickfix] Add import"
        assert params["range"] == {"start": {"line": 1, "character": 4}, "end": {"line": 1, "character": 4}}
        assert [d["message"] for d in params["context"]["diagnostics"]] == ["Cannot find name 'foo'."]

        preview = await finder.preview(item, cwd=request_context.cwd)
        assert "+import { foo } from './foo'" in preview

        await finder.apply_code_action(item)
        assert editor.text(1).startswith("import { foo } from './foo'\nconst a = 1")

    @pytest.mark.asyncio
    async def test_resolve_action(self, finder, adapter, request_context, main_path):
        adapter.responses[(1, Method.DEFINITION)] = {"uri": path_to_uri(main_path), "range": rng(1, 4)}
        adapter.responses[(2, Method.DEFINITION)] = None

        batches = await collect(finder.list_items(None, request_context, Method.DEFINITION))
        location = await finder.resolve_action(batches[0][0])

        assert (location.buffer, location.lnum, location.col) == (1, 2, 5)


class TestCreate:
    """LspFinder.create 测试"""

    def test_without_channel_only_stdio(self, editor, workspace_dir):
        config = FinderConfig(default_backend=BackendName.STDIO, workspace_dir=workspace_dir)
        finder = LspFinder.create(editor, config=config)

        assert finder.registry.get(BackendName.STDIO) is not None
        assert finder.registry.get(BackendName.NVIM_LSP) is None

    def test_with_channel(self, editor, workspace_dir):
        finder = LspFinder.create(editor, FakeChannel(), FinderConfig(workspace_dir=workspace_dir))
        for backend in BackendName:
            assert finder.registry.get(backend) is not None

    @pytest.mark.asyncio
    async def test_context(self, editor, workspace_dir):
        finder = LspFinder.create(editor, FakeChannel(), FinderConfig(workspace_dir=workspace_dir))
        context = await finder.context(3, window=1000)
        assert context == RequestContext(buffer=3, window=1000, cwd=workspace_dir)
