"""结果归一化测试"""

from pathlib import Path

import pytest

from lspfinder.items import ActionKind, Item, ResolveState
from lspfinder.lsp.protocol import Method, OffsetEncoding, Position
from lspfinder.normalizers import (
    is_command,
    is_deno_fragment_uri,
    normalize,
    normalize_calls,
    normalize_hierarchy_items,
)
from lspfinder.normalizers.common import PathAllocator, display_path, kind_label


def rng(line, character, end_line=None, end_character=None):
    return {
        "start": {"line": line, "character": character},
        "end": {
            "line": line if end_line is None else end_line,
            "character": character if end_character is None else end_character,
        },
    }


class TestCommon:
    """公共工具测试"""

    def test_display_path_relative_inside_cwd(self):
        assert display_path("/work/src/a.ts", "/work") == "src/a.ts"

    def test_display_path_outside_cwd(self):
        assert display_path("/other/a.ts", "/work") == "/other/a.ts"
        assert display_path("/workspace/a.ts", "/work") == "/workspace/a.ts"

    def test_kind_label(self):
        assert kind_label(12, "main").startswith("[Function]")
        assert kind_label(12, "main").endswith(" main")
        assert kind_label(999, "x").startswith("[Unknown]")

    def test_path_allocator_suffixes_duplicates(self):
        paths = PathAllocator(("root",))
        assert paths.allocate("f") == ("root", "f")
        assert paths.allocate("f") == ("root", "f#2")
        assert paths.allocate("f") == ("root", "f#3")
        assert paths.allocate("g") == ("root", "g")

    def test_deno_fragment_uri(self):
        assert is_deno_fragment_uri("deno:/https/deno.land/x/mod.ts%23%5E")
        assert not is_deno_fragment_uri("deno:/asset/lib.deno.d.ts")
        assert not is_deno_fragment_uri(None)


class TestLocations:
    """跳转类结果测试"""

    def test_definition_display(self, make_context, request_context, file_uri):
        """测试跳转条目显示为 相对路径:行:列 (1-indexed)"""
        result = {"uri": file_uri("x.ts"), "range": rng(4, 10, 4, 11)}
        items = normalize(result, make_context(Method.DEFINITION), request_context)

        assert len(items) == 1
        item = items[0]
        assert item.label == "x.ts"
        assert item.display.endswith("x.ts:5:11")
        assert item.is_tree is False
        assert item.action.kind == ActionKind.LOCATION
        assert item.action.range.start == Position(4, 10)
        assert item.action.encoding == OffsetEncoding.UTF16

    def test_location_links_and_lists(self, make_context, request_context, file_uri):
        result = [
            {"uri": file_uri("a.ts"), "range": rng(0, 0)},
            {
                "targetUri": file_uri("b.ts"),
                "targetRange": rng(0, 0, 10, 0),
                "targetSelectionRange": rng(2, 3),
            },
        ]
        items = normalize(result, make_context(Method.REFERENCES), request_context)
        assert [item.display for item in items] == ["a.ts:1:1", "b.ts:3:4"]

    def test_empty_results(self, make_context, request_context):
        assert normalize(None, make_context(Method.DEFINITION), request_context) == []
        assert normalize([], make_context(Method.DEFINITION), request_context) == []

    def test_malformed_entries_dropped(self, make_context, request_context, file_uri):
        """测试格式错误的条目被丢弃，其余条目保留"""
        result = [
            {"uri": file_uri("a.ts")},
            "garbage",
            {"uri": file_uri("b.ts"), "range": rng(1, 1)},
        ]
        items = normalize(result, make_context(Method.IMPLEMENTATION), request_context)
        assert [item.label for item in items] == ["b.ts"]

    def test_deno_fragment_dropped(self, make_context, request_context):
        result = [{"uri": "deno:/https/deno.land/x/mod.ts%23%5E", "range": rng(0, 0)}]
        assert normalize(result, make_context(Method.DEFINITION), request_context) == []

    def test_encoding_from_client(self, make_context, request_context, file_uri):
        result = {"uri": file_uri("x.ts"), "range": rng(0, 3)}
        items = normalize(result, make_context(Method.DEFINITION, "utf-8"), request_context)
        assert items[0].action.encoding == OffsetEncoding.UTF8

    def test_not_listable(self, make_context, request_context):
        with pytest.raises(ValueError):
            normalize([], make_context(Method.EXECUTE_COMMAND), request_context)


class TestDocumentSymbols:
    """documentSymbol 测试"""

    def test_nested_symbols(self, make_context, request_context):
        """测试嵌套符号一次性构建，兄弟节点按位置排序"""
        result = [
            {
                "name": "Calculator",
                "kind": 5,
                "range": rng(10, 0, 30, 0),
                "selectionRange": rng(10, 6, 10, 16),
                "children": [
                    {"name": "sub", "kind": 6, "range": rng(20, 4, 25, 0), "selectionRange": rng(20, 8)},
                    {"name": "add", "kind": 6, "range": rng(12, 4, 18, 0), "selectionRange": rng(12, 8)},
                ],
            },
            {"name": "hello", "kind": 12, "range": rng(1, 0, 3, 0), "selectionRange": rng(1, 4)},
        ]
        items = normalize(result, make_context(Method.DOCUMENT_SYMBOL), request_context)

        assert [item.tree_path for item in items] == [("hello",), ("Calculator",)]
        hello, calculator = items
        assert hello.is_tree is False
        assert calculator.is_tree is True
        assert calculator.action.range.start == Position(10, 6)
        assert calculator.action.buffer == 1
        assert [child.tree_path for child in calculator.children] == [
            ("Calculator", "add"),
            ("Calculator", "sub"),
        ]
        assert all(child.level == 1 for child in calculator.children)

    def test_duplicate_names(self, make_context, request_context):
        result = [
            {"name": "f", "kind": 12, "range": rng(1, 0), "selectionRange": rng(1, 0)},
            {"name": "f", "kind": 12, "range": rng(5, 0), "selectionRange": rng(5, 0)},
        ]
        items = normalize(result, make_context(Method.DOCUMENT_SYMBOL), request_context)
        assert [item.tree_path for item in items] == [("f",), ("f#2",)]

    def test_symbol_information(self, make_context, request_context, file_uri):
        result = [
            {"name": "b", "kind": 13, "location": {"uri": file_uri("a.ts"), "range": rng(9, 0)}},
            {"name": "a", "kind": 13, "location": {"uri": file_uri("a.ts"), "range": rng(2, 0)}},
        ]
        items = normalize(result, make_context(Method.DOCUMENT_SYMBOL), request_context)
        assert [item.payload["name"] for item in items] == ["a", "b"]
        assert all(item.is_leaf for item in items)


class TestWorkspaceSymbols:
    """workspace/symbol 测试"""

    def test_symbol_without_range_needs_resolve(self, make_context, request_context, file_uri):
        result = [
            {"name": "Full", "kind": 5, "location": {"uri": file_uri("a.ts"), "range": rng(3, 6)}},
            {"name": "Lazy", "kind": 5, "location": {"uri": file_uri("b.ts")}},
        ]
        items = normalize(result, make_context(Method.WORKSPACE_SYMBOL), request_context)

        full, lazy = items
        assert full.action.state == ResolveState.RESOLVED
        assert not full.action.needs_resolve
        assert lazy.action.state == ResolveState.UNRESOLVED
        assert lazy.action.range is None
        assert lazy.action.needs_resolve


class TestCodeActions:
    """codeAction 测试"""

    def test_command_and_code_action(self, make_context, request_context):
        result = [
            {"title": "Organize imports", "command": "organize", "arguments": [1]},
            {"title": "Fix it", "kind": "quickfix", "edit": {"changes": {}}},
            {"title": "Extract", "kind": "refactor.extract", "data": {"id": 7}},
        ]
        items = normalize(result, make_context(Method.CODE_ACTION), request_context)

        command, fix, extract = items
        assert is_command(command.payload)
        assert command.action.command["command"] == "organize"
        assert command.action.state == ResolveState.RESOLVED
        assert fix.display == "[quickfix] Fix it"
        assert fix.action.state == ResolveState.RESOLVED
        assert extract.action.state == ResolveState.UNRESOLVED
        assert all(item.action.kind == ActionKind.CODE_ACTION for item in items)

    def test_missing_title_dropped(self, make_context, request_context):
        items = normalize([{"kind": "quickfix"}], make_context(Method.CODE_ACTION), request_context)
        assert items == []


class TestHierarchy:
    """调用层级与类型层级测试"""

    def _prepare_item(self, uri, name="main"):
        return {
            "name": name,
            "kind": 12,
            "uri": uri,
            "range": rng(0, 0, 9, 0),
            "selectionRange": rng(0, 9, 0, 13),
        }

    def test_prepare_uses_selection_range(self, make_context, request_context, file_uri):
        result = [self._prepare_item(file_uri("a.ts"))]
        items = normalize(result, make_context(Method.PREPARE_CALL_HIERARCHY), request_context)

        assert items[0].tree_path == ("main",)
        assert items[0].is_tree is None
        assert items[0].action.range.start == Position(0, 9)

    def test_incoming_calls_dedup_ranges(self, make_context, request_context, file_uri):
        """测试 incomingCalls 每个不同的 fromRange 生成一个条目"""
        parent = normalize_hierarchy_items(
            [self._prepare_item(file_uri("a.ts"))],
            make_context(Method.PREPARE_CALL_HIERARCHY),
            request_context,
        )[0]
        result = [
            {
                "from": self._prepare_item(file_uri("b.ts"), "caller"),
                "fromRanges": [rng(3, 4, 3, 8), rng(3, 4, 3, 8), rng(7, 2, 7, 6)],
            }
        ]
        items = normalize_calls(
            result, make_context(Method.INCOMING_CALLS), request_context, parent=parent
        )

        assert [item.display for item in items] == ["caller (b.ts:4:5)", "caller (b.ts:8:3)"]
        assert items[0].tree_path == ("main", "caller (b.ts:4:5)")
        assert all(item.level == 1 for item in items)
        assert items[0].payload["name"] == "caller"

    def test_outgoing_calls_use_parent_file(self, make_context, request_context, file_uri):
        parent = normalize_hierarchy_items(
            [self._prepare_item(file_uri("a.ts"))],
            make_context(Method.PREPARE_CALL_HIERARCHY),
            request_context,
        )[0]
        result = [{"to": self._prepare_item(file_uri("c.ts"), "callee"), "fromRanges": [rng(2, 4)]}]
        items = normalize_calls(
            result, make_context(Method.OUTGOING_CALLS), request_context, parent=parent
        )

        assert items[0].action.uri == file_uri("a.ts")
        assert items[0].display == "callee (a.ts:3:5)"
        assert items[0].payload["uri"] == file_uri("c.ts")

    def test_type_hierarchy_children(self, make_context, request_context, file_uri):
        items = normalize_hierarchy_items(
            [self._prepare_item(file_uri("a.ts"), "Base")],
            make_context(Method.SUPERTYPES),
            request_context,
            parent=("Derived",),
            level=1,
        )
        assert items[0].tree_path == ("Derived", "Base")
        assert items[0].level == 1


class TestItemSerialization:
    """Item.to_dict 测试"""

    def test_to_dict(self, make_context, request_context, file_uri):
        item: Item = normalize(
            {"uri": file_uri("x.ts"), "range": rng(4, 10)},
            make_context(Method.DEFINITION),
            request_context,
        )[0]
        data = item.to_dict()

        assert data["word"] == "x.ts"
        assert data["isTree"] is False
        assert data["action"]["kind"] == "location"
        assert data["action"]["encoding"] == "utf-16"
        assert data["action"]["client"] == "nvim-lsp:tsserver"
        assert Path(data["action"]["uri"][len("file://"):]).name == "x.ts"
