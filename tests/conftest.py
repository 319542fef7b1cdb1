"""pytest 配置"""

import sys
from pathlib import Path

import pytest

# 添加项目根目录到 Python 路径
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

from lspfinder.backends.base import BackendName, ClientDescriptor  # noqa: E402
from lspfinder.items import ItemContext, RequestContext  # noqa: E402
from lspfinder.lsp.protocol import Method, OffsetEncoding, path_to_uri  # noqa: E402
from lspfinder.testing import MemoryEditor  # noqa: E402


@pytest.fixture
def workspace_dir(tmp_path):
    """创建临时工作目录"""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return str(workspace)


@pytest.fixture
def editor(workspace_dir):
    """内存编辑器 (工作目录为临时目录)"""
    return MemoryEditor(cwd=workspace_dir)


@pytest.fixture
def request_context(workspace_dir):
    """缓冲区 1 的请求上下文"""
    return RequestContext(buffer=1, window=0, cwd=workspace_dir)


@pytest.fixture
def client():
    """utf-16 客户端"""
    return ClientDescriptor(backend=BackendName.NVIM_LSP, id=1, name="tsserver")


@pytest.fixture
def make_context(client):
    """按方法创建条目上下文"""

    def factory(method, encoding=None, buffer=1):
        descriptor = client
        if encoding is not None:
            descriptor = ClientDescriptor(
                backend=client.backend,
                id=client.id,
                offset_encoding=OffsetEncoding(encoding),
                name=client.name,
            )
        return ItemContext(client=descriptor, buffer=buffer, method=Method(method))

    return factory


@pytest.fixture
def file_uri(workspace_dir):
    """工作目录下文件的 URI"""

    def factory(name):
        return path_to_uri(str(Path(workspace_dir) / name))

    return factory
