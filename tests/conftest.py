"""Pytest configuration and fixtures for fleetci tests."""

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from fleetci.descriptor import find_descriptors
from fleetci.graph import ModuleGraph
from fleetci.model import Repository
from fleetci.process import ProcessResult
from fleetci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def _quiet_console():
    """Keep harness echo out of the test output."""
    set_console(Console(quiet=True))
    yield
    set_console(Console())


def write_descriptor(
    repo_root: Path,
    name: str,
    depends: Optional[List[str]] = None,
    *,
    unit_test: bool = True,
    headless_only: bool = False,
    for_cdn: bool = False,
    module_id: Optional[str] = None,
) -> Path:
    """Create <repo_root>/<name>/<name>.s3mod."""
    module_dir = repo_root / name
    module_dir.mkdir(parents=True, exist_ok=True)
    deps = "".join(f'<module name="{d}"/>' for d in depends or [])
    attrs = f' id="{module_id or name + "-id"}"'
    if for_cdn:
        attrs += ' for_cdn="1"'
    unit = ""
    if unit_test:
        unit = '<unit_test onlyNode="1"/>' if headless_only else "<unit_test/>"
    path = module_dir / f"{name}.s3mod"
    path.write_text(
        f'<?xml version="1.0" encoding="UTF-8"?>\n'
        f"<ui_module{attrs}><depends>{deps}</depends>{unit}</ui_module>\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def make_repo(tmp_path):
    """Factory: make_repo("name", {"Module": ["Dep"]}, unit_in_browser=True)."""

    def _make(name: str, modules: Dict[str, List[str]], **kwargs) -> Repository:
        root = tmp_path / "store" / name
        root.mkdir(parents=True, exist_ok=True)
        tests = kwargs.pop("tests", None)
        for mod, deps in modules.items():
            write_descriptor(root, mod, deps, unit_test=tests is None or mod in tests)
        return Repository(name=name, path=str(root.resolve()), **kwargs)

    return _make


@pytest.fixture
def build_graph():
    def _build(repositories: List[Repository], **kwargs) -> ModuleGraph:
        graph = ModuleGraph(overrides=kwargs.pop("overrides", {}), **kwargs)
        graph.build(find_descriptors(repositories))
        return graph

    return _build


class FakeHandle:
    """Stands in for fleetci.process.ProcessHandle."""

    def __init__(self, result: ProcessResult, on_wait=None):
        self.result = result
        self.on_wait = on_wait
        self.killed = False
        self.timeout = "unset"

    def wait(self, timeout=None):
        self.timeout = timeout
        if self.on_wait is not None:
            self.on_wait()
        return self.result

    def kill(self):
        self.killed = True


@pytest.fixture
def fake_handle():
    return FakeHandle
