# planner.py
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from .graph import ModuleGraph
from .model import ALL_REPOSITORIES


def _extend_unique(target: List[str], items: Sequence[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


class TestPlanner:
    """
    Decides which modules have to be tested in this run.

    Resolution order:
      1. explicit entry points -> their dependency closure
      2. `only` mode          -> test modules of the named repositories
      3. named repositories   -> own test modules plus the test modules of
                                 every repository that depends on them
      4. "all"                -> every test module

    The list is computed on first use and kept for the lifetime of the
    planner instance.
    """
    __test__ = False  # not a pytest class

    def __init__(
        self,
        graph: ModuleGraph,
        *,
        repos: Sequence[str] = (ALL_REPOSITORIES,),
        only: bool = False,
        entry: Sequence[str] = (),
    ):
        self._graph = graph
        self._repos = list(repos) or [ALL_REPOSITORIES]
        self._only = only
        self._entry = list(entry)
        self._required: Optional[List[str]] = None

    @property
    def by_entry(self) -> bool:
        return bool(self._entry)

    @property
    def required_modules(self) -> List[str]:
        if self._required is None:
            self._required = self._resolve()
        return self._required

    def _resolve(self) -> List[str]:
        graph = self._graph
        result: List[str] = []

        if self._entry:
            graph.require(self._entry)
            return graph.get_child_modules(self._entry)

        if self._only:
            for repo in self._repos:
                _extend_unique(result, graph.test_modules_of(repo))
            return result

        if ALL_REPOSITORIES not in self._repos:
            for repo in self._repos:
                own_tests = graph.test_modules_of(repo)
                _extend_unique(result, own_tests or graph.modules_of(repo))

                for name in graph.get_parent_modules(graph.modules_of(repo)):
                    module = graph.get(name)
                    if module is not None:
                        _extend_unique(result, graph.test_modules_of(module.repository))
            return result

        return graph.test_modules_of(ALL_REPOSITORIES)

    def key_of(self, name: str) -> str:
        """Scheduling key: the module itself for entry runs, else its repository."""
        if self._entry:
            return name
        module = self._graph.get(name)
        return module.repository if module is not None else name

    def plan(self) -> List[Tuple[str, List[str]]]:
        """Ordered (key, modules) pairs, one per scheduling key."""
        groups: Dict[str, List[str]] = {}
        for name in self.required_modules:
            module = self._graph.get(name)
            if module is None or not module.has_unit_test:
                continue
            groups.setdefault(self.key_of(name), []).append(name)
        return list(groups.items())

    def test_keys(self) -> List[str]:
        return [key for key, _ in self.plan()]

    def modules_for(self, key: str) -> List[str]:
        for k, modules in self.plan():
            if k == key:
                return modules
        return []
