# graph.py
from __future__ import annotations

import json
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .descriptor import Descriptor, parse_descriptor
from .errors import ConfigError, GraphWarning
from .model import ALL_REPOSITORIES, CDN_REPOSITORY, Module
from .ui.console import get_console

# ---------------------------------------------------------------------
# Cycle overrides
# ---------------------------------------------------------------------
# Some real dependencies cannot be written into a descriptor without creating
# a cycle between repositories. They are listed here and merged into the
# graph once, after scanning. Bump the version whenever the table changes.
#
# Remove an entry once the owning module can declare the dependency itself.
# ---------------------------------------------------------------------

CYCLE_OVERRIDES_VERSION = 2
CYCLE_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "WS.Core": ("Types", "Env", "View", "Vdom", "UI", "Browser"),
    "UI": ("SbisEnvUI", "SbisEnvUI-default-theme"),
}

PARSE_CONCURRENCY = 4


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


class ModuleGraph:
    """
    Modules of every repository plus their dependency edges.

    Built once per run, frozen afterwards; readers may share it between
    threads.
    """

    def __init__(
        self,
        *,
        store: str | Path | None = None,
        map_file: str | Path | None = None,
        overrides: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self._modules: Dict[str, Module] = {}
        self._store = Path(store).resolve() if store else None
        self._map_file = Path(map_file) if map_file else None
        self._overrides = dict(CYCLE_OVERRIDES if overrides is None else overrides)
        self._overrides_applied = False
        self._frozen = False
        self.warnings: List[GraphWarning] = []

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[Module]:
        return self._modules.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __iter__(self) -> Iterator[Module]:
        return iter(self._modules.values())

    def __len__(self) -> int:
        return len(self._modules)

    @property
    def names(self) -> List[str]:
        return list(self._modules)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def modules_of(self, repository: str) -> List[str]:
        """Module names owned by `repository` ("all" matches every repository)."""
        return [
            m.name for m in self._modules.values()
            if repository == ALL_REPOSITORIES or m.repository == repository
        ]

    def test_modules_of(self, repository: str) -> List[str]:
        return [n for n in self.modules_of(repository) if self._modules[n].has_unit_test]

    def entry_modules(self) -> List[str]:
        return [m.name for m in self._modules.values() if m.entry]

    def cdn_modules(self) -> List[str]:
        return [m.name for m in self._modules.values() if m.is_cdn_asset]

    def required_repositories(self, modules: Iterable[str]) -> Set[str]:
        """Repositories that own the dependency closure of `modules`."""
        repos = {CDN_REPOSITORY}
        for name in self.get_child_modules(modules):
            repos.add(self._modules[name].repository)
        return repos

    # ------------------------------------------------------------------
    # Closures
    # ------------------------------------------------------------------

    def get_child_modules(self, seed: Iterable[str]) -> List[str]:
        """
        Dependency closure of `seed`.

        Seed members come first (in the order given), followed by their
        transitive dependencies in first-seen order. Names the graph does
        not know are dropped. The visited set stops traversal on a cycle.
        """
        result: List[str] = []
        visited: Set[str] = set()

        for name in seed:
            if name in self._modules and name not in visited:
                visited.add(name)
                result.append(name)

        i = 0
        while i < len(result):
            for dep in self._modules[result[i]].depends_on:
                if dep in self._modules and dep not in visited:
                    visited.add(dep)
                    result.append(dep)
            i += 1

        return result

    def get_parent_modules(self, seed: Iterable[str]) -> List[str]:
        """
        Reverse dependency closure of `seed`, by fixed-point iteration:
        keep scanning all modules and adding any module that depends on
        something already in the result, until a pass adds nothing. Names
        the graph does not know are dropped.
        """
        result: List[str] = [name for name in dict.fromkeys(seed) if name in self._modules]
        members = set(result)

        changed = True
        while changed:
            changed = False
            for module in self._modules.values():
                if module.name in members:
                    continue
                if any(dep in members for dep in module.depends_on):
                    result.append(module.name)
                    members.add(module.name)
                    changed = True

        return result

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, descriptors: Sequence[Descriptor], *, rebuild: bool = False) -> None:
        """
        Populate the graph from scanned descriptors.

        A module already known from an earlier build is kept unless
        `rebuild` is set (explicit entry points always refresh). Two
        descriptors with the same name in one scan: the later one wins and
        a warning is recorded.
        """
        console = get_console()
        self._frozen = False
        self._overrides_applied = False

        persisted = self._read_map()

        with ThreadPoolExecutor(max_workers=PARSE_CONCURRENCY) as pool:
            parsed = list(pool.map(parse_descriptor, descriptors))

        seen_now: Dict[str, Module] = {}
        added_now: Dict[str, Module] = {}
        for desc, module in zip(descriptors, parsed):
            if module is None:
                continue

            if desc.repository.use_map_only:
                stored = persisted.get(module.name)
                if stored is None:
                    continue
                module.depends_on = list(stored.depends_on)

            if module.name in seen_now:
                warning = GraphWarning(
                    f"Module '{module.name}' is declared twice, using the last descriptor",
                    first=seen_now[module.name].descriptor,
                    second=module.descriptor,
                )
                self.warnings.append(warning)
                console.print_warning(str(warning))
            seen_now[module.name] = module

            known = module.name in self._modules and module.name not in added_now
            if known and not (rebuild or module.entry):
                continue

            added_now[module.name] = module
            self._modules[module.name] = module

        if rebuild:
            self._save_map(persisted)
        else:
            for name, stored in persisted.items():
                if name not in self._modules:
                    self._modules[name] = stored

        self.apply_cycle_overrides()
        self._frozen = True
        console.print_debug(f"module graph: {len(self._modules)} modules, {len(self.warnings)} warnings")

    def apply_cycle_overrides(self) -> None:
        """Merge CYCLE_OVERRIDES into the graph. Once per build."""
        if self._frozen or self._overrides_applied:
            raise RuntimeError("cycle overrides were already applied for this build")

        for name, extra in self._overrides.items():
            module = self._modules.get(name)
            if module is None:
                continue
            for dep in extra:
                if dep not in module.depends_on:
                    module.depends_on.append(dep)

        self._overrides_applied = True

    def validate(self) -> None:
        """Every dependency must name a known module."""
        for module in self._modules.values():
            missing = [d for d in module.depends_on if d not in self._modules]
            if missing:
                raise ConfigError(
                    f"Module '{module.name}' depends on unknown modules",
                    missing=", ".join(missing),
                    repository=module.repository,
                )

    def require(self, names: Iterable[str]) -> None:
        unknown = [n for n in names if n not in self._modules]
        if unknown:
            raise ConfigError("Entry point modules were not found", modules=", ".join(unknown))

    # ------------------------------------------------------------------
    # Persisted module map
    # ------------------------------------------------------------------

    def _relative(self, p: Optional[str]) -> Optional[str]:
        if p is None or self._store is None:
            return p
        return os.path.relpath(p, self._store).replace("\\", "/")

    def _absolute(self, p: Optional[str]) -> Optional[str]:
        if p is None or self._store is None or os.path.isabs(p):
            return p
        return str((self._store / p).resolve())

    def _read_map(self) -> Dict[str, Module]:
        if self._map_file is None or not self._map_file.exists():
            return {}
        try:
            raw = json.loads(self._map_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError("Module map is not valid JSON", path=str(self._map_file), error=str(e)) from e

        out: Dict[str, Module] = {}
        for name, data in raw.items():
            module = Module.from_dict({**data, "name": name})
            module.path = self._absolute(module.path)
            module.descriptor = self._absolute(module.descriptor)
            out[name] = module
        return out

    def _save_map(self, previous: Dict[str, Module]) -> None:
        if self._map_file is None:
            return
        data = {}
        for name, module in {**previous, **self._modules}.items():
            d = module.to_dict()
            d.pop("name")
            d["path"] = self._relative(module.path)
            d["descriptor"] = self._relative(module.descriptor)
            data[name] = d
        self._map_file.parent.mkdir(parents=True, exist_ok=True)
        self._map_file.write_text(_json_dumps_stable(data) + "\n", encoding="utf-8")
