# changes.py
from __future__ import annotations

import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional

from .errors import ChangesetError
from .git_facts import git
from .model import Repository
from .ui.console import get_console

ChangeSet = Dict[str, List[str]]

DiffFn = Callable[[Repository, str, Optional[str]], List[str]]


def git_diff(repository: Repository, baseline: str, rc: Optional[str] = None) -> List[str]:
    """`git diff --name-only baseline..origin/rc` (or `baseline..HEAD` without rc)."""
    head = f"origin/{rc}" if rc else "HEAD"
    return git.changed_files(baseline, head, cwd=repository.path)


def _leading_segment(path: str) -> str:
    parts = PurePosixPath(path.replace("\\", "/")).parts
    return parts[0] if parts else ""


class ChangeSetResolver:
    """
    Per-repository changed paths, used to shrink the test set.

    A repository without a recorded changeset counts as fully changed.
    """

    def __init__(
        self,
        repositories: Iterable[Repository],
        *,
        enabled: bool = False,
        rc: Optional[str] = None,
        max_workers: int = 2,
        diff_fn: DiffFn = git_diff,
    ):
        self._repositories = {r.name: r for r in repositories}
        self.enabled = enabled
        self._rc = rc
        self._max_workers = max_workers
        self._diff_fn = diff_fn
        self._lock = threading.Lock()
        self.changesets: ChangeSet = {}
        self.errors: List[ChangesetError] = []
        # module name -> (repository, directory); set by bind()
        self._owners: Dict[str, tuple[str, str]] = {}

    def bind(self, modules: Iterable) -> None:
        """Remember which repository and directory each module lives in."""
        for m in modules:
            self._owners[m.name] = (m.repository, m.directory)

    def record(self, repository: str, paths: List[str]) -> None:
        with self._lock:
            self.changesets[repository] = list(paths)

    def diff(self, repository: Repository, baseline: str) -> Optional[List[str]]:
        """
        Changed paths of `repository` against `baseline`.

        Failure degrades to "no changeset" (test everything for that
        repository); the error is recorded and logged, never raised.
        """
        console = get_console()
        try:
            changed = self._diff_fn(repository, baseline, self._rc)
        except (subprocess.SubprocessError, OSError, ValueError) as e:
            err = ChangesetError(
                "Could not compute changes, testing the whole repository",
                repository=repository.name,
                baseline=baseline,
                error=str(e).strip() or type(e).__name__,
            )
            with self._lock:
                self.errors.append(err)
            console.print_warning(str(err))
            return None

        changed = self._strip_modules_path(repository, changed)
        self.record(repository.name, changed)
        console.print_debug(f"{repository.name}: {len(changed)} changed files against {baseline}")
        return changed

    def resolve(self, names: Iterable[str]) -> ChangeSet:
        """Compute changesets for several repositories, at most `max_workers` at a time."""
        if not self.enabled:
            return {}

        todo = []
        for name in names:
            repo = self._repositories.get(name)
            if repo is None:
                continue
            baseline = repo.baseline
            if not baseline:
                # nothing to compare against
                continue
            todo.append((repo, baseline))

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            list(pool.map(lambda item: self.diff(*item), todo))

        return dict(self.changesets)

    def should_test_module(self, name: str) -> bool:
        if not self.enabled:
            return True
        owner = self._owners.get(name)
        if owner is None:
            return True
        repository, directory = owner
        changed = self.changesets.get(repository)
        if changed is None:
            return True
        return any(_leading_segment(p) == directory for p in changed)

    @staticmethod
    def _strip_modules_path(repository: Repository, changed: List[str]) -> List[str]:
        """Make paths relative to the directory holding the modules."""
        if not repository.modules_path:
            return list(changed)
        prefix = repository.modules_path.strip("/").replace("\\", "/") + "/"
        return [p[len(prefix):] if p.startswith(prefix) else p for p in changed]
