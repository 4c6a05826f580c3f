# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


ALL_REPOSITORIES = "all"
CDN_REPOSITORY = "cdn"


@dataclass
class Module:
    """
    A testable unit declared by a descriptor file.

    Canonical dependency field: `depends_on` (names of other modules).
    """
    name: str
    repository: str
    path: str
    depends_on: List[str] = field(default_factory=list)

    has_unit_test: bool = False
    browser_capable: bool = False
    is_cdn_asset: bool = False
    is_required: bool = False
    stable_id: Optional[str] = None

    # where it came from
    descriptor: Optional[str] = None
    entry: bool = False

    @property
    def directory(self) -> str:
        return Path(self.path).name

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "repository": self.repository,
            "path": self.path,
            "depends_on": list(self.depends_on),
            "has_unit_test": self.has_unit_test,
            "browser_capable": self.browser_capable,
            "is_cdn_asset": self.is_cdn_asset,
            "is_required": self.is_required,
            "stable_id": self.stable_id,
            "descriptor": self.descriptor,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Module:
        return cls(
            name=data["name"],
            repository=data["repository"],
            path=data["path"],
            depends_on=list(data.get("depends_on", [])),
            has_unit_test=bool(data.get("has_unit_test", False)),
            browser_capable=bool(data.get("browser_capable", False)),
            is_cdn_asset=bool(data.get("is_cdn_asset", False)),
            is_required=bool(data.get("is_required", False)),
            stable_id=data.get("stable_id"),
            descriptor=data.get("descriptor"),
        )


@dataclass(frozen=True)
class Repository:
    """A source tree holding one or more modules."""
    name: str
    path: str
    baseline: Optional[str] = None        # branch / version to diff against
    modules_path: Optional[str] = None    # sub-directory holding modules
    unit_in_browser: bool = False
    use_map_only: bool = False

    @property
    def modules_root(self) -> Path:
        root = Path(self.path)
        return root / self.modules_path if self.modules_path else root


# ----------------------------------------------------------------------
# Tasks
# ----------------------------------------------------------------------

class HarnessKind(str, Enum):
    HEADLESS = "headless"
    BROWSER = "browser"

    @property
    def suffix(self) -> str:
        return "_node" if self is HarnessKind.HEADLESS else "_browser"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)


# Allowed transitions; RUNNING -> RUNNING is the flake retry.
_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.SKIPPED},
    TaskStatus.RUNNING: {
        TaskStatus.RUNNING,
        TaskStatus.PASSED,
        TaskStatus.FAILED,
        TaskStatus.TIMEOUT,
    },
}


@dataclass
class TestTask:
    """One harness run for a (key, kind) pair."""
    __test__ = False  # not a pytest class

    key: str
    kind: HarnessKind
    modules: List[str]
    port: Optional[int] = None
    attempts: int = 0
    status: TaskStatus = TaskStatus.PENDING
    errors: List[str] = field(default_factory=list)
    report_path: Optional[Path] = None
    config_path: Optional[Path] = None

    @property
    def full_name(self) -> str:
        return f"{self.key}{self.kind.suffix}"

    def transition(self, status: TaskStatus) -> None:
        allowed = _TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise ValueError(
                f"Task '{self.full_name}' cannot move from {self.status.value} to {status.value}"
            )
        self.status = status


# ----------------------------------------------------------------------
# Reports
# ----------------------------------------------------------------------

@dataclass
class ReportCase:
    classname: str
    name: str
    time: str = "0"
    failure: Optional[str] = None
    skipped: bool = False

    @property
    def failed(self) -> bool:
        return self.failure is not None


@dataclass
class ReportEntry:
    suite: str
    cases: List[ReportCase] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return sum(1 for c in self.cases if c.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for c in self.cases if c.skipped)
