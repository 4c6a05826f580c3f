# harness.py
# What the external test harness gets from us: a JSON config file per task
# and a command line pointing at it.
from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .model import HarnessKind, TestTask
from .settings import RunOptions


class HarnessConfig(BaseModel):
    root: str
    tests: List[str] = Field(default_factory=list)
    report: str
    port: Optional[int] = None
    coverage: bool = False
    coverage_format: str = "html"
    html_coverage_report: Optional[str] = None
    json_coverage_report: Optional[str] = None
    check_leaks: bool = False


def report_path(workspace: Path, task: TestTask) -> Path:
    return workspace / "reports" / f"{task.full_name}.xml"


def config_path(workspace: Path, task: TestTask) -> Path:
    return workspace / "configs" / f"testConfig_{task.full_name}.json"


def make_config(task: TestTask, options: RunOptions, root: Path) -> HarnessConfig:
    workspace = options.workspace_path
    coverage_dir = workspace / "coverage" / task.full_name
    fmt = options.coverage_format
    return HarnessConfig(
        root=str(root),
        tests=list(task.modules),
        report=str(task.report_path or report_path(workspace, task)),
        port=task.port if task.kind is HarnessKind.BROWSER else None,
        coverage=options.coverage,
        coverage_format=fmt,
        html_coverage_report=str(coverage_dir / "index.html") if options.coverage and fmt in ("html", "both") else None,
        json_coverage_report=str(coverage_dir / "coverage.json") if options.coverage and fmt in ("json", "both") else None,
        check_leaks=options.check_leaks,
    )


def write_config(cfg: HarnessConfig, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cfg.model_dump_json(indent=4) + "\n", encoding="utf-8")
    return path


def command(task: TestTask, options: RunOptions) -> List[str]:
    """Harness command line for one task attempt."""
    args = shlex.split(options.harness)
    if task.kind is HarnessKind.BROWSER:
        args.append("--server" if options.server else "--browser")
    else:
        args.append("--isolated")
    if not options.server:
        args.append("--report")
    args.append(f"--config={task.config_path}")
    return args
