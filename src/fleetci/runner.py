from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .changes import ChangeSetResolver, DiffFn, git_diff
from .descriptor import find_descriptors, resolve_entry_points
from .errors import ChangesetError, ConfigError, GraphWarning
from .graph import ModuleGraph
from .model import TestTask
from .planner import TestPlanner
from .report import AllowedErrors, ReportAggregator
from .scheduler import Launcher, Scheduler
from .settings import FleetConfig, RunOptions
from .ui.console import get_console

MODULE_MAP_FILE = "modulesMap.json"
ALLOWED_ERRORS_FILE = "allowedErrors.json"


@dataclass
class CampaignResult:
    results: Dict[str, str]
    tasks: List[TestTask]
    summary: Dict[str, int] = field(default_factory=dict)
    failed: bool = False
    warnings: List[GraphWarning] = field(default_factory=list)
    changeset_errors: List[ChangesetError] = field(default_factory=list)


# ----------------------------------------------------------------------
# Setup
# ----------------------------------------------------------------------

def build_graph(options: RunOptions, config: FleetConfig, *, cwd: Optional[Path] = None) -> ModuleGraph:
    """Scan every configured repository and build the frozen module graph."""
    workspace = options.workspace_path
    repositories = config.repository_list(options.store_path)
    entry_paths = resolve_entry_points(options.entry, cwd=cwd)

    descriptors = find_descriptors(repositories, entry=entry_paths, exclude=[workspace])
    matched = {d.path for d in descriptors if d.entry} | {d.module_path for d in descriptors if d.entry}
    unmatched = [str(p) for p in entry_paths if p not in matched]
    if unmatched:
        raise ConfigError("Entry points do not point at a module", entry=", ".join(unmatched))

    graph = ModuleGraph(store=options.store_path, map_file=workspace / MODULE_MAP_FILE)
    graph.build(descriptors, rebuild=options.rebuild_map)
    graph.validate()
    return graph


def make_planner(graph: ModuleGraph, options: RunOptions) -> TestPlanner:
    return TestPlanner(
        graph,
        repos=options.repos,
        only=options.only,
        entry=graph.entry_modules() if options.entry else (),
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_campaign(
    options: RunOptions,
    config: FleetConfig,
    *,
    cwd: Optional[Path] = None,
    launcher: Optional[Launcher] = None,
    diff_fn: DiffFn = git_diff,
) -> CampaignResult:
    """
    Build the graph, plan, run every harness task, aggregate reports.

    Only ConfigError escapes; task failures of every kind end up in the
    aggregated report and in `CampaignResult.failed`.
    """
    console = get_console()
    root = (cwd or Path.cwd()).resolve()
    scheduler: Optional[Scheduler] = None

    try:
        graph = build_graph(options, config, cwd=root)
        allowed: Optional[AllowedErrors] = None
        if not options.server:
            # read at run start so a broken baseline fails before any task runs
            allowed = AllowedErrors(
                options.workspace_path / ALLOWED_ERRORS_FILE,
                regenerate=options.regenerate_baseline,
            )
        planner = make_planner(graph, options)
        plan = planner.plan()

        repositories = config.repository_list(options.store_path)
        resolver = ChangeSetResolver(
            repositories,
            enabled=options.diff,
            rc=config.rc,
            max_workers=options.changeset_workers,
            diff_fn=diff_fn,
        )
        resolver.bind(graph)

        planned_repos: List[str] = []
        for name in planner.required_modules:
            module = graph.get(name)
            if module is not None and module.repository not in planned_repos:
                planned_repos.append(module.repository)

        console.print_run_started(planned_repos, len(planner.required_modules), options.diff)
        resolver.resolve(planned_repos)

        console.print_header("PLAN")
        for key, modules in plan:
            console.print_plan_key(key, modules)

        scheduler = Scheduler(graph, planner, resolver, options, root=root, launcher=launcher)
        tasks = scheduler.make_tasks()

        # stale result files from an earlier run would hide a crashed harness
        for task in tasks:
            if task.report_path is not None and task.report_path.exists():
                task.report_path.unlink()

        results = scheduler.run(tasks)
    except (ConfigError, KeyboardInterrupt):
        if scheduler is not None:
            killed = scheduler.cancel()
            if killed:
                console.print_warning(f"Terminated {killed} harness processes")
        raise

    console.print_results(results)
    outcome = CampaignResult(
        results=results,
        tasks=tasks,
        warnings=list(graph.warnings),
        changeset_errors=list(resolver.errors),
    )

    if options.server:
        # interactive server mode writes no reports
        return outcome

    aggregator = ReportAggregator(tasks, allowed=allowed)
    aggregator.check_report()
    aggregator.prepare_report()
    aggregator.save_baseline()

    outcome.summary = aggregator.summary()
    outcome.failed = aggregator.failed
    console.print_summary(**outcome.summary)
    return outcome
