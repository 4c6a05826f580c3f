# scheduler.py
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from . import harness
from .changes import ChangeSetResolver
from .errors import FlakeExhausted, PortUnavailable, TaskTimeout
from .flake import FLAKE_RULES, FlakeRule, is_flake
from .graph import ModuleGraph
from .model import HarnessKind, TaskStatus, TestTask
from .planner import TestPlanner
from .ports import PortAllocator
from .process import ProcessRegistry, ProcessResult
from .settings import RunOptions
from .ui.console import get_console

# (task, args, on_stdout, on_stderr) -> handle with wait(timeout) and kill()
Launcher = Callable[[TestTask, List[str], Callable[[str], None], Callable[[str], None]], object]


class Scheduler:
    """
    Runs the planned harness tasks on a bounded worker pool.

    Headless tasks are bounded by a wall-clock timeout. Browser-hosted
    tasks get a port each and are retried when their failure looks like a
    flake. Every task ends in exactly one terminal status; nothing a task
    does is raised out of run().
    """

    def __init__(
        self,
        graph: ModuleGraph,
        planner: TestPlanner,
        resolver: ChangeSetResolver,
        options: RunOptions,
        *,
        root: Path | None = None,
        ports: Optional[PortAllocator] = None,
        registry: Optional[ProcessRegistry] = None,
        launcher: Optional[Launcher] = None,
        rules: Sequence[FlakeRule] = FLAKE_RULES,
    ):
        self._graph = graph
        self._planner = planner
        self._resolver = resolver
        self._options = options
        self._root = root or Path.cwd()
        self.ports = ports or PortAllocator(options.ports)
        self.registry = registry or ProcessRegistry()
        self._launcher = launcher or self._spawn
        self._rules = list(rules)

        self.tasks: List[TestTask] = []
        self._lock = threading.Lock()
        self._running = 0
        self.peak_running = 0

    # ------------------------------------------------------------------
    # Planning -> tasks
    # ------------------------------------------------------------------

    def _kinds_for(self, modules: List[str]) -> List[HarnessKind]:
        opts = self._options
        browser_capable = False
        for name in modules:
            module = self._graph.get(name)
            if module is not None and module.browser_capable:
                browser_capable = True
        kinds: List[HarnessKind] = []
        if not (opts.browser_only or opts.server):
            kinds.append(HarnessKind.HEADLESS)
        if browser_capable and not opts.headless_only:
            kinds.append(HarnessKind.BROWSER)
        return kinds

    def make_tasks(self) -> List[TestTask]:
        """One task per (key, kind) pair of the plan."""
        workspace = self._options.workspace_path
        tasks: List[TestTask] = []
        seen = set()
        for key, modules in self._planner.plan():
            for kind in self._kinds_for(modules):
                if (key, kind) in seen:
                    continue
                seen.add((key, kind))
                task = TestTask(key=key, kind=kind, modules=list(modules))
                task.report_path = harness.report_path(workspace, task)
                task.config_path = harness.config_path(workspace, task)
                tasks.append(task)
        self.tasks = tasks
        return tasks

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, tasks: Optional[List[TestTask]] = None) -> Dict[str, str]:
        """Run every task; returns full task name -> terminal status."""
        console = get_console()
        if tasks is None:
            tasks = self.tasks or self.make_tasks()
        results: Dict[str, str] = {}

        pool = ThreadPoolExecutor(max_workers=self._options.workers)
        try:
            futures = {pool.submit(self._run_task, task): task for task in tasks}
            for fut in as_completed(futures):
                task = futures[fut]
                try:
                    fut.result()
                except Exception as e:
                    # _run_task captures task failures; this is a bug path
                    task.errors.append(str(e))
                    task.status = TaskStatus.FAILED
                    console.print_exception(e)
                results[task.full_name] = task.status.value
        except BaseException:
            # Ctrl-C: queued tasks never start, running harnesses are killed
            self.registry.kill_all()
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

        return results

    def cancel(self) -> int:
        """Force-terminate every running harness process."""
        return self.registry.kill_all()

    def _enter(self) -> None:
        with self._lock:
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)

    def _leave(self) -> None:
        with self._lock:
            self._running -= 1

    def _run_task(self, task: TestTask) -> TestTask:
        console = get_console()

        wanted = [m for m in task.modules if self._resolver.should_test_module(m)]
        if not wanted:
            task.transition(TaskStatus.SKIPPED)
            console.print_plan_skipped(task.full_name, "no changes")
            return task
        task.modules = wanted

        task.transition(TaskStatus.RUNNING)
        self._enter()
        try:
            self._attempts(task)
        except Exception as e:
            # spawn failures, cancelled run
            task.errors.append(str(e))
            if not task.status.terminal:
                task.transition(TaskStatus.FAILED)
        finally:
            self.ports.release(task.port)
            self._leave()

        console.print_task_finished(task.full_name, task.status.value)
        return task

    def _attempts(self, task: TestTask) -> None:
        console = get_console()
        opts = self._options

        tried: List[int] = []
        while True:
            task.attempts += 1
            if task.kind is HarnessKind.BROWSER:
                # the new port is claimed before the failed one goes back
                previous = task.port
                try:
                    task.port = self.ports.claim(exclude=tried)
                except PortUnavailable as e:
                    task.port = None
                    task.errors.append(str(e))
                    task.transition(TaskStatus.FAILED)
                    return
                finally:
                    self.ports.release(previous)
                tried.append(task.port)

            result = self._launch(task)

            if result.timed_out:
                task.errors = result.errors + [str(TaskTimeout(task.full_name, opts.timeout))]
                task.transition(TaskStatus.TIMEOUT)
                return

            if result.ok:
                task.errors = []
                task.transition(TaskStatus.PASSED)
                return

            errors = result.errors or [f"Process {task.full_name} exited with code {result.returncode}"]
            if task.kind is HarnessKind.BROWSER and is_flake(errors, self._rules):
                if task.attempts < opts.max_attempts:
                    console.print_retry(task.full_name, errors[0][:200])
                    task.transition(TaskStatus.RUNNING)
                    continue
                task.errors = errors + [str(FlakeExhausted(task.full_name, task.attempts, errors[-1]))]
                task.transition(TaskStatus.FAILED)
                return

            task.errors = errors
            task.transition(TaskStatus.FAILED)
            return

    def _launch(self, task: TestTask) -> ProcessResult:
        console = get_console()
        opts = self._options
        if self.registry.closed:
            raise RuntimeError(f"run was cancelled before {task.full_name} started")

        cfg = harness.make_config(task, opts, self._root)
        harness.write_config(cfg, task.config_path)
        args = harness.command(task, opts)

        console.print_task_start(task.full_name, task.attempts, task.port)
        handle = self._launcher(
            task,
            args,
            lambda line: console.print_task_output(task.full_name, line),
            lambda line: console.print_task_output(task.full_name, line),
        )

        self.registry.track(handle)

        timeout = opts.timeout if task.kind is HarnessKind.HEADLESS and not opts.server else None
        try:
            return handle.wait(timeout)
        finally:
            self.registry.forget(handle)

    def _spawn(self, task, args, on_stdout, on_stderr):
        return self.registry.spawn(
            task.full_name,
            args,
            cwd=str(self._root),
            on_stdout=on_stdout,
            on_stderr=on_stderr,
        )
