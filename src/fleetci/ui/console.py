"""Console output formatting utilities for fleetci."""

from __future__ import annotations

import sys
import threading
from typing import Dict, Iterable, Optional


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, do not echo harness output lines
        """
        self.debug = debug
        self.quiet = quiet
        # tasks print from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repositories: Iterable[str],
        module_count: int,
        diff: bool,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Repositories: {', '.join(repositories) or '-'}",
            f"Modules: {module_count}",
            f"Diff mode: {'on' if diff else 'off'}",
            "",
        )

    def print_plan_key(self, key: str, modules: list[str]) -> None:
        """Print one scheduling key of the plan."""
        self._out(f"  {key} ({len(modules)} modules)")

    def print_plan_skipped(self, name: str, reason: str) -> None:
        self._out(f"  {name} (skipped: {reason})")

    def print_task_start(self, name: str, attempt: int = 1, port: Optional[int] = None) -> None:
        """Print task start message."""
        extra = f" port={port}" if port is not None else ""
        again = f" (attempt {attempt})" if attempt > 1 else ""
        self._out(f"\nTASK STARTED: {name}{again}{extra}")

    def print_task_output(self, name: str, line: str) -> None:
        """Echo one harness output line."""
        if not self.quiet:
            self._out(f"[{name}] {line}")

    def print_task_finished(self, name: str, status: str) -> None:
        self._out(f"TASK {name}: {status}")

    def print_retry(self, name: str, reason: str) -> None:
        self._out(f"RETRY: {name} ({reason})")

    def print_results(self, results: Dict[str, str]) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for task, status in results.items():
            lines.append(f"  {task}: {status.upper()}")
        self._out(*lines)

    def print_summary(self, tests: int, failures: int, skipped: int) -> None:
        self._out(f"\nTests: {tests}  Failures: {failures}  Skipped: {skipped}")

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
