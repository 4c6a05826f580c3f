# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class FleetError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - folding into the aggregated report as failure text
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(FleetError):
    """Unresolvable entry point, unknown dependency, malformed descriptor. Fatal."""

    def __init__(self, message: str, **details):
        super().__init__(kind="ConfigError", message=message, details=details)


class GraphWarning(FleetError):
    """Duplicate module name; last write wins. Recorded, never raised."""

    def __init__(self, message: str, **details):
        super().__init__(kind="GraphWarning", message=message, details=details)


class ChangesetError(FleetError):
    """A diff could not be computed; the repository is treated as fully changed."""

    def __init__(self, message: str, **details):
        super().__init__(kind="ChangesetError", message=message, details=details)


class TaskTimeout(FleetError):
    def __init__(self, task: str, seconds: float):
        super().__init__(
            kind="TaskTimeout",
            message=f"Process {task} has been terminated after {seconds:g}s",
            details={"task": task},
        )


class FlakeExhausted(FleetError):
    def __init__(self, task: str, attempts: int, last_error: str):
        super().__init__(
            kind="FlakeExhausted",
            message=f"Task {task} kept failing with transient errors",
            details={"task": task, "attempts": attempts, "last_error": last_error},
        )


class ReportMissing(FleetError):
    def __init__(self, task: str, path: str):
        super().__init__(
            kind="ReportMissing",
            message=f"No result file was written by {task}",
            details={"task": task, "path": path},
        )


class PortUnavailable(FleetError):
    def __init__(self, attempts: int):
        super().__init__(
            kind="PortUnavailable",
            message="No free ports",
            details={"attempts": attempts},
        )
