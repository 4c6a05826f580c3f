# report.py
from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set
from xml.etree import ElementTree as ET
from xml.etree.ElementTree import ParseError

from defusedxml import ElementTree as SafeET

from .errors import ConfigError, ReportMissing
from .model import ReportCase, ReportEntry, TaskStatus, TestTask
from .ui.console import get_console

STUB_SUITE = "Harness Tests"
STUB_CASE_NAME = "Some test has not been run, see details"
SKIPPED_CASE_NAME = "Not run, no changes in the tested modules"
RUNTIME_ERROR_CLASS = "Test runtime error"


# ----------------------------------------------------------------------
# XML codec
# ----------------------------------------------------------------------

def _case_from_xml(elem) -> ReportCase:
    failure = None
    for tag in ("failure", "error"):
        node = elem.find(tag)
        if node is not None:
            failure = (node.text or "").strip() or node.get("message") or tag
            break
    return ReportCase(
        classname=elem.get("classname", ""),
        name=elem.get("name", ""),
        time=elem.get("time", "0"),
        failure=failure,
        skipped=elem.find("skipped") is not None,
    )


def read_report(path: Path) -> ReportEntry:
    """Read a JUnit-style file; a <testsuites> root is flattened into one entry."""
    root = SafeET.parse(str(path)).getroot()
    suites = [root] if root.tag == "testsuite" else list(root.iter("testsuite"))
    name = suites[0].get("name", STUB_SUITE) if suites else STUB_SUITE
    entry = ReportEntry(suite=name)
    for suite in suites:
        for case in suite.findall("testcase"):
            entry.cases.append(_case_from_xml(case))
    return entry


def write_report(path: Path, entry: ReportEntry) -> Path:
    suite = ET.Element(
        "testsuite",
        {
            "name": entry.suite,
            "tests": str(len(entry.cases)),
            "failures": str(entry.failures),
            "errors": "0",
            "skipped": str(entry.skipped),
        },
    )
    for case in entry.cases:
        node = ET.SubElement(
            suite,
            "testcase",
            {"classname": case.classname, "name": case.name, "time": case.time},
        )
        if case.failure is not None:
            failure = ET.SubElement(node, "failure", {"message": case.failure.splitlines()[0] if case.failure else ""})
            failure.text = case.failure
        elif case.skipped:
            ET.SubElement(node, "skipped")

    path.parent.mkdir(parents=True, exist_ok=True)
    ET.ElementTree(suite).write(str(path), encoding="utf-8", xml_declaration=True)
    return path


# ----------------------------------------------------------------------
# Allowed errors baseline
# ----------------------------------------------------------------------

_DIGITS = re.compile(r"\d+")
_SPACES = re.compile(r"\s+")


def normalize_error(message: str) -> str:
    """Collapse whitespace and mask numbers (ports, pids, timings)."""
    return _SPACES.sub(" ", _DIGITS.sub("N", message)).strip()


class AllowedErrors:
    """
    Known, accepted error messages.

    Known messages are dropped from the report. While regenerating, new
    messages are added to the list instead of being reported.
    """

    def __init__(self, path: Optional[Path] = None, *, regenerate: bool = False):
        self.path = Path(path) if path else None
        self.regenerate = regenerate
        self._messages: List[str] = []
        self._known: Set[str] = set()
        self._lock = threading.Lock()
        if self.path is not None and self.path.exists():
            try:
                stored = json.loads(self.path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ConfigError("Allowed errors baseline is not valid JSON", path=str(self.path), error=str(e)) from e
            if not isinstance(stored, list) or not all(isinstance(m, str) for m in stored):
                raise ConfigError("Allowed errors baseline must be a list of strings", path=str(self.path))
            for msg in stored:
                self._add(normalize_error(msg))

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    def _add(self, norm: str) -> None:
        if norm and norm not in self._known:
            self._known.add(norm)
            self._messages.append(norm)

    def filter(self, errors: Iterable[str]) -> List[str]:
        kept: List[str] = []
        with self._lock:
            for err in errors:
                norm = normalize_error(err)
                if not norm or norm in self._known:
                    continue
                if self.regenerate:
                    self._add(norm)
                    continue
                kept.append(err)
        return kept

    def save(self) -> None:
        if self.path is None or not self.regenerate:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._messages, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


# ----------------------------------------------------------------------
# Aggregation
# ----------------------------------------------------------------------

class ReportAggregator:
    """
    Turns per-task result files into the final report set.

    Runs after every task is terminal. Each result file is rewritten at
    most once per aggregator, so calling prepare_report() again does not
    prefix names twice.
    """

    def __init__(self, tasks: Sequence[TestTask], *, allowed: Optional[AllowedErrors] = None):
        self._tasks = list(tasks)
        self.allowed = allowed or AllowedErrors()
        self.entries: Dict[str, ReportEntry] = {}
        self.missing: List[ReportMissing] = []
        self._stubbed: Set[str] = set()
        self._prepared: Set[str] = set()

    def _stub(self, task: TestTask) -> ReportEntry:
        if task.status is TaskStatus.SKIPPED:
            case = ReportCase(classname=RUNTIME_ERROR_CLASS, name=SKIPPED_CASE_NAME, skipped=True)
        else:
            case = ReportCase(
                classname=RUNTIME_ERROR_CLASS,
                name=STUB_CASE_NAME,
                failure=str(ReportMissing(task.full_name, str(task.report_path))),
            )
        return ReportEntry(suite=STUB_SUITE, cases=[case])

    def check_report(self) -> List[str]:
        """Write a stub for every task whose result file is missing."""
        console = get_console()
        console.print_info("Checking that every task wrote a report")
        stubbed: List[str] = []
        for task in self._tasks:
            if task.report_path is None or task.report_path.exists():
                continue
            write_report(task.report_path, self._stub(task))
            self._stubbed.add(task.full_name)
            if task.status is not TaskStatus.SKIPPED:
                self.missing.append(ReportMissing(task.full_name, str(task.report_path)))
                stubbed.append(task.full_name)
        if stubbed:
            console.print_warning(f"Generated failing reports for: {', '.join(stubbed)}")
        return stubbed

    def prepare_report(self) -> Dict[str, ReportEntry]:
        """Namespace case classnames by task key and fold in process errors."""
        console = get_console()
        console.print_info("Preparing reports")
        for task in self._tasks:
            if task.full_name in self._prepared:
                continue
            if task.report_path is None or not task.report_path.exists():
                continue
            self._prepared.add(task.full_name)

            errors = self.allowed.filter(task.errors)
            error_text = "\n".join(errors)

            try:
                entry = read_report(task.report_path)
            except (ParseError, ValueError, OSError) as e:
                console.print_warning(f"{task.full_name}: unreadable report ({e})")
                entry = ReportEntry(suite=STUB_SUITE)
                error_text = "\n".join(filter(None, [error_text, f"Unreadable report: {e}"]))

            for case in entry.cases:
                case.classname = f"{task.key}.{case.classname}"

            if error_text:
                if task.full_name in self._stubbed and entry.cases:
                    stub = entry.cases[0]
                    stub.failure = f"{stub.failure}\n{error_text}" if stub.failure else error_text
                else:
                    entry.cases.append(
                        ReportCase(
                            classname=f"{task.key}.{RUNTIME_ERROR_CLASS}",
                            name=STUB_CASE_NAME,
                            failure=error_text,
                        )
                    )

            write_report(task.report_path, entry)
            self.entries[task.full_name] = entry
        return dict(self.entries)

    def save_baseline(self) -> None:
        self.allowed.save()

    def summary(self) -> Dict[str, int]:
        tests = sum(len(e.cases) for e in self.entries.values())
        failures = sum(e.failures for e in self.entries.values())
        skipped = sum(e.skipped for e in self.entries.values())
        return {"tests": tests, "failures": failures, "skipped": skipped}

    @property
    def failed(self) -> bool:
        return any(e.failures for e in self.entries.values())
