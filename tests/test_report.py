"""Tests for result file checking and aggregation."""

import json

import pytest

from fleetci.errors import ConfigError
from fleetci.model import HarnessKind, ReportCase, ReportEntry, TaskStatus, TestTask
from fleetci.report import (
    AllowedErrors,
    ReportAggregator,
    normalize_error,
    read_report,
    write_report,
)

RAW_REPORT = """<?xml version="1.0" encoding="UTF-8"?>
<testsuite name="Mocha Tests" tests="3" failures="1">
  <testcase classname="Types.Record" name="is created" time="0.01"/>
  <testcase classname="Types.Record" name="fails" time="0.02"><failure message="expected">expected 1 to equal 2</failure></testcase>
  <testcase classname="Types.Format" name="later" time="0"><skipped/></testcase>
</testsuite>
"""


def _task(tmp_path, key="types", kind=HarnessKind.HEADLESS, status=TaskStatus.PASSED, errors=None):
    task = TestTask(key=key, kind=kind, modules=["Types"], status=status, errors=list(errors or []))
    task.report_path = tmp_path / "reports" / f"{task.full_name}.xml"
    return task


def _seed(task, text=RAW_REPORT):
    task.report_path.parent.mkdir(parents=True, exist_ok=True)
    task.report_path.write_text(text, encoding="utf-8")


class TestCheckReport:
    def test_stub_for_missing_report(self, tmp_path):
        present = _task(tmp_path, key="ok")
        _seed(present)
        crashed = _task(tmp_path, key="crashed", status=TaskStatus.FAILED, errors=["Segmentation fault"])

        agg = ReportAggregator([present, crashed])
        assert agg.check_report() == ["crashed_node"]
        assert crashed.report_path.exists()
        assert [m.details["task"] for m in agg.missing] == ["crashed_node"]

        agg.prepare_report()
        stub = read_report(crashed.report_path)
        assert len(stub.cases) == 1
        assert stub.cases[0].failed
        assert "Segmentation fault" in stub.cases[0].failure
        assert stub.cases[0].classname == "crashed.Test runtime error"

    def test_skipped_task_gets_placeholder(self, tmp_path):
        skipped = _task(tmp_path, status=TaskStatus.SKIPPED)
        agg = ReportAggregator([skipped])
        assert agg.check_report() == []
        agg.prepare_report()
        entry = read_report(skipped.report_path)
        assert len(entry.cases) == 1
        assert entry.cases[0].skipped and not entry.cases[0].failed
        assert not agg.failed


class TestPrepareReport:
    def test_classnames_namespaced(self, tmp_path):
        task = _task(tmp_path)
        _seed(task)
        agg = ReportAggregator([task])
        agg.check_report()
        entries = agg.prepare_report()

        names = [c.classname for c in read_report(task.report_path).cases]
        assert names == ["types.Types.Record", "types.Types.Record", "types.Types.Format"]
        assert entries["types_node"].failures == 1
        assert agg.failed
        assert agg.summary() == {"tests": 3, "failures": 1, "skipped": 1}

    def test_process_errors_appended_as_one_case(self, tmp_path):
        task = _task(tmp_path, status=TaskStatus.FAILED, errors=["ReferenceError: x", "TypeError: y"])
        _seed(task)
        agg = ReportAggregator([task])
        agg.prepare_report()

        cases = read_report(task.report_path).cases
        assert len(cases) == 4
        assert cases[-1].classname == "types.Test runtime error"
        assert cases[-1].failure == "ReferenceError: x\nTypeError: y"

    def test_second_call_does_not_prefix_again(self, tmp_path):
        task = _task(tmp_path)
        _seed(task)
        agg = ReportAggregator([task])
        agg.prepare_report()
        agg.prepare_report()
        assert read_report(task.report_path).cases[0].classname == "types.Types.Record"

    @pytest.mark.parametrize("run", range(2))
    def test_fresh_fixture_each_run(self, tmp_path, run):
        task = _task(tmp_path)
        _seed(task)
        ReportAggregator([task]).prepare_report()
        assert read_report(task.report_path).cases[0].classname == "types.Types.Record"

    def test_unreadable_report(self, tmp_path):
        task = _task(tmp_path)
        _seed(task, "<testsuite><testcase")
        agg = ReportAggregator([task])
        agg.prepare_report()
        cases = read_report(task.report_path).cases
        assert len(cases) == 1
        assert "Unreadable report" in cases[0].failure

    def test_testsuites_root(self, tmp_path):
        task = _task(tmp_path)
        _seed(
            task,
            '<testsuites><testsuite name="a"><testcase classname="A" name="x"/></testsuite>'
            '<testsuite name="b"><testcase classname="B" name="y"/></testsuite></testsuites>',
        )
        ReportAggregator([task]).prepare_report()
        assert [c.classname for c in read_report(task.report_path).cases] == ["types.A", "types.B"]


class TestAllowedErrors:
    def test_normalize(self):
        assert normalize_error("  listen  EADDRINUSE :::40123\n") == "listen EADDRINUSE :::N"

    def test_known_errors_suppressed(self, tmp_path):
        baseline = tmp_path / "allowed.json"
        baseline.write_text(json.dumps(["Warning: leak detected on port 41000"]))
        task = _task(tmp_path, status=TaskStatus.FAILED,
                     errors=["Warning: leak detected on port 42999", "Error: real problem"])
        _seed(task)
        agg = ReportAggregator([task], allowed=AllowedErrors(baseline))
        agg.prepare_report()
        assert read_report(task.report_path).cases[-1].failure == "Error: real problem"

    def test_only_allowed_errors_adds_no_case(self, tmp_path):
        baseline = tmp_path / "allowed.json"
        baseline.write_text(json.dumps(["flaky thing"]))
        task = _task(tmp_path, errors=["flaky thing"])
        _seed(task)
        ReportAggregator([task], allowed=AllowedErrors(baseline)).prepare_report()
        assert len(read_report(task.report_path).cases) == 3

    def test_regenerate_collects_new_messages(self, tmp_path):
        baseline = tmp_path / "allowed.json"
        baseline.write_text(json.dumps(["old message"]))
        task = _task(tmp_path, errors=["new message 12"])
        _seed(task)
        agg = ReportAggregator([task], allowed=AllowedErrors(baseline, regenerate=True))
        agg.prepare_report()
        agg.save_baseline()

        assert len(read_report(task.report_path).cases) == 3
        assert json.loads(baseline.read_text()) == ["old message", "new message N"]

    @pytest.mark.parametrize("content", ["{", "{\"a\": 1}", "[1, 2]"])
    def test_malformed_baseline_is_a_config_error(self, tmp_path, content):
        baseline = tmp_path / "allowed.json"
        baseline.write_text(content)
        with pytest.raises(ConfigError):
            AllowedErrors(baseline)

    def test_baseline_untouched_without_regenerate(self, tmp_path):
        baseline = tmp_path / "allowed.json"
        baseline.write_text(json.dumps(["old"]))
        allowed = AllowedErrors(baseline)
        allowed.filter(["brand new"])
        allowed.save()
        assert json.loads(baseline.read_text()) == ["old"]


def test_write_then_read(tmp_path):
    entry = ReportEntry(
        suite="s",
        cases=[ReportCase("c", "passes"), ReportCase("c", "breaks", failure="line one\nline two")],
    )
    path = write_report(tmp_path / "r.xml", entry)
    back = read_report(path)
    assert back.suite == "s"
    assert back.cases[1].failure == "line one\nline two"
    assert back.failures == 1
