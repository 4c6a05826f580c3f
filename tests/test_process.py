"""Tests for the harness process wrapper (spawns the current interpreter)."""

import sys
import time

from fleetci.process import ProcessHandle, ProcessRegistry, is_noise


def _py(code):
    return [sys.executable, "-c", code]


def test_stdout_and_stderr_channels():
    seen = []
    handle = ProcessHandle(
        "t",
        _py(
            "import sys\n"
            "print('hello')\n"
            "print('DeprecationWarning: old api', file=sys.stderr)\n"
            "print('TypeError: boom', file=sys.stderr)\n"
        ),
        on_stderr=seen.append,
    )
    result = handle.wait(30)
    assert result.ok
    assert result.stdout == ["hello"]
    assert result.errors == ["TypeError: boom"]
    assert "DeprecationWarning: old api" in seen


def test_non_zero_exit_is_not_ok():
    result = ProcessHandle("t", _py("import sys; sys.exit(3)")).wait(30)
    assert result.returncode == 3
    assert not result.ok


def test_error_label_on_stdout():
    result = ProcessHandle("t", _py("print('[ERROR] broken'); print('fine')"), error_label="[ERROR]").wait(30)
    assert result.errors == ["[ERROR] broken"]
    assert result.stdout == ["fine"]


def test_timeout_kills_process():
    result = ProcessHandle("slow", _py("import time; time.sleep(30)")).wait(0.5)
    assert result.timed_out
    assert result.killed
    assert result.errors[-1] == "Process slow has been terminated"


def test_registry_kill_all():
    registry = ProcessRegistry()
    handle = registry.spawn("slow", _py("import time; time.sleep(30)"))
    registry.track(handle)
    assert len(registry) == 1

    assert registry.kill_all() == 1
    result = handle.wait(5)
    assert result.killed
    assert len(registry) == 0
    assert registry.closed


def test_warning_lines_are_noise():
    assert is_noise("npm WARNING deprecated")
    assert not is_noise("Error: ENOENT")


def test_timeout_kills_grandchildren_holding_the_pipes():
    code = (
        "import subprocess, sys, time\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
        "time.sleep(30)\n"
    )
    started = time.monotonic()
    result = ProcessHandle("forking", _py(code)).wait(1)
    assert result.timed_out
    assert time.monotonic() - started < 5
