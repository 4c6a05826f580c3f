# process.py
from __future__ import annotations

import os
import re
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

WARNING_RE = re.compile(r"warning", re.IGNORECASE)

# seconds the output readers get to drain once the process group is killed
DRAIN_TIMEOUT = 5.0

LineSink = Callable[[str], None]


def is_noise(line: str) -> bool:
    """stderr lines mentioning a warning are not treated as errors."""
    return bool(WARNING_RE.search(line))


@dataclass
class ProcessResult:
    returncode: Optional[int]
    stdout: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False
    killed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.killed and not self.timed_out


class ProcessHandle:
    """
    A spawned harness process.

    Three things can be observed: stdout lines, stderr lines (split into
    noise and retained errors) and the terminal status returned by wait().
    kill() is always safe to call and releases the pipes.
    """

    def __init__(
        self,
        name: str,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        on_stdout: Optional[LineSink] = None,
        on_stderr: Optional[LineSink] = None,
        error_label: Optional[str] = None,
    ):
        self.name = name
        self._error_label = error_label
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._stdout: List[str] = []
        self._errors: List[str] = []
        self._lock = threading.Lock()
        self._killed = False

        full_env = os.environ.copy()
        full_env.update(env or {})

        self._proc = subprocess.Popen(
            list(args),
            cwd=cwd,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
        self._readers = [
            threading.Thread(target=self._pump, args=(self._proc.stdout, False), daemon=True),
            threading.Thread(target=self._pump, args=(self._proc.stderr, True), daemon=True),
        ]
        for t in self._readers:
            t.start()

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def running(self) -> bool:
        return self._proc.poll() is None

    def _pump(self, stream, is_stderr: bool) -> None:
        for raw in stream:
            line = raw.rstrip("\n")
            if not line:
                continue
            sink = self._on_stderr if is_stderr else self._on_stdout
            if sink is not None:
                sink(line)
            with self._lock:
                if is_stderr:
                    if not is_noise(line):
                        self._errors.append(line)
                elif self._error_label and self._error_label in line:
                    self._errors.append(line)
                else:
                    self._stdout.append(line)
        stream.close()

    def wait(self, timeout: Optional[float] = None) -> ProcessResult:
        """Block until exit; on timeout the process is killed."""
        timed_out = False
        try:
            self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            self.kill()

        for t in self._readers:
            t.join(DRAIN_TIMEOUT if self._killed else None)

        with self._lock:
            errors = list(self._errors)
            if self._killed:
                errors.append(f"Process {self.name} has been terminated")
            return ProcessResult(
                returncode=self._proc.returncode,
                stdout=list(self._stdout),
                errors=errors,
                timed_out=timed_out,
                killed=self._killed,
            )

    def kill(self) -> None:
        if self._proc.poll() is not None:
            return
        with self._lock:
            self._killed = True
        # the harness runs in its own session; take its children down too
        try:
            os.killpg(self._proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        self._proc.wait()


class ProcessRegistry:
    """Every live harness process of the run, so a fatal abort can kill them all."""

    def __init__(self):
        self._live: Dict[int, ProcessHandle] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, name: str, args: Sequence[str], **kwargs) -> ProcessHandle:
        if self._closed:
            raise RuntimeError("run was cancelled, no new processes may start")
        return ProcessHandle(name, args, **kwargs)

    def track(self, handle) -> None:
        """Register a live handle; one arriving after kill_all() is killed at once."""
        with self._lock:
            if not self._closed:
                self._live[id(handle)] = handle
                return
        handle.kill()

    def forget(self, handle) -> None:
        with self._lock:
            self._live.pop(id(handle), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._live)

    def kill_all(self) -> int:
        """Force-terminate every live process and refuse new ones. Returns the count."""
        with self._lock:
            self._closed = True
            handles = list(self._live.values())
            self._live.clear()
        for h in handles:
            h.kill()
        return len(handles)
