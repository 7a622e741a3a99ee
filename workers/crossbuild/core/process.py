"""
Blocking tool invocation with a timeout and pipeline-wide cancellation.

Every external toolchain call (clang probe, cargo builds) goes through
``run_tool`` so that timeouts and cancellation behave the same everywhere.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)

# Granularity at which a running tool notices the cancel event
POLL_INTERVAL = 0.2

# Upper bound on collecting output once a killed tool's group is gone
DRAIN_TIMEOUT = 5.0

_POSIX = os.name == "posix"


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""
    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    cancelled: bool = False
    launch_error: Optional[str] = None  # the program could not be started

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not (self.timed_out or self.cancelled)


def run_tool(
    cmd: List[str],
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ToolResult:
    """
    Run *cmd* to completion and capture its output.

    ``env`` entries are layered over the current environment.  If the
    timeout elapses or *cancel_event* is set, the process is killed and the
    result is flagged accordingly (exit code -1).
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    t0 = time.monotonic()
    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
            start_new_session=_POSIX,
        )
    except OSError as e:
        # FileNotFoundError / PermissionError: the program is not usable
        return ToolResult(
            command=list(cmd),
            exit_code=-1,
            stderr=str(e),
            duration_ms=int((time.monotonic() - t0) * 1000),
            launch_error=str(e),
        )

    deadline = None if timeout is None else t0 + timeout
    stdout_parts: List[str] = []
    stderr_parts: List[str] = []
    timed_out = False
    cancelled = False

    while True:
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            break
        slice_timeout = POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            slice_timeout = min(slice_timeout, remaining)
        try:
            out, err = proc.communicate(timeout=slice_timeout)
            stdout_parts.append(out or "")
            stderr_parts.append(err or "")
            break
        except subprocess.TimeoutExpired:
            continue

    if timed_out or cancelled:
        _kill_tree(proc)
        try:
            out, err = proc.communicate(timeout=DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired as e:
            # a descendant left the process group and still holds the pipes
            logger.warning("Output of %s not drained after kill; dropping it", cmd[0])
            out, err = _partial(e.stdout), _partial(e.stderr)
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()
            proc.wait()
        stdout_parts.append(out or "")
        stderr_parts.append(err or "")
        reason = "cancelled" if cancelled else f"TIMEOUT after {timeout}s"
        logger.warning("Killed %s (%s)", cmd[0], reason)
        stderr_parts.append(f"\n{reason}\n")

    return ToolResult(
        command=list(cmd),
        exit_code=-1 if (timed_out or cancelled) else proc.returncode,
        stdout="".join(stdout_parts),
        stderr="".join(stderr_parts),
        duration_ms=int((time.monotonic() - t0) * 1000),
        timed_out=timed_out,
        cancelled=cancelled,
    )


def _kill_tree(proc: subprocess.Popen) -> None:
    """Kill *proc* and everything it spawned (cargo forks rustc, cc, build scripts)."""
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except ProcessLookupError:
            return
        except PermissionError:
            pass
    proc.kill()


def _partial(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def is_executable(path: Path) -> bool:
    """True when *path* is a regular file the current user may execute."""
    return path.is_file() and os.access(path, os.X_OK)


def write_logs(result: ToolResult, logs_dir: Path, stem: str) -> dict:
    """
    Persist stdout/stderr of *result* as ``<stem>.stdout`` / ``<stem>.stderr``.

    Only non-empty streams are written.  Returns ``{"stdout": path|None,
    "stderr": path|None}``.
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    paths = {"stdout": None, "stderr": None}
    if result.stdout:
        p = logs_dir / f"{stem}.stdout"
        p.write_text(result.stdout, encoding="utf-8")
        paths["stdout"] = p
    if result.stderr:
        p = logs_dir / f"{stem}.stderr"
        p.write_text(result.stderr, encoding="utf-8")
        paths["stderr"] = p
    return paths
