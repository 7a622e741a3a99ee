"""
Tests for crossbuild.core.process — run_tool timeouts, cancellation, logs.
"""
import threading

from crossbuild.core.process import ToolResult, run_tool, write_logs


def test_captures_output_and_exit_code(requires_sh):
    result = run_tool(["sh", "-c", "echo out; echo err >&2; exit 3"])
    assert result.exit_code == 3
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert not result.ok


def test_env_is_layered_over_process_env(requires_sh):
    result = run_tool(["sh", "-c", 'echo "$CROSSBUILD_TEST_VAR"'], env={"CROSSBUILD_TEST_VAR": "v1"})
    assert result.ok
    assert result.stdout.strip() == "v1"


def test_timeout_kills_process(requires_sh):
    result = run_tool(["sh", "-c", "exec sleep 30"], timeout=0.5)
    assert result.timed_out
    assert result.exit_code == -1
    assert "TIMEOUT" in result.stderr
    assert result.duration_ms < 10_000


def test_cancel_event_kills_process(requires_sh):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_tool(["sh", "-c", "exec sleep 30"], cancel_event=cancel)
    finally:
        timer.cancel()
    assert result.cancelled
    assert not result.ok


def test_missing_program_is_a_launch_error(tmp_path):
    result = run_tool([str(tmp_path / "no-such-tool")])
    assert result.launch_error is not None
    assert result.exit_code == -1


def test_write_logs_skips_empty_streams(tmp_path):
    result = ToolResult(command=["cargo"], exit_code=0, stdout="", stderr="Compiling ring\n")
    paths = write_logs(result, tmp_path / "logs", "dependency.attempt1")
    assert paths["stdout"] is None
    assert paths["stderr"].name == "dependency.attempt1.stderr"
    assert paths["stderr"].read_text() == "Compiling ring\n"


def test_timeout_kills_child_processes(requires_sh):
    # sh forks sleep instead of exec'ing it; the child keeps the pipes open
    result = run_tool(["sh", "-c", "sleep 30; echo done"], timeout=0.5)
    assert result.timed_out
    assert "done" not in result.stdout
    assert result.duration_ms < 10_000


def test_cancel_kills_child_processes(requires_sh):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_tool(["sh", "-c", "sleep 30; echo done"], cancel_event=cancel)
    finally:
        timer.cancel()
    assert result.cancelled
    assert result.duration_ms < 10_000


def test_output_keeps_partial_lines_before_timeout(requires_sh):
    result = run_tool(["sh", "-c", "echo started >&2; sleep 30"], timeout=0.5)
    assert result.timed_out
    assert result.stderr.startswith("started\n")


def test_non_utf8_output_is_replaced_not_raised(requires_sh):
    result = run_tool(["sh", "-c", r"printf 'path /tmp/\377bad\n'; exit 101"])
    assert result.exit_code == 101
    assert "\ufffd" in result.stdout
    assert result.stdout.endswith("bad\n")
