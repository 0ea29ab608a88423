"""Subprocess-based runner for external toolchain commands."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from pathlib import Path

from release_gate.campaign.backend.base import (
    ProcessRunRequest,
    ProcessRunResult,
    ProcessStartError,
)

TIMEOUT_EXIT_STATUS = 124
INTERRUPTED_EXIT_STATUS = 130

# cargo spawns rustc, test binaries and examples; they share the task's group.
_USE_PROCESS_GROUP = os.name == "posix"


class SubprocessRunner:
    """Run one command, streaming its output to log files."""

    def __init__(self, *, poll_interval_seconds: float = 0.1) -> None:
        self.poll_interval_seconds = poll_interval_seconds

    def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        request.stdout_path.parent.mkdir(parents=True, exist_ok=True)
        request.stderr_path.parent.mkdir(parents=True, exist_ok=True)
        command_head = request.command[0] if request.command else ""

        try:
            with (
                request.stdout_path.open("wb") as stdout_handle,
                request.stderr_path.open("wb") as stderr_handle,
            ):
                exit_status, timed_out, interrupted = _run_subprocess_with_shutdown(
                    request=request,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    poll_interval_seconds=self.poll_interval_seconds,
                )
        except FileNotFoundError as error:
            raise ProcessStartError(f"Command not found: {command_head}") from error
        except PermissionError as error:
            raise ProcessStartError(f"Command is not executable: {command_head}") from error
        except OSError as error:
            raise ProcessStartError(f"Command failed to start: {error}") from error

        return ProcessRunResult(
            exit_status=exit_status,
            stdout=_read_tail(request.stdout_path, request.output_limit_bytes),
            stderr=_read_tail(request.stderr_path, request.output_limit_bytes),
            timed_out=timed_out,
            interrupted=interrupted,
        )


def _run_subprocess_with_shutdown(
    *,
    request: ProcessRunRequest,
    stdout_handle,
    stderr_handle,
    poll_interval_seconds: float,
) -> tuple[int, bool, bool]:
    process = subprocess.Popen(  # noqa: S603
        list(request.command),
        cwd=request.cwd,
        env=dict(request.env),
        stdin=subprocess.DEVNULL,
        stdout=stdout_handle,
        stderr=stderr_handle,
        start_new_session=_USE_PROCESS_GROUP,
    )
    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0.0, request.graceful_shutdown_seconds)

    while True:
        returncode = process.poll()
        if returncode is not None:
            interrupted = shutdown_deadline is not None or (
                returncode != 0
                and request.shutdown_requested is not None
                and request.shutdown_requested()
            )
            return returncode, False, interrupted

        now = time.monotonic()
        if (
            request.timeout_seconds is not None
            and now - start_monotonic >= request.timeout_seconds
        ):
            _terminate_process(process)
            return TIMEOUT_EXIT_STATUS, True, False

        if request.shutdown_requested is not None and request.shutdown_requested():
            if shutdown_deadline is None:
                shutdown_deadline = now + graceful_seconds
            if now >= shutdown_deadline:
                _terminate_process(process)
                return INTERRUPTED_EXIT_STATUS, False, True

        time.sleep(poll_interval_seconds)


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    """SIGTERM the task's process group, SIGKILL whatever is left after 2s."""

    if not _signal_process(process, signal.SIGTERM):
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        if not _signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM)):
            return
        process.wait(timeout=2)
    _kill_process_group(process)


def _signal_process(process: subprocess.Popen[bytes], signum: int) -> bool:
    try:
        if _USE_PROCESS_GROUP:
            os.killpg(process.pid, signum)
        elif signum == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except OSError:
        return False
    return True


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    # Members that ignored SIGTERM or outlived the leader.
    if not _USE_PROCESS_GROUP:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except OSError:
        return


def _read_tail(path: Path, limit: int | None) -> bytes:
    try:
        with path.open("rb") as handle:
            if limit is not None:
                size = handle.seek(0, os.SEEK_END)
                handle.seek(max(0, size - limit))
            return handle.read()
    except OSError:
        return b""
