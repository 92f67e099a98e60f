"""Lifecycle management for child processes.

Processes start in dependency order. A dependent waits until each of its
dependencies is ready, and readiness is polled where a check is
configured. Shutdown is graceful, escalating from SIGTERM to SIGKILL,
and failed processes can be retried.
"""

from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import threading
import time
from enum import Enum
from typing import BinaryIO

from proccie.models import Config, Process
from proccie.mux import Mux, PrefixWriter

DEFAULT_SHUTDOWN_TIMEOUT = 10.0
"""Seconds to wait after SIGTERM before sending SIGKILL."""

LOG_FILE_PERMS = 0o600
"""Permission mode for per-process log files."""

READINESS_CHECK_TIMEOUT = 5.0
"""Seconds allowed for a single readiness command to run."""

_READ_CHUNK = 64 * 1024


class _DepState(Enum):
    READY = "ready"
    FAILED = "failed"


class _RunResult(Enum):
    EXPECTED = "expected"
    FAILED = "failed"
    SHUTDOWN = "shutdown"


def _seconds(value: float) -> str:
    return f"{value:g}s"


def _describe_exit(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"


def _pump(stream: BinaryIO, writer: PrefixWriter) -> None:
    with stream:
        for chunk in iter(lambda: stream.read1(_READ_CHUNK), b""):
            writer.write(chunk)


class Runner:
    """Runs every configured process and coordinates their shutdown."""

    def __init__(
        self,
        config: Config,
        mux: Mux,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ) -> None:
        self.config = config
        self.mux = mux
        self.shutdown_timeout = shutdown_timeout
        self._cond = threading.Condition()
        self._procs: dict[str, subprocess.Popen[bytes]] = {}
        self._dep_results: dict[str, _DepState] = {}
        self._cancelled = False
        self._shutting_down = False
        self._exit_code = 0

    def run(self) -> int:
        """Start all processes and block until every one has finished.

        Returns the exit code for the process manager itself.
        """
        threads = [
            threading.Thread(
                target=self._guarded, args=(name,), name=f"proccie-{name}"
            )
            for name in self.config.start_order()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self._cancel()
        with self._cond:
            return self._exit_code

    def shutdown(self) -> None:
        """Gracefully stop all processes; only the first call has effect."""
        with self._cond:
            if self._shutting_down:
                return
            self._shutting_down = True

        self.mux.system_log("shutting down all processes...")
        self._cancel()
        self._signal_all(signal.SIGTERM, "SIGTERM")

        escalation = threading.Timer(
            self.shutdown_timeout,
            self._signal_all,
            args=(signal.SIGKILL, "SIGKILL (timeout)"),
        )
        escalation.daemon = True
        escalation.start()

    def force_shutdown(self) -> None:
        """Send SIGKILL to every running process group immediately."""
        self.mux.system_log("forced shutdown, sending SIGKILL to all processes...")
        self._signal_all(signal.SIGKILL, "SIGKILL (forced)")

    def _cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def _is_cancelled(self) -> bool:
        with self._cond:
            return self._cancelled

    def _signal_all(self, sig: signal.Signals, label: str) -> None:
        with self._cond:
            snapshot = {name: child.pid for name, child in self._procs.items()}

        for name, pid in snapshot.items():
            self.mux.system_log(f"sending {label} to {name} (pgid {pid})")
            try:
                os.killpg(pid, sig)
            except ProcessLookupError:
                pass
            except OSError as exc:
                self.mux.system_log(f"failed to signal {name}: {exc}")

    def _set_exit_code(self, code: int) -> None:
        with self._cond:
            if self._exit_code == 0:
                self._exit_code = code

    def _signal_dep_result(self, name: str, state: _DepState) -> None:
        with self._cond:
            if name not in self._dep_results:
                self._dep_results[name] = state
                self._cond.notify_all()

    def _guarded(self, name: str) -> None:
        try:
            self._run_process(name)
        except Exception as exc:  # noqa: BLE001 - one process must not sink the rest
            self.mux.system_log(f"PANIC in {name} thread: {exc!r}")
            self._set_exit_code(1)
            self._signal_dep_result(name, _DepState.FAILED)
            self.shutdown()

    def _wait_for_deps(self, name: str, deps: list[str]) -> bool:
        for dep in deps:
            dep_proc = self.config.processes.get(dep, Process())
            if dep_proc.exit_codes:
                mode = "exit with expected code"
            elif dep_proc.readiness.has_readiness():
                mode = "pass readiness check"
            else:
                mode = "launch"
            self.mux.system_log(f"{name} waiting for {dep} to {mode}...")

            with self._cond:
                self._cond.wait_for(
                    lambda dep=dep: dep in self._dep_results or self._cancelled
                )
                state = self._dep_results.get(dep)

            if state is None:
                self.mux.system_log(f"{name} cancelled while waiting for {dep}")
                return False
            if state is not _DepState.READY:
                self.mux.system_log(
                    f"{name}: dependency {dep} failed to become ready"
                )
                return False
        return True

    def _run_process(self, name: str) -> None:
        proc = self.config.processes[name]

        if not self._wait_for_deps(name, proc.depends_on) or self._is_cancelled():
            self._signal_dep_result(name, _DepState.FAILED)
            return

        with contextlib.ExitStack() as stack:
            log_file = None
            if proc.log_file:
                try:
                    fd = os.open(
                        os.path.normpath(proc.log_file),
                        os.O_CREAT | os.O_WRONLY | os.O_APPEND,
                        LOG_FILE_PERMS,
                    )
                except OSError as exc:
                    self.mux.system_log(f"failed to open log file for {name}: {exc}")
                    self._signal_dep_result(name, _DepState.FAILED)
                    self._set_exit_code(1)
                    self.shutdown()
                    return
                log_file = stack.enter_context(open(fd, "a", encoding="utf-8"))

            writer = self.mux.prefix_writer(name, log_file)
            max_attempts = 1 + proc.max_retries

            for attempt in range(1, max_attempts + 1):
                if self._is_cancelled():
                    self._signal_dep_result(name, _DepState.FAILED)
                    return

                if attempt > 1:
                    self.mux.system_log(
                        f"{name}: retry {attempt - 1}/{proc.max_retries}"
                    )

                result = self._run_once(name, proc, writer, first_run=attempt == 1)
                if result is not _RunResult.FAILED:
                    return
                if attempt < max_attempts:
                    continue

                if proc.max_retries > 0:
                    self.mux.system_log(
                        f"{name}: all {proc.max_retries} retries exhausted, "
                        "initiating shutdown"
                    )
                self.shutdown()
                return

    def _run_once(
        self,
        name: str,
        proc: Process,
        writer: PrefixWriter,
        first_run: bool,
    ) -> _RunResult:
        self.mux.system_log(f"starting {name}: {proc.command}")
        has_exit_codes = bool(proc.exit_codes)

        try:
            child = subprocess.Popen(
                ["sh", "-c", proc.command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=proc.computed_env or None,
                process_group=0,
            )
        except OSError as exc:
            self.mux.system_log(f"failed to start {name}: {exc}")
            if first_run:
                self._signal_dep_result(name, _DepState.FAILED)
            if not has_exit_codes:
                self._set_exit_code(1)
            return _RunResult.FAILED

        reader = threading.Thread(
            target=_pump, args=(child.stdout, writer), daemon=True
        )
        reader.start()

        with self._cond:
            self._procs[name] = child

        if first_run:
            if proc.readiness.has_readiness():
                threading.Thread(
                    target=self._poll_readiness, args=(name, proc), daemon=True
                ).start()
            elif not has_exit_codes:
                self._signal_dep_result(name, _DepState.READY)

        returncode = child.wait()
        reader.join()
        writer.flush()

        with self._cond:
            self._procs.pop(name, None)
            is_shutdown = self._shutting_down

        exit_code = returncode if returncode >= 0 else -1

        if is_shutdown:
            self.mux.system_log(f"{name} exited (shutdown)")
            if first_run and has_exit_codes:
                self._signal_dep_result(name, _DepState.FAILED)
            return _RunResult.SHUTDOWN

        failed = returncode != 0
        if failed:
            self.mux.system_log(
                f"{name} exited with error: {_describe_exit(returncode)} "
                f"(code {exit_code})"
            )
        else:
            self.mux.system_log(f"{name} exited (code {exit_code})")

        if has_exit_codes:
            if proc.exit_codes.allows(exit_code):
                self.mux.system_log(
                    f"{name} completed with expected exit code {exit_code}"
                )
                if first_run:
                    self._signal_dep_result(name, _DepState.READY)
                return _RunResult.EXPECTED
            if first_run:
                self._signal_dep_result(name, _DepState.FAILED)

        self.mux.system_log(
            f"{name} exited with unexpected code {exit_code}, initiating shutdown"
        )
        if exit_code != 0:
            self._set_exit_code(exit_code)
        elif failed:
            self._set_exit_code(1)
        return _RunResult.FAILED

    def _poll_readiness(self, name: str, proc: Process) -> None:
        readiness = proc.readiness
        timeout = readiness.timeout_or_default()
        interval = readiness.interval_or_default()

        self.mux.system_log(
            f"{name}: polling readiness command (timeout {_seconds(timeout)}, "
            f"interval {_seconds(interval)}): {readiness.command}"
        )

        start = time.monotonic()
        deadline = start + timeout
        next_tick = start + interval

        while True:
            wait = max(0.0, min(next_tick, deadline) - time.monotonic())
            with self._cond:
                cancelled = self._cond.wait_for(lambda: self._cancelled, timeout=wait)
            if cancelled:
                self.mux.system_log(f"{name}: readiness check cancelled")
                self._signal_dep_result(name, _DepState.FAILED)
                return

            now = time.monotonic()
            if now >= deadline:
                self.mux.system_log(
                    f"{name}: readiness check timed out after {_seconds(timeout)}"
                )
                self._signal_dep_result(name, _DepState.FAILED)
                return

            if now >= next_tick:
                if self._run_readiness_check(readiness.command):
                    self.mux.system_log(f"{name}: readiness check passed")
                    self._signal_dep_result(name, _DepState.READY)
                    return
                next_tick = max(next_tick + interval, time.monotonic())

    @staticmethod
    def _run_readiness_check(command: str) -> bool:
        try:
            completed = subprocess.run(
                ["sh", "-c", command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=READINESS_CHECK_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return completed.returncode == 0