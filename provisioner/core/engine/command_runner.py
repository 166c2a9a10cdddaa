"""
Command runner — the single place where install commands are spawned.

Runs one external command while streaming its output as progress
events. All security, logging, timeout and cancellation handling is
centralised here.

Concurrency model
─────────────────
Per command there are three helper threads and one event loop:

- two reader threads (stdout, stderr) push lines into a bounded
  ``queue.Queue``;
- one waiter thread pushes the exit status into the same queue;
- the calling thread runs the event loop. It alone owns the synthetic
  progress ticker, the inactivity timeout and the ``emit`` sink, so
  events are emitted by exactly one writer.

Line order within one stream is preserved. The interleaving of stdout
and stderr lines is not deterministic.

Security invariants
───────────────────
- Password piped via stdin only (``sudo -S``)
- ``-k`` invalidates cached credentials every time
- Password never logged, never written to disk
- Password never appears in command args or events
"""

from __future__ import annotations

import logging
import os
import queue
import shlex
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from provisioner.core.credential import SudoCredential
from provisioner.core.errors import (
    CommandFailure,
    CommandTimeout,
    InstallCancelled,
    PrivilegeError,
)
from provisioner.core.models.progress import InstallPhase, ProgressEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[ProgressEvent], None]

DEFAULT_TIMEOUT = 600.0        # ten minutes without output
DEFAULT_TICK_INTERVAL = 0.2
_TICK_FRACTION = 0.02          # share of the remaining range covered per tick
_QUEUE_SIZE = 100
_FLUSH_GRACE = 1.0             # seconds to wait for trailing output after exit
_TERMINATE_GRACE = 5.0

# Queue item kinds
_LINE = "line"
_EOF = "eof"
_EXIT = "exit"

_SUDO_REJECTED = ("incorrect password", "sorry, try again", "no password was provided")


@dataclass
class Command:
    """One external command, as an argument vector.

    ``label`` is what users see; it defaults to the joined argv and never
    contains the credential.
    """

    argv: list[str]
    privileged: bool = False
    cwd: Path | str | None = None
    env: dict[str, str] = field(default_factory=dict)
    label: str = ""

    @property
    def display(self) -> str:
        text = self.label or shlex.join(self.argv)
        return f"sudo {text}" if self.privileged and not self.label else text


class CommandRunner:
    """Execute commands with live progress, timeout and cancellation.

    Args:
        credential: sudo password for privileged commands.
        timeout: Seconds without any output before the process is killed.
        tick_interval: Seconds between synthetic progress ticks.
        cancel_event: Set by the caller to cancel the running command.
    """

    def __init__(
        self,
        credential: SudoCredential | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._credential = credential or SudoCredential()
        self.timeout = timeout
        self.tick_interval = tick_interval
        self.cancel_event = cancel_event or threading.Event()

    # ── Public API ──────────────────────────────────────────────

    def cancel(self) -> None:
        """Request cancellation of the current and all later commands."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run_quiet(self, command: Command, *, timeout: float = 30.0) -> bool:
        """Run a check command without progress events; True when it exits 0.

        Used for "check then conditionally install" presence queries
        such as ``pacman -Q`` or ``rpm -q``. Cancellation is polled
        every ``tick_interval`` while the check runs.

        Raises:
            InstallCancelled: ``cancel_event`` was set.
        """
        if self.cancelled:
            raise InstallCancelled(command.display)
        argv, stdin_data = self._prepare(command)
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if stdin_data else subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                text=True,
                cwd=str(command.cwd) if command.cwd else None,
            )
        except FileNotFoundError:
            return False

        if stdin_data and proc.stdin:
            try:
                proc.stdin.write(stdin_data)
                proc.stdin.close()
            except BrokenPipeError:
                logger.debug("stdin closed early by %s", command.display)

        deadline = time.monotonic() + timeout
        while True:
            try:
                returncode = proc.wait(timeout=self.tick_interval)
                break
            except subprocess.TimeoutExpired:
                if self.cancelled:
                    _terminate(proc)
                    raise InstallCancelled(command.display) from None
                if time.monotonic() >= deadline:
                    _terminate(proc)
                    logger.warning("Check timed out after %ss: %s", timeout, command.display)
                    return False
        logger.debug("Check %s → exit %d", command.display, returncode)
        return returncode == 0

    def run(
        self,
        command: Command,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
        *,
        step: str | None = None,
    ) -> str:
        """Run ``command``, streaming progress between ``start`` and ``end``.

        Returns:
            The last line of output.

        Raises:
            CommandFailure: non-zero exit (``PrivilegeError`` for sudo).
            CommandTimeout: no output for ``self.timeout`` seconds.
            InstallCancelled: ``cancel_event`` was set.
        """
        if self.cancelled:
            raise InstallCancelled(command.display)

        label = step or "Installing..."
        argv, stdin_data = self._prepare(command)

        emit(ProgressEvent(
            phase=phase,
            progress=start,
            step=label,
            needs_privilege=command.privileged,
            command_info=command.display,
        ))
        logger.debug("Executing: %s (cwd=%s)", command.display, command.cwd)

        env = os.environ.copy()
        for key, value in command.env.items():
            env[key] = os.path.expandvars(value)

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if stdin_data else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=str(command.cwd) if command.cwd else None,
                env=env,
            )
        except OSError as e:
            err = CommandFailure(command.display, 127, str(e))
            emit(self._failure_event(phase, start, label, str(e), err))
            raise err from e

        if stdin_data and proc.stdin:
            try:
                proc.stdin.write(stdin_data)
                proc.stdin.close()
            except BrokenPipeError:
                logger.debug("stdin closed early by %s", command.display)

        return self._event_loop(proc, command, phase, start, end, emit, label)

    # ── Internals ───────────────────────────────────────────────

    def _prepare(self, command: Command) -> tuple[list[str], str | None]:
        """Build the final argv and stdin payload."""
        if not command.privileged or SudoCredential.running_as_root():
            return list(command.argv), None
        if not self._credential:
            raise PrivilegeError(command.display, -1, "This step requires sudo")
        return ["sudo", "-S", "-k", *command.argv], self._credential.stdin_payload()

    def _event_loop(
        self,
        proc: subprocess.Popen,
        command: Command,
        phase: InstallPhase,
        start: float,
        end: float,
        emit: EventSink,
        label: str,
    ) -> str:
        q: queue.Queue[tuple[str, str, object]] = queue.Queue(maxsize=_QUEUE_SIZE)
        threads = [
            threading.Thread(target=_read_stream, args=(proc.stdout, "stdout", q), daemon=True),
            threading.Thread(target=_read_stream, args=(proc.stderr, "stderr", q), daemon=True),
            threading.Thread(target=_wait_exit, args=(proc, q), daemon=True),
        ]
        for t in threads:
            t.start()

        progress = start
        last_line = ""
        stderr_tail: deque[str] = deque(maxlen=20)
        open_streams = 2
        exit_code: int | None = None
        exit_seen_at = 0.0

        now = time.monotonic()
        deadline = now + self.timeout
        next_tick = now + self.tick_interval

        try:
            while True:
                if self.cancelled:
                    _terminate(proc)
                    self._flush(q, phase, progress, label, emit)
                    err = InstallCancelled(command.display)
                    emit(self._failure_event(phase, start, "Installation cancelled", last_line, err))
                    raise err

                now = time.monotonic()
                if exit_code is not None and (open_streams == 0 or now >= exit_seen_at + _FLUSH_GRACE):
                    break

                if exit_code is None and now >= deadline:
                    _terminate(proc)
                    err = CommandTimeout(command.display, self.timeout)
                    logger.error("%s", err)
                    emit(self._failure_event(phase, start, "Installation timed out", last_line, err))
                    raise err

                wait = max(0.0, min(next_tick, deadline) - now)
                try:
                    kind, source, payload = q.get(timeout=wait)
                except queue.Empty:
                    kind = None

                now = time.monotonic()
                if kind == _LINE:
                    line = str(payload)
                    last_line = line
                    if source == "stderr":
                        stderr_tail.append(line)
                    logger.debug("[%s] %s", source, line)
                    emit(ProgressEvent(
                        phase=phase, progress=progress, step=label, log_output=line,
                    ))
                    deadline = now + self.timeout
                elif kind == _EOF:
                    open_streams -= 1
                elif kind == _EXIT:
                    exit_code = int(payload)  # type: ignore[arg-type]
                    exit_seen_at = now

                if now >= next_tick:
                    next_tick = now + self.tick_interval
                    if exit_code is None:
                        progress += (end - progress) * _TICK_FRACTION
                        emit(ProgressEvent(phase=phase, progress=progress, step=label))
        finally:
            _drain(q, threads)

        if exit_code == 0:
            emit(ProgressEvent(
                phase=phase,
                progress=end,
                step="Installation step complete",
            ))
            return last_line

        rejected = command.privileged and any(
            marker in line.lower() for line in stderr_tail for marker in _SUDO_REJECTED
        )
        if rejected:
            err: CommandFailure = PrivilegeError(command.display, exit_code or -1)
        else:
            err = CommandFailure(command.display, exit_code if exit_code is not None else -1, last_line)
        logger.error("Command execution failed: %s", err)
        logger.info("Last output before failure: %s", last_line)
        emit(self._failure_event(phase, start, "Command failed", last_line, err))
        raise err

    def _flush(
        self,
        q: queue.Queue,
        phase: InstallPhase,
        progress: float,
        label: str,
        emit: EventSink,
    ) -> None:
        """Emit whatever lines are already queued (best effort)."""
        while True:
            try:
                kind, _source, payload = q.get_nowait()
            except queue.Empty:
                return
            if kind == _LINE:
                emit(ProgressEvent(phase=phase, progress=progress, step=label, log_output=str(payload)))

    @staticmethod
    def _failure_event(
        phase: InstallPhase,
        start: float,
        step: str,
        last_line: str,
        error: BaseException,
    ) -> ProgressEvent:
        return ProgressEvent(
            phase=phase,
            progress=start,
            step=step,
            log_output=last_line or None,
            error=error,
        )


# ── Helper threads ──────────────────────────────────────────────


def _read_stream(stream: IO[str] | None, source: str, q: queue.Queue) -> None:
    """Push each line of ``stream`` into ``q``, then an EOF marker."""
    try:
        if stream is not None:
            for line in stream:
                q.put((_LINE, source, line.rstrip("\r\n")))
    except (OSError, ValueError) as e:
        # Stream closed underneath us when the process was killed
        logger.debug("Reader for %s stopped: %s", source, e)
    finally:
        q.put((_EOF, source, None))


def _wait_exit(proc: subprocess.Popen, q: queue.Queue) -> None:
    q.put((_EXIT, "", proc.wait()))


def _terminate(proc: subprocess.Popen) -> None:
    """Stop ``proc`` and reap it.

    SIGTERM first: sudo relays it to the privileged child, which a
    SIGKILL to sudo itself would not.
    """
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=_TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def _drain(q: queue.Queue, threads: list[threading.Thread]) -> None:
    """Unblock helper threads stuck on a full queue and let them finish."""
    deadline = time.monotonic() + _FLUSH_GRACE
    while any(t.is_alive() for t in threads) and time.monotonic() < deadline:
        try:
            q.get(timeout=0.05)
        except queue.Empty:
            continue
