"""Action execution backends."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections.abc import Mapping
from typing import IO, TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from trackkit.engine.pipeline import Action

PROGRAM_NOT_FOUND_EXIT_CODE = 127


class ActionExecutor(Protocol):
    def execute(
        self,
        action: "Action",
        *,
        cwd: str,
        env: Mapping[str, str],
        cancel_event: threading.Event,
        logger: logging.Logger,
        label: str,
    ) -> int:
        ...


class SubprocessExecutor:
    """Runs actions as child processes and streams their output to the track logger.

    The child gets its own process group so cancellation can stop the whole tree
    (``cargo`` spawns ``rustc`` children).
    """

    def __init__(
        self,
        *,
        poll_interval: float = 0.1,
        kill_grace_seconds: float = 10.0,
        output_drain_seconds: float = 5.0,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must be >= 0")
        if output_drain_seconds <= 0:
            raise ValueError("output_drain_seconds must be > 0")
        self.poll_interval = poll_interval
        self.kill_grace_seconds = kill_grace_seconds
        self.output_drain_seconds = output_drain_seconds

    def execute(
        self,
        action: "Action",
        *,
        cwd: str,
        env: Mapping[str, str],
        cancel_event: threading.Event,
        logger: logging.Logger,
        label: str,
    ) -> int:
        logger.info("Running %s: %s (cwd=%s)", label, shlex.join(action.argv), cwd)
        try:
            proc = subprocess.Popen(
                list(action.argv),
                cwd=cwd,
                env=dict(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as exc:
            logger.error("Program not found for %s: %s", label, exc)
            return PROGRAM_NOT_FOUND_EXIT_CODE

        reader = threading.Thread(
            target=self._pump_output,
            args=(proc.stdout, logger, label),
            name=f"output:{label}",
            daemon=True,
        )
        reader.start()

        while True:
            try:
                return_code = proc.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event.is_set():
                    return_code = self._stop(proc, logger, label)
                    break

        # A background grandchild can hold the pipe open after the child exits.
        reader.join(timeout=self.output_drain_seconds)
        if reader.is_alive():
            logger.warning(
                "Output of %s still open %.1fs after exit; not waiting for it", label, self.output_drain_seconds
            )
        logger.debug("Finished %s (exit=%s)", label, return_code)
        return return_code

    def _pump_output(self, stream: IO[str] | None, logger: logging.Logger, label: str) -> None:
        if stream is None:
            return
        with stream:
            for line in stream:
                logger.info("[%s] %s", label, line.rstrip("\r\n"))

    def _signal(self, proc: subprocess.Popen, sig: int) -> None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except ProcessLookupError:
            return

    def _stop(self, proc: subprocess.Popen, logger: logging.Logger, label: str) -> int:
        logger.warning("Cancelling %s (pid=%s)", label, proc.pid)
        self._signal(proc, signal.SIGTERM)
        try:
            return proc.wait(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Killing %s after %.1fs grace period", label, self.kill_grace_seconds)
            self._signal(proc, signal.SIGKILL if os.name == "posix" else signal.SIGTERM)
            return proc.wait()
