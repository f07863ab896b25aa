"""Terminate simulator application processes.

Simulator applications run as ordinary host processes, so termination is a
host-side kill through psutil followed by a bounded wait for the process to
exit.
"""

from __future__ import annotations

import logging

import psutil

from sim_apps.errors import TerminationError
from sim_apps.runtime.simulator.controller import ProcessInfo

logger = logging.getLogger(__name__)


class SubprocessTerminationStrategy:
    def __init__(self, *, timeout_s: float = 10.0) -> None:
        self._timeout_s = float(timeout_s)

    def terminate(self, process: ProcessInfo) -> None:
        """Kill `process` and wait for it to exit. A vanished pid counts as success."""

        pid = int(process.pid)
        if pid <= 0:
            raise TerminationError(f"Refusing to signal invalid pid {pid} for {process.bundle_id}")

        try:
            proc = psutil.Process(pid)
            proc.kill()
            proc.wait(timeout=self._timeout_s)
        except psutil.NoSuchProcess:
            logger.debug("process %s (%s) already exited", pid, process.bundle_id)
            return
        except psutil.AccessDenied as e:
            raise TerminationError(
                f"Not permitted to terminate {process.bundle_id} (pid {pid})", cause=e
            ) from e
        except psutil.TimeoutExpired as e:
            raise TerminationError(
                f"{process.bundle_id} (pid {pid}) did not exit within {self._timeout_s}s",
                cause=e,
            ) from e
        logger.info("terminated %s (pid %s)", process.bundle_id, pid)
