"""Simulator controller utilities.

A *thin* wrapper around ``xcrun simctl`` for one simulator device. It is the
device handle used by `ApplicationCommands`:

  * installed application records (``simctl listapps``)
  * low-level install / uninstall primitives
  * running process lookup (the simulator's ``launchctl list``)

Notes
-----
* Device provisioning, boot/shutdown and multi-device orchestration are out of
  scope; the device is expected to be booted already.
* Every command is run synchronously with a bounded timeout.
"""

from __future__ import annotations

import logging
import os
import platform
import plistlib
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

APPLICATION_TYPE_KEY = "ApplicationType"
APPLICATION_PATH_KEY = "Path"
BUNDLE_ID_KEY = "CFBundleIdentifier"

_LAUNCHCTL_APP_LABEL_RE = re.compile(r"^UIKitApplication:(?P<bundle_id>[^\[\s]+)(?:\[|$)")
_HOST_MACHINE_TO_VARIANT = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "i386": "i386",
    "i686": "i386",
    "arm64": "arm64",
    "aarch64": "arm64",
}


class SimulatorControllerError(RuntimeError):
    """Raised when a simctl operation fails."""


@dataclass(frozen=True)
class SimctlResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    bundle_id: str
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"pid": self.pid, "bundle_id": self.bundle_id, "label": self.label}


def _host_device_variant() -> str:
    machine = platform.machine().lower()
    return _HOST_MACHINE_TO_VARIANT.get(machine, machine)


def parse_launchctl_list(txt: str) -> Dict[str, ProcessInfo]:
    """Map bundle id -> ProcessInfo for running UIKit applications.

    ``launchctl list`` prints ``PID<TAB>Status<TAB>Label``; jobs that are not
    running have ``-`` as their pid and are skipped.
    """

    processes: Dict[str, ProcessInfo] = {}
    for raw_line in txt.splitlines():
        parts = raw_line.split(None, 2)
        if len(parts) != 3:
            continue
        pid_txt, _, label = parts
        m = _LAUNCHCTL_APP_LABEL_RE.match(label.strip())
        if not m:
            continue
        try:
            pid = int(pid_txt)
        except ValueError:
            continue
        if pid <= 0:
            continue
        bundle_id = m.group("bundle_id")
        processes[bundle_id] = ProcessInfo(pid=pid, bundle_id=bundle_id, label=label.strip())
    return processes


class SimulatorController:
    """Thin wrapper around `xcrun simctl` bound to one simulator device."""

    def __init__(
        self,
        *,
        udid: str = "booted",
        xcrun_path: str = "xcrun",
        plutil_path: str = "plutil",
        timeout_s: float = 30.0,
        device_variant: Optional[str] = None,
    ) -> None:
        self._udid = udid
        self._xcrun_path = xcrun_path
        self._plutil_path = plutil_path
        self._timeout_s = float(timeout_s)
        self._device_variant = device_variant or _host_device_variant()
        self._closed = False

    @property
    def udid(self) -> str:
        return self._udid

    @property
    def device_variant(self) -> str:
        return self._device_variant

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def _run(
        self,
        cmd: list[str],
        *,
        timeout_s: float | None,
        check: bool,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> SimctlResult:
        if self._closed:
            raise SimulatorControllerError(f"simulator {self._udid} has been closed")
        logger.debug("running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                input=input_text,
                env={**os.environ, **env} if env else None,
                capture_output=True,
                text=True,
                timeout=self._timeout_s if timeout_s is None else float(timeout_s),
            )
        except subprocess.TimeoutExpired as e:
            raise SimulatorControllerError(f"command timed out: {' '.join(cmd)}") from e
        except OSError as e:
            raise SimulatorControllerError(f"command could not be started: {' '.join(cmd)}") from e
        result = SimctlResult(
            args=cmd,
            stdout=proc.stdout,
            stderr=proc.stderr,
            returncode=proc.returncode,
        )
        if check and not result.ok():
            raise SimulatorControllerError(
                f"command failed (rc={result.returncode}): {' '.join(cmd)}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        return result

    def simctl(
        self,
        *args: str,
        timeout_s: float | None = None,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> SimctlResult:
        """Run `xcrun simctl <args>` and return stdout/stderr/returncode.

        `env` entries are added to the inherited environment.
        """

        cmd = [self._xcrun_path, "simctl"] + list(args)
        return self._run(cmd, timeout_s=timeout_s, check=check, env=env)

    def spawn(self, *args: str, timeout_s: float | None = None, check: bool = True) -> SimctlResult:
        """Run a command inside the simulator (`simctl spawn <udid> ...`)."""

        return self.simctl("spawn", self._udid, *args, timeout_s=timeout_s, check=check)

    def _plist_from_text(self, txt: str) -> Any:
        data = txt.encode("utf-8")
        try:
            return plistlib.loads(data)
        except (plistlib.InvalidFileException, ValueError):
            pass
        # `simctl listapps` prints an old-style (OpenStep) plist; plutil converts it.
        res = self._run(
            [self._plutil_path, "-convert", "xml1", "-o", "-", "-"],
            timeout_s=None,
            check=True,
            input_text=txt,
        )
        try:
            return plistlib.loads(res.stdout.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as e:
            raise SimulatorControllerError("plutil produced an unreadable plist") from e

    # ------------------------------ Device handle API ------------------------------

    def installed_applications(self) -> Dict[str, Mapping[str, Any]]:
        res = self.simctl("listapps", self._udid)
        data = self._plist_from_text(res.stdout)
        if not isinstance(data, dict):
            raise SimulatorControllerError("simctl listapps did not return a dictionary")
        return {
            str(bundle_id): info
            for bundle_id, info in data.items()
            if isinstance(info, Mapping)
        }

    def installed_application(self, bundle_id: str) -> Optional[Mapping[str, Any]]:
        return self.installed_applications().get(bundle_id)

    def is_system_application(self, bundle_id: str) -> bool:
        info = self.installed_application(bundle_id)
        if info is None:
            return False
        return str(info.get(APPLICATION_TYPE_KEY, "")).lower() == "system"

    def install(self, bundle_path: str | Path, options: Optional[Mapping[str, Any]] = None) -> None:
        logger.debug("install %s options=%s", bundle_path, dict(options or {}))
        self.simctl("install", self._udid, str(bundle_path))

    def uninstall(self, bundle_id: str, options: Optional[Mapping[str, Any]] = None) -> None:
        logger.debug("uninstall %s options=%s", bundle_id, dict(options or {}))
        self.simctl("uninstall", self._udid, bundle_id)

    def running_processes(self) -> Dict[str, ProcessInfo]:
        res = self.spawn("launchctl", "list")
        return parse_launchctl_list(res.stdout)

    def running_process(self, bundle_id: str) -> Optional[ProcessInfo]:
        return self.running_processes().get(bundle_id)
