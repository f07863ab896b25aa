from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from sim_apps.errors import LaunchError
from sim_apps.runtime.simulator.controller import (
    ProcessInfo,
    SimulatorController,
    SimulatorControllerError,
)

logger = logging.getLogger(__name__)

# simctl forwards variables with this prefix (stripped) to the launched process.
SIMCTL_CHILD_ENV_PREFIX = "SIMCTL_CHILD_"

_LAUNCH_OUTPUT_RE = re.compile(r"^\s*(?P<bundle_id>[^\s:]+):\s*(?P<pid>\d+)\s*$", flags=re.MULTILINE)


@dataclass(frozen=True)
class LaunchConfiguration:
    bundle_id: str
    arguments: Tuple[str, ...] = ()
    environment: Mapping[str, str] = field(default_factory=dict)
    wait_for_debugger: bool = False
    terminate_running: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "arguments": list(self.arguments),
            "environment": dict(self.environment),
            "wait_for_debugger": self.wait_for_debugger,
            "terminate_running": self.terminate_running,
        }


def parse_launch_output(txt: str, *, bundle_id: str) -> Optional[int]:
    """Parse the `<bundle_id>: <pid>` line printed by `simctl launch`."""

    for m in _LAUNCH_OUTPUT_RE.finditer(txt or ""):
        if m.group("bundle_id") == bundle_id:
            return int(m.group("pid"))
    return None


class SimctlLaunchStrategy:
    """Launch an installed application through `simctl launch`."""

    def __init__(self, simulator: SimulatorController) -> None:
        self._simulator = simulator

    @classmethod
    def with_simulator(cls, simulator: SimulatorController) -> "SimctlLaunchStrategy":
        return cls(simulator)

    def _launch_args(self, configuration: LaunchConfiguration) -> list[str]:
        args = ["launch"]
        if configuration.wait_for_debugger:
            args.append("--wait-for-debugger")
        if configuration.terminate_running:
            args.append("--terminate-running-process")
        args += [self._simulator.udid, configuration.bundle_id]
        args += [str(a) for a in configuration.arguments]
        return args

    def launch(self, configuration: LaunchConfiguration) -> Optional[ProcessInfo]:
        args = self._launch_args(configuration)
        env = {
            f"{SIMCTL_CHILD_ENV_PREFIX}{k}": str(v) for k, v in configuration.environment.items()
        }
        try:
            res = self._simulator.simctl(*args, env=env or None)
        except SimulatorControllerError as e:
            raise LaunchError(f"Failed to launch '{configuration.bundle_id}'", cause=e) from e

        pid = parse_launch_output(res.stdout, bundle_id=configuration.bundle_id)
        if pid is None:
            logger.warning(
                "simctl launch for %s printed no pid: %r", configuration.bundle_id, res.stdout
            )
            return None
        logger.info("launched %s (pid %s)", configuration.bundle_id, pid)
        return ProcessInfo(pid=pid, bundle_id=configuration.bundle_id)
