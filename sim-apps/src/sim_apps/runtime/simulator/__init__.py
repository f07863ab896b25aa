"""Simulator runtime helpers for sim-apps.

This package contains *thin* wrappers around ``xcrun simctl`` plus the
application lifecycle commands built on top of them. Unit tests never need a
booted simulator: every device-facing collaborator can be replaced by a fake
that implements the same methods.
"""

from __future__ import annotations

from sim_apps.runtime.simulator.applications import (
    ApplicationCommands,
    OperationResult,
    run_operation,
)
from sim_apps.runtime.simulator.controller import (
    ProcessInfo,
    SimctlResult,
    SimulatorController,
    SimulatorControllerError,
)
from sim_apps.runtime.simulator.launch import LaunchConfiguration, SimctlLaunchStrategy
from sim_apps.runtime.simulator.termination import SubprocessTerminationStrategy

__all__ = [
    "ApplicationCommands",
    "LaunchConfiguration",
    "OperationResult",
    "ProcessInfo",
    "SimctlLaunchStrategy",
    "SimctlResult",
    "SimulatorController",
    "SimulatorControllerError",
    "SubprocessTerminationStrategy",
    "run_operation",
]
