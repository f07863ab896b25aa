from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from sim_apps.bundle.architecture import merge_architecture_table
from sim_apps.config import SimAppsConfig, load_config
from sim_apps.errors import ConfigError
from sim_apps.runtime.simulator.applications import (
    ApplicationCommands,
    OperationResult,
    run_operation,
)
from sim_apps.runtime.simulator.controller import SimulatorController
from sim_apps.runtime.simulator.launch import LaunchConfiguration
from sim_apps.runtime.simulator.termination import SubprocessTerminationStrategy

logger = logging.getLogger(__name__)


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, default=str)


def _parse_env_pairs(pairs: Sequence[str]) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise SystemExit(f"--env expects KEY=VALUE, got: {pair!r}")
        key, value = pair.split("=", 1)
        if not key:
            raise SystemExit(f"--env expects KEY=VALUE, got: {pair!r}")
        env[key] = value
    return env


def build_controller(cfg: SimAppsConfig) -> SimulatorController:
    return SimulatorController(
        udid=cfg.device_udid,
        xcrun_path=cfg.xcrun_path,
        plutil_path=cfg.plutil_path,
        timeout_s=cfg.command_timeout_s,
        device_variant=cfg.device_variant,
    )


def build_commands(cfg: SimAppsConfig, simulator: SimulatorController) -> ApplicationCommands:
    return ApplicationCommands.with_simulator(
        simulator,
        terminator=SubprocessTerminationStrategy(timeout_s=cfg.termination_timeout_s),
        architecture_table=merge_architecture_table(cfg.architecture_table),
        unzip_path=cfg.unzip_path,
        unzip_timeout_s=cfg.unzip_timeout_s,
        temp_root=cfg.temp_root,
    )


def _dispatch(args: argparse.Namespace, commands: ApplicationCommands) -> OperationResult:
    if args.cmd == "install":
        return run_operation(commands.install, args.path)
    if args.cmd == "uninstall":
        return run_operation(commands.uninstall, args.bundle_id)
    if args.cmd == "is-installed":
        return run_operation(commands.is_installed, args.bundle_id)
    if args.cmd == "launch":
        configuration = LaunchConfiguration(
            bundle_id=args.bundle_id,
            arguments=tuple(args.app_args),
            environment=_parse_env_pairs(args.env),
            wait_for_debugger=bool(args.wait_for_debugger),
            terminate_running=bool(args.terminate_running),
        )
        return run_operation(commands.launch, configuration)
    if args.cmd == "kill":
        return run_operation(commands.kill, args.bundle_id)
    if args.cmd == "list":
        result = run_operation(commands.installed_applications)
        if result.ok:
            return OperationResult(ok=True, value=[a.to_dict() for a in result.value])
        return result
    raise SystemExit(f"unknown subcommand: {args.cmd}")  # pragma: no cover


def _print_applications(applications: list[Dict[str, Any]]) -> None:
    if not applications:
        print("(no installed applications)")
        return

    cols = ["bundle_id", "install_type", "name"]
    width = {c: max(len(c), *(len(str(a[c])) for a in applications)) for c in cols}
    header = "  ".join(c.ljust(width[c]) for c in cols)
    print(header)
    print("-" * len(header))
    for a in applications:
        print("  ".join(str(a[c]).ljust(width[c]) for c in cols))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Manage applications on a single simulator device."
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=os.environ.get("SIM_APPS_CONFIG"),
        help="YAML/JSON config file (default: $SIM_APPS_CONFIG)",
    )
    parser.add_argument(
        "--udid",
        type=str,
        default=None,
        help="Simulator UDID or 'booted' (default: config, $SIM_APPS_UDID, or booted)",
    )
    parser.add_argument(
        "--xcrun_path",
        type=str,
        default=None,
        help="Path to xcrun (default: config, $SIM_APPS_XCRUN_PATH, or xcrun)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    install_p = sub.add_parser("install", help="Install a .app bundle or an IPA archive.")
    install_p.add_argument("path", type=Path)

    uninstall_p = sub.add_parser("uninstall", help="Uninstall a user application.")
    uninstall_p.add_argument("bundle_id")

    installed_p = sub.add_parser("is-installed", help="Report whether a bundle id is installed.")
    installed_p.add_argument("bundle_id")

    launch_p = sub.add_parser("launch", help="Launch an installed application.")
    launch_p.add_argument("bundle_id")
    launch_p.add_argument(
        "app_args",
        nargs=argparse.REMAINDER,
        help="Arguments for the app (launch options go before the bundle id)",
    )
    launch_p.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for the launched app (repeatable)",
    )
    launch_p.add_argument("--wait-for-debugger", action="store_true")
    launch_p.add_argument("--terminate-running", action="store_true")

    kill_p = sub.add_parser("kill", help="Terminate a running application.")
    kill_p.add_argument("bundle_id")

    list_p = sub.add_parser("list", help="List installed applications.")
    list_p.add_argument("--json", action="store_true", help="Print JSON instead of a table.")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(_json_dumps({"ok": False, "error": {"type": "ConfigError", "message": str(e)}}))
        return 1
    if args.udid:
        cfg = replace(cfg, device_udid=args.udid)
    if args.xcrun_path:
        cfg = replace(cfg, xcrun_path=args.xcrun_path)

    simulator = build_controller(cfg)
    commands = build_commands(cfg, simulator)
    result = _dispatch(args, commands)

    if args.cmd == "list" and result.ok and not args.json:
        _print_applications(result.value)
    else:
        print(_json_dumps(result.to_dict()))
    if not result.ok:
        logger.debug("%s failed: %s", args.cmd, result.error.describe() if result.error else "")
    return 0 if result.ok else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
