"""Application lifecycle commands for one simulator device.

`ApplicationCommands` installs, uninstalls, queries, launches and kills
applications on the device it is bound to. Each operation re-reads device and
filesystem state at call time, runs its precondition checks before touching
the device, and raises exactly one `ApplicationCommandError` on failure after
cleaning up anything it created.

The device handle is borrowed, never owned: only a weak reference is kept, and
an operation issued after the device is gone (or closed) raises
`DeviceClosedError`. There is no internal locking; callers that issue
overlapping operations for the same bundle id must serialize them.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import (
    AbstractSet,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
)

from sim_apps.bundle.architecture import validate_architectures
from sim_apps.bundle.descriptor import ApplicationDescriptor, InstallType, parse_application
from sim_apps.bundle.resolver import (
    DEFAULT_UNZIP_PATH,
    DEFAULT_UNZIP_TIMEOUT_S,
    resolve_application_path,
)
from sim_apps.errors import (
    ApplicationCommandError,
    DeviceClosedError,
    DeviceLayerError,
    NotInstalledError,
    NotRunningError,
    ParseError,
    ProtectedApplicationError,
    TerminationError,
)
from sim_apps.runtime.simulator.controller import (
    APPLICATION_PATH_KEY,
    APPLICATION_TYPE_KEY,
    ProcessInfo,
)
from sim_apps.runtime.simulator.launch import LaunchConfiguration, SimctlLaunchStrategy
from sim_apps.runtime.simulator.termination import SubprocessTerminationStrategy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DeviceHandle(Protocol):
    device_variant: str

    def installed_applications(self) -> Mapping[str, Mapping[str, Any]]: ...

    def is_system_application(self, bundle_id: str) -> bool: ...

    def install(self, bundle_path: str | Path, options: Optional[Mapping[str, Any]] = None) -> None: ...

    def uninstall(self, bundle_id: str, options: Optional[Mapping[str, Any]] = None) -> None: ...

    def running_process(self, bundle_id: str) -> Optional[ProcessInfo]: ...


class ProcessTerminator(Protocol):
    def terminate(self, process: ProcessInfo) -> None: ...


class LaunchStrategy(Protocol):
    def launch(self, configuration: LaunchConfiguration) -> Optional[ProcessInfo]: ...


@dataclass(frozen=True)
class OperationResult:
    """Value-style outcome of one lifecycle operation."""

    ok: bool
    value: Any = None
    error: Optional[ApplicationCommandError] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok, "value": self.value}
        if self.error is not None:
            cause = self.error.cause
            out["error"] = {
                "type": type(self.error).__name__,
                "message": self.error.message,
                "cause": f"{type(cause).__name__}: {cause}" if cause is not None else None,
            }
        return out


def run_operation(fn: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult:
    """Call `fn` and fold an ApplicationCommandError into a failed result."""

    try:
        value = fn(*args, **kwargs)
    except ApplicationCommandError as e:
        return OperationResult(ok=False, error=e)
    return OperationResult(ok=True, value=value)


class ApplicationCommands:
    def __init__(
        self,
        simulator: DeviceHandle,
        *,
        launch_strategy_factory: Optional[Callable[[Any], LaunchStrategy]] = None,
        terminator: Optional[ProcessTerminator] = None,
        architecture_table: Optional[Mapping[str, AbstractSet[str]]] = None,
        unzip_path: str = DEFAULT_UNZIP_PATH,
        unzip_timeout_s: float = DEFAULT_UNZIP_TIMEOUT_S,
        temp_root: Optional[Path] = None,
    ) -> None:
        self._simulator_ref = weakref.ref(simulator)
        self._launch_strategy_factory = launch_strategy_factory or SimctlLaunchStrategy.with_simulator
        self._terminator = terminator or SubprocessTerminationStrategy()
        self._architecture_table = architecture_table
        self._unzip_path = unzip_path
        self._unzip_timeout_s = float(unzip_timeout_s)
        self._temp_root = temp_root

    @classmethod
    def with_simulator(cls, simulator: DeviceHandle, **kwargs: Any) -> "ApplicationCommands":
        return cls(simulator, **kwargs)

    @property
    def simulator(self) -> DeviceHandle:
        simulator = self._simulator_ref()
        if simulator is None or getattr(simulator, "closed", False):
            raise DeviceClosedError("The simulator backing these commands has been torn down")
        return simulator

    def _describe_device(self, simulator: DeviceHandle) -> str:
        udid = getattr(simulator, "udid", None)
        return f"simulator {udid}" if udid else "simulator"

    def _device_call(self, description: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except ApplicationCommandError:
            raise
        except Exception as e:
            raise DeviceLayerError(description, cause=e) from e

    def _is_system_application(self, simulator: DeviceHandle, bundle_id: str) -> bool:
        return bool(
            self._device_call(
                f"Could not determine whether '{bundle_id}' is a system application on "
                f"{self._describe_device(simulator)}",
                simulator.is_system_application,
                bundle_id,
            )
        )

    def _installed_records(self, simulator: DeviceHandle) -> Mapping[str, Mapping[str, Any]]:
        return self._device_call(
            f"Could not list installed applications on {self._describe_device(simulator)}",
            simulator.installed_applications,
        )

    # ------------------------------------ Operations ------------------------------------

    def install(self, path: str | Path) -> None:
        """Install the bundle or archive at `path`.

        System applications are left untouched: installing one is a no-op.
        Installing an already installed user application re-installs it.
        """

        simulator = self.simulator
        app_path, extraction = resolve_application_path(
            path,
            unzip_path=self._unzip_path,
            timeout_s=self._unzip_timeout_s,
            temp_root=self._temp_root,
        )
        try:
            self._install_extracted(simulator, app_path)
        finally:
            if extraction is not None:
                extraction.release()

    def _install_extracted(self, simulator: DeviceHandle, path: Path) -> None:
        try:
            application = parse_application(path, install_type=InstallType.USER)
        except ParseError as e:
            raise ParseError(
                f"Could not determine Application information for path {path}", cause=e
            ) from e

        if self._is_system_application(simulator, application.bundle_id):
            logger.info("'%s' is a system application; skipping install", application.bundle_id)
            return

        validate_architectures(
            application,
            simulator.device_variant,
            table=self._architecture_table,
        )

        options = {"CFBundleIdentifier": application.bundle_id}
        self._device_call(
            f"Failed to install Application {application.bundle_id} at {application.path} "
            f"with options {options}",
            simulator.install,
            application.path,
            options,
        )
        logger.info("installed %s from %s", application.bundle_id, application.path)

    def uninstall(self, bundle_id: str) -> None:
        simulator = self.simulator
        if self._is_system_application(simulator, bundle_id):
            raise ProtectedApplicationError(
                f"Can't uninstall '{bundle_id}' as it is a system Application"
            )
        if bundle_id not in self._installed_records(simulator):
            raise NotInstalledError(f"Can't uninstall '{bundle_id}' as it isn't installed")

        self._terminate_if_running(simulator, bundle_id)

        self._device_call(
            f"Failed to uninstall '{bundle_id}'",
            simulator.uninstall,
            bundle_id,
            None,
        )
        logger.info("uninstalled %s", bundle_id)

    def _terminate_if_running(self, simulator: DeviceHandle, bundle_id: str) -> None:
        try:
            process = simulator.running_process(bundle_id)
            if process is not None:
                self._terminator.terminate(process)
        except Exception as e:
            logger.warning(
                "ignoring failure to terminate '%s' before uninstall: %s", bundle_id, e
            )

    def is_installed(self, bundle_id: str) -> bool:
        return bundle_id in self._installed_records(self.simulator)

    def launch(self, configuration: LaunchConfiguration) -> bool:
        strategy = self._launch_strategy_factory(self.simulator)
        process = self._device_call(
            f"Failed to launch '{configuration.bundle_id}'",
            strategy.launch,
            configuration,
        )
        return process is not None

    def kill(self, bundle_id: str) -> None:
        simulator = self.simulator
        process = self._device_call(
            f"Could not look up running processes for '{bundle_id}'",
            simulator.running_process,
            bundle_id,
        )
        if process is None:
            raise NotRunningError(
                f"Could not find a running application for '{bundle_id}' on "
                f"{self._describe_device(simulator)}"
            )
        try:
            self._terminator.terminate(process)
        except TerminationError:
            raise
        except Exception as e:
            raise TerminationError(
                f"Failed to terminate '{bundle_id}' (pid {process.pid})", cause=e
            ) from e

    def installed_applications(self) -> List[ApplicationDescriptor]:
        """Descriptors for every parsable installed application, ordered by bundle id."""

        applications: List[ApplicationDescriptor] = []
        records = self._installed_records(self.simulator)
        for bundle_id in sorted(records):
            info = records[bundle_id]
            if not isinstance(info, Mapping):
                logger.debug("skipping installed application %s: malformed record", bundle_id)
                continue
            app_path = info.get(APPLICATION_PATH_KEY)
            if not isinstance(app_path, str) or not app_path:
                logger.debug("skipping installed application %s: no path", bundle_id)
                continue
            try:
                application = parse_application(
                    app_path,
                    install_type=InstallType.from_string(info.get(APPLICATION_TYPE_KEY)),
                )
            except ParseError as e:
                logger.debug("skipping installed application %s: %s", bundle_id, e)
                continue
            applications.append(application)
        return applications
