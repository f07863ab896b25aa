"""Error types raised by the application lifecycle commands.

Every failure surfaced to a caller is one of the classes below. The original
cause (a subprocess failure, an OSError, a device-layer error, ...) is chained
with ``raise ... from cause`` and kept on ``.cause`` so that it survives
serialization into an `OperationResult`.
"""

from __future__ import annotations

from typing import Optional


class ApplicationCommandError(RuntimeError):
    """Base class for application lifecycle failures."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def describe(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} (caused by {type(self.cause).__name__}: {self.cause})"


class ResolutionError(ApplicationCommandError):
    """The install source neither is nor contains exactly one application bundle."""


class ExtractionError(ApplicationCommandError):
    """Unpacking an archive failed, timed out, or had nowhere to go."""


class ParseError(ApplicationCommandError):
    """Bundle metadata (Info.plist or executable) could not be read."""


class IncompatibleArchitectureError(ApplicationCommandError):
    """None of the binary's architectures run on the device variant."""


class ProtectedApplicationError(ApplicationCommandError):
    """Attempted mutation of a system application."""


class NotInstalledError(ApplicationCommandError):
    """The bundle id is not installed on the device."""


class NotRunningError(ApplicationCommandError):
    """No running process was found for the bundle id."""


class DeviceLayerError(ApplicationCommandError):
    """Wraps a failure returned by a device primitive."""


class TerminationError(DeviceLayerError):
    """Terminating a running application process failed."""


class LaunchError(DeviceLayerError):
    """The launch strategy failed to start the application."""


class DeviceClosedError(ApplicationCommandError):
    """The borrowed device handle has been torn down."""


class ConfigError(RuntimeError):
    """Raised when a configuration file or override is invalid."""


__all__ = [
    "ApplicationCommandError",
    "ConfigError",
    "DeviceClosedError",
    "DeviceLayerError",
    "ExtractionError",
    "IncompatibleArchitectureError",
    "LaunchError",
    "NotInstalledError",
    "NotRunningError",
    "ParseError",
    "ProtectedApplicationError",
    "ResolutionError",
    "TerminationError",
]
