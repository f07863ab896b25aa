"""Application bundle metadata.

Builds an `ApplicationDescriptor` from a `.app` directory on disk:

  * bundle identity comes from ``Info.plist`` (XML or binary)
  * the executable's architectures come from its Mach-O header(s)

Descriptors are immutable and are never cached: each lifecycle operation
re-reads the bundle it is working on.
"""

from __future__ import annotations

import enum
import plistlib
import struct
from xml.parsers.expat import ExpatError
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

from sim_apps.errors import ParseError

APPLICATION_SUFFIX = ".app"

_FAT_MAGIC = 0xCAFEBABE
_FAT_MAGIC_64 = 0xCAFEBABF
# Thin headers as read big-endian: (magic, little_endian, is_64).
_THIN_MAGICS: Dict[int, Tuple[bool, bool]] = {
    0xFEEDFACE: (False, False),
    0xFEEDFACF: (False, True),
    0xCEFAEDFE: (True, False),
    0xCFFAEDFE: (True, True),
}

_CPU_ARCH_ABI64 = 0x01000000
_CPU_ARCH_ABI64_32 = 0x02000000
_CPU_TYPE_X86 = 7
_CPU_TYPE_ARM = 12
_CPU_SUBTYPE_MASK = 0x00FFFFFF

_ARCH_NAMES: Dict[Tuple[int, Optional[int]], str] = {
    (_CPU_TYPE_X86, None): "i386",
    (_CPU_TYPE_X86 | _CPU_ARCH_ABI64, None): "x86_64",
    (_CPU_TYPE_X86 | _CPU_ARCH_ABI64, 8): "x86_64h",
    (_CPU_TYPE_ARM, None): "arm",
    (_CPU_TYPE_ARM, 9): "armv7",
    (_CPU_TYPE_ARM, 11): "armv7s",
    (_CPU_TYPE_ARM, 12): "armv7k",
    (_CPU_TYPE_ARM | _CPU_ARCH_ABI64, None): "arm64",
    (_CPU_TYPE_ARM | _CPU_ARCH_ABI64, 2): "arm64e",
    (_CPU_TYPE_ARM | _CPU_ARCH_ABI64_32, None): "arm64_32",
}


class InstallType(str, enum.Enum):
    SYSTEM = "System"
    USER = "User"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, value: Any) -> "InstallType":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class BinaryDescriptor:
    path: Path
    architectures: FrozenSet[str]


@dataclass(frozen=True)
class ApplicationDescriptor:
    bundle_id: str
    name: str
    path: Path
    install_type: InstallType
    binary: BinaryDescriptor

    @property
    def is_system(self) -> bool:
        return self.install_type is InstallType.SYSTEM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_id": self.bundle_id,
            "name": self.name,
            "path": str(self.path),
            "install_type": self.install_type.value,
            "binary": {
                "path": str(self.binary.path),
                "architectures": sorted(self.binary.architectures),
            },
        }


def _arch_name(cputype: int, cpusubtype: int) -> str:
    subtype = cpusubtype & _CPU_SUBTYPE_MASK
    name = _ARCH_NAMES.get((cputype, subtype)) or _ARCH_NAMES.get((cputype, None))
    if name is None:
        return f"cpu_{cputype:#x}_{subtype}"
    return name


def read_binary_architectures(path: Path) -> FrozenSet[str]:
    """Return the architectures of a thin or fat Mach-O executable."""

    try:
        with path.open("rb") as f:
            header = f.read(8)
            if len(header) < 8:
                raise ParseError(f"Executable at {path} is too short to be a Mach-O binary")
            (magic,) = struct.unpack(">I", header[:4])

            if magic in (_FAT_MAGIC, _FAT_MAGIC_64):
                (nfat_arch,) = struct.unpack(">I", header[4:8])
                entry_fmt = ">iiQQII" if magic == _FAT_MAGIC_64 else ">iiIII"
                entry_size = struct.calcsize(entry_fmt)
                raw = f.read(entry_size * nfat_arch)
                if len(raw) < entry_size * nfat_arch:
                    raise ParseError(f"Truncated fat header in {path}")
                archs = set()
                for i in range(nfat_arch):
                    entry = struct.unpack_from(entry_fmt, raw, i * entry_size)
                    archs.add(_arch_name(entry[0], entry[1]))
                return frozenset(archs)

            if magic in _THIN_MAGICS:
                little_endian, _ = _THIN_MAGICS[magic]
                f.seek(4)
                raw = f.read(8)
                if len(raw) < 8:
                    raise ParseError(f"Truncated Mach-O header in {path}")
                cputype, cpusubtype = struct.unpack("<ii" if little_endian else ">ii", raw)
                return frozenset({_arch_name(cputype, cpusubtype)})
    except OSError as e:
        raise ParseError(f"Could not read executable at {path}", cause=e) from e

    raise ParseError(f"Executable at {path} is not a Mach-O binary (magic {magic:#010x})")


def _read_info_plist(bundle_path: Path) -> Dict[str, Any]:
    # iOS bundles are flat; macOS-style bundles keep it under Contents/.
    for candidate in (bundle_path / "Info.plist", bundle_path / "Contents" / "Info.plist"):
        if candidate.is_file():
            try:
                with candidate.open("rb") as f:
                    data = plistlib.load(f)
            except (OSError, plistlib.InvalidFileException, ValueError, ExpatError) as e:
                raise ParseError(f"Could not read {candidate}", cause=e) from e
            if not isinstance(data, dict):
                raise ParseError(f"Top-level Info.plist must be a dictionary: {candidate}")
            return data
    raise ParseError(f"No Info.plist in bundle at {bundle_path}")


def parse_application(
    path: str | Path,
    *,
    install_type: InstallType | str = InstallType.USER,
) -> ApplicationDescriptor:
    """Inspect the bundle at `path`. Raises ParseError on any failure."""

    bundle_path = Path(path)
    if not bundle_path.is_dir():
        raise ParseError(f"No application bundle at {bundle_path}")

    info = _read_info_plist(bundle_path)
    bundle_id = info.get("CFBundleIdentifier")
    if not isinstance(bundle_id, str) or not bundle_id.strip():
        raise ParseError(f"Info.plist of {bundle_path} has no CFBundleIdentifier")
    executable = info.get("CFBundleExecutable")
    if not isinstance(executable, str) or not executable.strip():
        raise ParseError(f"Info.plist of {bundle_path} has no CFBundleExecutable")

    binary_path = bundle_path / executable
    if not binary_path.is_file():
        macos_binary = bundle_path / "Contents" / "MacOS" / executable
        if not macos_binary.is_file():
            raise ParseError(f"Executable {executable!r} missing from {bundle_path}")
        binary_path = macos_binary

    name = info.get("CFBundleName") or bundle_path.stem
    if not isinstance(install_type, InstallType):
        install_type = InstallType.from_string(install_type)

    return ApplicationDescriptor(
        bundle_id=bundle_id.strip(),
        name=str(name),
        path=bundle_path,
        install_type=install_type,
        binary=BinaryDescriptor(
            path=binary_path,
            architectures=read_binary_architectures(binary_path),
        ),
    )
