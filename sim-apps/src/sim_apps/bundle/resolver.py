"""Turn an install source (a `.app` directory or an IPA-style zip) into a bundle path.

Archives are unpacked into a fresh temporary directory with the external
``unzip`` utility. The directory is owned by the `ExtractionHandle` returned
to the caller; on every failure path it is removed before the error is
raised, so a failed resolution never leaves anything behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from sim_apps.bundle.descriptor import APPLICATION_SUFFIX
from sim_apps.errors import ExtractionError, ResolutionError

logger = logging.getLogger(__name__)

DEFAULT_UNZIP_PATH = "/usr/bin/unzip"
DEFAULT_UNZIP_TIMEOUT_S = 30.0
_TEMP_PREFIX = "sim_apps_extract_"


def delete_directory(path: Optional[Path]) -> bool:
    """Best-effort recursive delete. Failures are logged, never raised."""

    if path is None:
        return True
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("failed to delete temporary directory %s: %s", path, e)
        return False
    return True


def is_application_at_path(path: Optional[str | Path]) -> bool:
    if path is None:
        return False
    p = Path(path)
    return p.name.endswith(APPLICATION_SUFFIX) and p.is_dir()


@dataclass
class ExtractionHandle:
    """Owns a temporary extraction directory until `release()` is called."""

    path: Path
    released: bool = field(default=False, init=False)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        delete_directory(self.path)

    def __enter__(self) -> "ExtractionHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def unzip_archive(
    archive: Path,
    destination: Path,
    *,
    unzip_path: str = DEFAULT_UNZIP_PATH,
    timeout_s: float = DEFAULT_UNZIP_TIMEOUT_S,
) -> None:
    """Run `unzip <archive> -d <destination>`; only exit status 0 is accepted."""

    cmd = [unzip_path, "-q", str(archive), "-d", str(destination)]
    logger.debug("unpacking: %s", " ".join(cmd))
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=float(timeout_s),
        )
    except subprocess.TimeoutExpired as e:
        raise ExtractionError(
            f"Could not unzip IPA at {archive}: timed out after {timeout_s}s", cause=e
        ) from e
    except OSError as e:
        raise ExtractionError(f"Could not unzip IPA at {archive}: {e}", cause=e) from e

    if proc.returncode != 0:
        raise ExtractionError(
            f"Could not unzip IPA at {archive} (rc={proc.returncode}): "
            f"{(proc.stderr or proc.stdout or '').strip()[:500]}"
        )


def find_application_bundles(root: Path) -> List[Path]:
    """Recursively collect `.app` directories below `root`, at any depth.

    Bundles nested inside a matched bundle (watch apps, app clips) are
    collected too.
    """

    found: List[Path] = []
    for dirpath, dirnames, _ in os.walk(root):
        dirnames.sort()
        for name in dirnames:
            candidate = Path(dirpath) / name
            if is_application_at_path(candidate):
                found.append(candidate)
    return found


def resolve_application_path(
    path: str | Path,
    *,
    unzip_path: str = DEFAULT_UNZIP_PATH,
    timeout_s: float = DEFAULT_UNZIP_TIMEOUT_S,
    temp_root: Optional[Path] = None,
) -> Tuple[Path, Optional[ExtractionHandle]]:
    """Return `(bundle_path, handle)`; `handle` is None when nothing was extracted."""

    source = Path(path)
    if is_application_at_path(source):
        return source, None

    if not source.is_file():
        raise ResolutionError(f"{source} is neither an application bundle nor an archive")

    try:
        temp_dir = Path(
            tempfile.mkdtemp(prefix=_TEMP_PREFIX, dir=str(temp_root) if temp_root else None)
        )
    except OSError as e:
        raise ExtractionError(
            "Could not create temporary directory for IPA extraction", cause=e
        ) from e

    try:
        unzip_archive(source, temp_dir, unzip_path=unzip_path, timeout_s=timeout_s)
        bundles = find_application_bundles(temp_dir)
        if len(bundles) != 1:
            raise ResolutionError(
                f"Expected exactly one application bundle in {source}, found {len(bundles)}"
            )
    except BaseException:
        delete_directory(temp_dir)
        raise

    return bundles[0], ExtractionHandle(path=temp_dir)
