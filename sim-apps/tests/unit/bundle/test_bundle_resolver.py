from __future__ import annotations

import shutil
import subprocess
import zipfile
from pathlib import Path

import pytest
from sim_fakes import fake_unzip_run, make_app_bundle, make_ipa, timeout_run

from sim_apps.bundle.resolver import (
    delete_directory,
    find_application_bundles,
    is_application_at_path,
    resolve_application_path,
)
from sim_apps.errors import ExtractionError, ResolutionError


@pytest.fixture()
def scratch(tmp_path: Path) -> Path:
    d = tmp_path / "scratch"
    d.mkdir()
    return d


def test_is_application_at_path_requires_suffix_and_directory(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path / "a")
    not_dir = tmp_path / "Fake.app"
    not_dir.write_text("file", encoding="utf-8")
    plain_dir = tmp_path / "plain"
    plain_dir.mkdir()

    assert is_application_at_path(bundle) is True
    assert is_application_at_path(str(bundle)) is True
    assert is_application_at_path(not_dir) is False
    assert is_application_at_path(plain_dir) is False
    assert is_application_at_path(tmp_path / "Missing.app") is False
    assert is_application_at_path(None) is False


def test_raw_bundle_is_returned_unchanged_without_extraction(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    def boom(*args, **kwargs):
        raise AssertionError("unzip must not run for a raw bundle")

    monkeypatch.setattr(subprocess, "run", boom)
    bundle = make_app_bundle(tmp_path / "src")

    path, handle = resolve_application_path(bundle, temp_root=scratch)

    assert path == bundle
    assert handle is None
    assert list(scratch.iterdir()) == []


def test_archive_with_one_bundle_is_extracted_and_released(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    monkeypatch.setattr(subprocess, "run", fake_unzip_run)
    ipa = make_ipa(tmp_path / "App.ipa", [make_app_bundle(tmp_path / "src")])

    path, handle = resolve_application_path(ipa, temp_root=scratch)

    assert handle is not None
    assert path.name == "App.app"
    assert path.is_dir()
    assert handle.path in path.parents
    assert handle.path.parent == scratch

    handle.release()
    assert not handle.path.exists()
    assert list(scratch.iterdir()) == []
    # Releasing twice is harmless.
    handle.release()


def test_extraction_handle_is_a_context_manager(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    monkeypatch.setattr(subprocess, "run", fake_unzip_run)
    ipa = make_ipa(tmp_path / "App.ipa", [make_app_bundle(tmp_path / "src")])

    path, handle = resolve_application_path(ipa, temp_root=scratch)
    assert handle is not None
    with handle:
        assert path.exists()
    assert list(scratch.iterdir()) == []


def test_unzip_is_invoked_with_archive_and_destination(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    calls: list[dict] = []

    def recording_run(cmd, **kwargs):
        calls.append({"cmd": cmd, "kwargs": kwargs})
        return fake_unzip_run(cmd, **kwargs)

    monkeypatch.setattr(subprocess, "run", recording_run)
    ipa = make_ipa(tmp_path / "App.ipa", [make_app_bundle(tmp_path / "src")])

    _, handle = resolve_application_path(
        ipa, unzip_path="/opt/bin/unzip", timeout_s=7.5, temp_root=scratch
    )
    assert handle is not None
    handle.release()

    assert len(calls) == 1
    cmd = calls[0]["cmd"]
    assert cmd[0] == "/opt/bin/unzip"
    assert cmd[-3:] == [str(ipa), "-d", str(handle.path)]
    assert calls[0]["kwargs"]["timeout"] == 7.5


@pytest.mark.parametrize("n_bundles", [0, 2])
def test_archive_without_exactly_one_bundle_fails_and_cleans_up(
    tmp_path: Path, scratch: Path, monkeypatch, n_bundles: int
) -> None:
    monkeypatch.setattr(subprocess, "run", fake_unzip_run)
    bundles = [
        make_app_bundle(tmp_path / f"src{i}", name=f"App{i}", bundle_id=f"com.example.app{i}")
        for i in range(n_bundles)
    ]
    ipa = tmp_path / "Bad.ipa"
    if bundles:
        make_ipa(ipa, bundles)
    else:
        with zipfile.ZipFile(ipa, "w") as zf:
            zf.writestr("Payload/readme.txt", "no bundles here")

    with pytest.raises(ResolutionError, match=f"exactly one application bundle.*found {n_bundles}"):
        resolve_application_path(ipa, temp_root=scratch)
    assert list(scratch.iterdir()) == []


def test_nested_bundles_are_counted_at_any_depth(tmp_path: Path) -> None:
    outer = make_app_bundle(tmp_path / "Payload", name="App")
    inner = make_app_bundle(outer / "Watch", name="WatchApp", bundle_id="com.example.app.watch")

    assert find_application_bundles(tmp_path) == [outer, inner]


def test_archive_with_nested_bundle_is_ambiguous(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    monkeypatch.setattr(subprocess, "run", fake_unzip_run)
    outer = make_app_bundle(tmp_path / "src", name="App")
    make_app_bundle(outer / "Watch", name="WatchApp", bundle_id="com.example.app.watch")
    ipa = make_ipa(tmp_path / "App.ipa", [outer])

    with pytest.raises(ResolutionError, match="found 2"):
        resolve_application_path(ipa, temp_root=scratch)
    assert list(scratch.iterdir()) == []


def test_unzip_failure_is_an_extraction_error_and_cleans_up(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    monkeypatch.setattr(subprocess, "run", fake_unzip_run)
    not_zip = tmp_path / "App.ipa"
    not_zip.write_bytes(b"definitely not a zip")

    with pytest.raises(ExtractionError, match="rc=9"):
        resolve_application_path(not_zip, temp_root=scratch)
    assert list(scratch.iterdir()) == []


def test_unzip_timeout_is_an_extraction_error_and_cleans_up(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    monkeypatch.setattr(subprocess, "run", timeout_run)
    ipa = make_ipa(tmp_path / "App.ipa", [make_app_bundle(tmp_path / "src")])

    with pytest.raises(ExtractionError, match="timed out") as excinfo:
        resolve_application_path(ipa, temp_root=scratch)
    assert isinstance(excinfo.value.cause, subprocess.TimeoutExpired)
    assert list(scratch.iterdir()) == []


def test_missing_unzip_binary_is_an_extraction_error(
    tmp_path: Path, scratch: Path, monkeypatch
) -> None:
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", missing)
    ipa = make_ipa(tmp_path / "App.ipa", [make_app_bundle(tmp_path / "src")])

    with pytest.raises(ExtractionError):
        resolve_application_path(ipa, temp_root=scratch)
    assert list(scratch.iterdir()) == []


def test_missing_source_is_a_resolution_error(tmp_path: Path, scratch: Path) -> None:
    with pytest.raises(ResolutionError, match="neither an application bundle nor an archive"):
        resolve_application_path(tmp_path / "nowhere.ipa", temp_root=scratch)
    assert list(scratch.iterdir()) == []


def test_delete_directory_is_best_effort(tmp_path: Path, monkeypatch, caplog) -> None:
    assert delete_directory(None) is True
    assert delete_directory(tmp_path / "missing") is True

    target = tmp_path / "target"
    target.mkdir()

    def denied(path):
        raise PermissionError("denied")

    monkeypatch.setattr(shutil, "rmtree", denied)
    with caplog.at_level("WARNING"):
        assert delete_directory(target) is False
    assert "failed to delete temporary directory" in caplog.text
