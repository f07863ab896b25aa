from __future__ import annotations

import plistlib
from pathlib import Path

import pytest
from sim_fakes import macho_bytes, make_app_bundle

from sim_apps.bundle.descriptor import (
    InstallType,
    parse_application,
    read_binary_architectures,
)
from sim_apps.errors import ParseError


def test_parse_application_reads_identity_and_thin_binary(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path, name="App", bundle_id="com.example.app", archs=["x86_64"])

    app = parse_application(bundle)

    assert app.bundle_id == "com.example.app"
    assert app.name == "App"
    assert app.path == bundle
    assert app.install_type is InstallType.USER
    assert app.binary.path == bundle / "App"
    assert app.binary.architectures == frozenset({"x86_64"})


def test_parse_application_reads_fat_binary_architectures(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path, archs=["x86_64", "arm64", "i386"])
    app = parse_application(bundle, install_type="System")
    assert app.binary.architectures == frozenset({"x86_64", "arm64", "i386"})
    assert app.is_system is True


def test_read_binary_architectures_maps_arm_subtypes(tmp_path: Path) -> None:
    exe = tmp_path / "exe"
    exe.write_bytes(macho_bytes(["armv7", "armv7s"]))
    assert read_binary_architectures(exe) == frozenset({"armv7", "armv7s"})


def test_read_binary_architectures_rejects_non_macho(tmp_path: Path) -> None:
    exe = tmp_path / "script"
    exe.write_bytes(b"#!/bin/sh\necho hi\n")
    with pytest.raises(ParseError, match="not a Mach-O"):
        read_binary_architectures(exe)


def test_read_binary_architectures_rejects_truncated_file(tmp_path: Path) -> None:
    exe = tmp_path / "tiny"
    exe.write_bytes(b"\xcf\xfa")
    with pytest.raises(ParseError):
        read_binary_architectures(exe)


def test_parse_application_requires_info_plist(tmp_path: Path) -> None:
    bundle = tmp_path / "Empty.app"
    bundle.mkdir()
    with pytest.raises(ParseError, match="No Info.plist"):
        parse_application(bundle)


def test_parse_application_rejects_malformed_xml_info_plist(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path)
    (bundle / "Info.plist").write_text(
        '<?xml version="1.0" encoding="UTF-8"?><plist><dict><key>x</dict></plist>',
        encoding="utf-8",
    )
    with pytest.raises(ParseError, match="Could not read"):
        parse_application(bundle)


def test_parse_application_requires_bundle_identifier(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path)
    with (bundle / "Info.plist").open("wb") as f:
        plistlib.dump({"CFBundleExecutable": "App"}, f)
    with pytest.raises(ParseError, match="CFBundleIdentifier"):
        parse_application(bundle)


def test_parse_application_requires_executable_on_disk(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path)
    (bundle / "App").unlink()
    with pytest.raises(ParseError, match="missing"):
        parse_application(bundle)


def test_parse_application_rejects_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(ParseError):
        parse_application(tmp_path / "Nope.app")


def test_install_type_from_string_is_case_insensitive() -> None:
    assert InstallType.from_string("system") is InstallType.SYSTEM
    assert InstallType.from_string("User") is InstallType.USER
    assert InstallType.from_string(None) is InstallType.UNKNOWN
    assert InstallType.from_string("Mac") is InstallType.UNKNOWN


def test_descriptor_to_dict_is_json_friendly(tmp_path: Path) -> None:
    bundle = make_app_bundle(tmp_path, archs=["arm64", "x86_64"])
    d = parse_application(bundle).to_dict()
    assert d["bundle_id"] == "com.example.app"
    assert d["install_type"] == "User"
    assert d["binary"]["architectures"] == ["arm64", "x86_64"]
