"""Tests for dependency removal and feature clean-up."""

from __future__ import annotations

import tomllib
import typing as typ

import manifest_edit_cargo
import pytest
from manifest_edit_dependency import DepKind
from manifest_edit_document import ManifestDocument
from manifest_edit_errors import LockedModeViolation, UnknownKey
from manifest_edit_remove import RemoveRequest, gc_feature_references, remove

if typ.TYPE_CHECKING:
    from pathlib import Path
    from types import ModuleType

    from conftest import FakeLocal, RunCallable, WorkspaceWriter

MANIFEST = """\
[package]
name = "app"
version = "0.1.0"

[features]
default = ["log/std", "serde"]
extra = ["serde/derive"]

[dependencies]
log = "0.4"
serde = { version = "1.0", optional = true }

[dev-dependencies]
pretty_assertions = "1"
"""


@pytest.fixture
def package(write_workspace: WorkspaceWriter) -> Path:
    """Write a single package and return its directory."""
    return write_workspace({"Cargo.toml": MANIFEST})


def _parsed(root: Path) -> dict[str, typ.Any]:
    return tomllib.loads((root / "Cargo.toml").read_text(encoding="utf-8"))


def test_remove_drops_entry_and_feature_references(package: Path) -> None:
    """Features activating a removed dependency lose those values."""
    report = remove(RemoveRequest(("serde",), manifest_path=package))

    manifest = _parsed(package)
    assert "serde" not in manifest["dependencies"]
    assert manifest["features"] == {"default": ["log/std"], "extra": []}
    assert [edit.key_path for edit in report.edits] == [
        ("dependencies", "serde"),
        ("features", "default"),
        ("features", "extra"),
    ]
    assert not report.refreshed


def test_remove_from_dev_section(package: Path) -> None:
    """The section is chosen by dependency kind."""
    remove(
        RemoveRequest(("pretty_assertions",), manifest_path=package, kind=DepKind.DEV)
    )

    assert _parsed(package)["dev-dependencies"] == {}


def test_missing_key_points_at_other_sections(package: Path) -> None:
    """The error names sections that do hold the key and nothing is written."""
    with pytest.raises(UnknownKey) as excinfo:
        remove(RemoveRequest(("log", "pretty_assertions"), manifest_path=package))

    message = str(excinfo.value)
    assert "could not be found in `dependencies`" in message
    assert "same name exists in `dev-dependencies`" in message
    assert (package / "Cargo.toml").read_text(encoding="utf-8") == MANIFEST


def test_dry_run_reports_without_writing(package: Path) -> None:
    """Dry runs list the edits but keep the manifest."""
    report = remove(RemoveRequest(("log",), manifest_path=package, dry_run=True))

    assert report.applied.dry_run
    assert report.edits[0].old == "0.4"
    assert (package / "Cargo.toml").read_text(encoding="utf-8") == MANIFEST


def test_refresh_runs_cargo_after_writing(
    package: Path,
    patch_local: typ.Callable[[ModuleType, RunCallable], FakeLocal],
) -> None:
    """A requested lock refresh runs once the manifests are written."""
    fake = patch_local(manifest_edit_cargo, lambda args, timeout: (0, "", ""))

    report = remove(
        RemoveRequest(
            ("log",), manifest_path=package, refresh_lock=True, timeout_secs=12
        )
    )

    assert report.refreshed
    assert fake.invocations == [(["cargo", "update", "--workspace"], 12)]
    assert fake.cwd_calls == [package.resolve()]


def test_refresh_is_refused_in_locked_mode(package: Path) -> None:
    """Refreshing the lock file conflicts with ``locked``."""
    with pytest.raises(LockedModeViolation, match="removed log"):
        remove(
            RemoveRequest(
                ("log",), manifest_path=package, refresh_lock=True, locked=True
            )
        )

    assert (package / "Cargo.toml").read_text(encoding="utf-8") == MANIFEST


def test_gc_keeps_references_to_optional_dependency() -> None:
    """An optional entry left in another section keeps every reference."""
    document = ManifestDocument.parse(
        """\
[features]
tls = ["dep:rustls", "rustls?/ring"]

[target.'cfg(unix)'.dependencies]
rustls = { version = "0.23", optional = true }
"""
    )

    assert gc_feature_references(document, "rustls") == []


def test_gc_rewrites_weak_references_for_required_dependency() -> None:
    """A required entry left behind turns weak references into strong ones."""
    document = ManifestDocument.parse(
        """\
[features]
json = ["dep:serde_json", "serde_json?/std"]

[dev-dependencies]
serde_json = "1"
"""
    )

    changes = gc_feature_references(document, "serde_json")

    assert changes == [
        (
            ("features", "json"),
            ["dep:serde_json", "serde_json?/std"],
            ["serde_json/std"],
        )
    ]
    assert tomllib.loads(document.serialize())["features"]["json"] == [
        "serde_json/std"
    ]


@pytest.fixture
def workspace(write_workspace: WorkspaceWriter) -> Path:
    """Write a virtual workspace where only one member uses ``serde``."""
    return write_workspace(
        {
            "Cargo.toml": """
                [workspace]
                members = ["a", "b"]
            """,
            "a/Cargo.toml": """
                [package]
                name = "a"
                version = "0.1.0"

                [dependencies]
                log = "0.4"
            """,
            "b/Cargo.toml": """
                [package]
                name = "b"
                version = "0.1.0"

                [dependencies]
                log = "0.4"
                serde = "1.0"
            """,
        }
    )


def test_virtual_root_removes_from_declaring_members(workspace: Path) -> None:
    """A bare key is removed wherever a selected member declares it."""
    report = remove(RemoveRequest(("serde",), manifest_path=workspace))

    assert [edit.manifest for edit in report.edits] == [
        workspace.resolve() / "b" / "Cargo.toml"
    ]
    assert _parsed(workspace / "b")["dependencies"] == {"log": "0.4"}
    assert _parsed(workspace / "a")["dependencies"] == {"log": "0.4"}


def test_package_qualified_key_removes_one_entry(workspace: Path) -> None:
    """``package@key`` narrows removal to that member."""
    remove(RemoveRequest(("a@log",), manifest_path=workspace))

    assert _parsed(workspace / "a")["dependencies"] == {}
    assert _parsed(workspace / "b")["dependencies"]["log"] == "0.4"


def test_missing_key_names_the_selected_members(workspace: Path) -> None:
    """The error lists the packages that were searched."""
    with pytest.raises(UnknownKey, match="of `a`, `b`"):
        remove(RemoveRequest(("rand",), manifest_path=workspace))

    with pytest.raises(UnknownKey, match="of `a`$"):
        remove(RemoveRequest(("a@serde",), manifest_path=workspace))


def test_emptied_sections_that_existed_are_kept(
    write_workspace: WorkspaceWriter,
) -> None:
    """Tables present before the removal stay, even when left empty."""
    manifest = """\
[package]
name = "app"
version = "0.1.0"

[features]
json = ["dep:serde_json"]

[dependencies]
serde_json = { version = "1", optional = true }
"""
    root = write_workspace({"Cargo.toml": manifest})

    remove(RemoveRequest(("serde_json",), manifest_path=root))

    text = (root / "Cargo.toml").read_text(encoding="utf-8")
    assert "[features]" in text
    assert "[dependencies]" in text
    assert _parsed(root)["features"] == {"json": []}
    assert _parsed(root)["dependencies"] == {}
