"""Tests for package version changes."""

from __future__ import annotations

import logging
import tomllib
import typing as typ

import pytest
from manifest_edit_errors import InvalidVersion, LockedModeViolation
from manifest_edit_selection import Decision
from manifest_edit_set_version import SetVersionRequest, next_version, set_version
from manifest_edit_version import Version

if typ.TYPE_CHECKING:
    from pathlib import Path

    from conftest import WorkspaceWriter

ROOT_MANIFEST = """\
[workspace]
members = ["core", "app", "cli"]

[workspace.package]
version = "0.3.0"  # shared release train
"""

APP_MANIFEST = """\
[package]
name = "app"
version = { workspace = true }

[dependencies]
core = { path = "../core", version = "0.1.0" }
"""

LOCK = """\
version = 4

[[package]]
name = "app"
version = "0.3.0"
dependencies = [
 "core",
]

[[package]]
name = "core"
version = "0.1.0"
"""


@pytest.fixture
def workspace(write_workspace: WorkspaceWriter) -> Path:
    """Write a workspace mixing inherited and explicit versions."""
    return write_workspace(
        {
            "Cargo.toml": ROOT_MANIFEST,
            "core/Cargo.toml": """
                [package]
                name = "core"
                version = "0.1.0"
            """,
            "app/Cargo.toml": APP_MANIFEST,
            "cli/Cargo.toml": """
                [package]
                name = "cli"
                version.workspace = true

                [dependencies]
                core = { path = "../core", version = "0.1" }
                app = { path = "../app", version = "0.3" }
            """,
        }
    )


def _manifest(root: Path, member: str | None = None) -> dict[str, typ.Any]:
    path = root / member / "Cargo.toml" if member else root / "Cargo.toml"
    return tomllib.loads(path.read_text(encoding="utf-8"))


def test_bump_rewrites_dependents_at_their_precision(workspace: Path) -> None:
    """Path dependents that no longer match follow the new version."""
    report = set_version(
        SetVersionRequest(bump="minor", manifest_path=workspace, packages=("core",))
    )

    assert [(o.key, o.old_req, o.new_req) for o in report.outcomes] == [
        ("core", "0.1.0", "0.2.0")
    ]
    assert _manifest(workspace, "core")["package"]["version"] == "0.2.0"
    assert _manifest(workspace, "app")["dependencies"]["core"]["version"] == "0.2.0"
    assert _manifest(workspace, "cli")["dependencies"]["core"]["version"] == "0.2"


def test_inherited_version_is_set_once_in_root(workspace: Path) -> None:
    """Members inheriting their version share one root edit."""
    report = set_version(
        SetVersionRequest(bump="patch", manifest_path=workspace, workspace=True)
    )

    assert {o.key: o.new_req for o in report.outcomes} == {
        "core": "0.1.1",
        "app": "0.3.1",
        "cli": "0.3.1",
    }
    assert (workspace / "Cargo.toml").read_text(encoding="utf-8") == (
        ROOT_MANIFEST.replace('"0.3.0"', '"0.3.1"')
    )
    assert (workspace / "app" / "Cargo.toml").read_text(
        encoding="utf-8"
    ) == APP_MANIFEST
    assert [edit.key_path for edit in report.edits] == [
        ("package", "version"),
        ("workspace", "package", "version"),
    ]


def test_explicit_version_with_metadata(workspace: Path) -> None:
    """Build metadata is kept on the package but not in requirements."""
    set_version(
        SetVersionRequest(
            version="1.0.0",
            metadata="build.5",
            manifest_path=workspace,
            packages=("core",),
        )
    )

    assert _manifest(workspace, "core")["package"]["version"] == "1.0.0+build.5"
    assert _manifest(workspace, "app")["dependencies"]["core"]["version"] == "1.0.0"
    assert _manifest(workspace, "cli")["dependencies"]["core"]["version"] == "1.0"


def test_excluded_members_are_untouched(workspace: Path) -> None:
    """``exclude`` removes members from a workspace-wide run."""
    report = set_version(
        SetVersionRequest(
            bump="major", manifest_path=workspace, workspace=True, exclude=("core",)
        )
    )

    assert [o.key for o in report.outcomes] == ["app", "cli"]
    assert _manifest(workspace, "core")["package"]["version"] == "0.1.0"
    assert _manifest(workspace)["workspace"]["package"]["version"] == "1.0.0"


def test_lock_entry_of_member_follows(workspace: Path) -> None:
    """The member's own lock entry is re-pointed."""
    (workspace / "Cargo.lock").write_text(LOCK, encoding="utf-8")

    report = set_version(
        SetVersionRequest(bump="minor", manifest_path=workspace, packages=("core",))
    )

    assert [str(edit) for edit in report.lock_edits] == ["core 0.1.0 -> 0.2.0"]
    lock = tomllib.loads((workspace / "Cargo.lock").read_text(encoding="utf-8"))
    assert {p["name"]: p["version"] for p in lock["package"]} == {
        "app": "0.3.0",
        "core": "0.2.0",
    }


def test_locked_mode_rejects_lock_changes(workspace: Path) -> None:
    """A member lock entry cannot move under ``locked``."""
    (workspace / "Cargo.lock").write_text(LOCK, encoding="utf-8")

    with pytest.raises(LockedModeViolation):
        set_version(
            SetVersionRequest(
                bump="minor",
                manifest_path=workspace,
                packages=("core",),
                locked=True,
            )
        )

    assert _manifest(workspace, "core")["package"]["version"] == "0.1.0"


def test_dry_run_and_unchanged_versions(workspace: Path) -> None:
    """Dry runs write nothing; setting the current version is a no-op."""
    dry = set_version(
        SetVersionRequest(bump="major", manifest_path=workspace, dry_run=True)
    )
    same = set_version(
        SetVersionRequest(
            version="0.1.0", manifest_path=workspace, packages=("core",)
        )
    )

    assert dry.applied.dry_run
    assert _manifest(workspace)["workspace"]["package"]["version"] == "0.3.0"
    assert same.outcomes[0].decision is Decision.UNCHANGED
    assert same.applied.written == ()


def test_next_version_needs_exactly_one_source() -> None:
    """Either a version or a bump level must be given, not both."""
    current = Version(1, 0, 0)

    with pytest.raises(InvalidVersion, match="exactly one"):
        next_version(current, SetVersionRequest())
    with pytest.raises(InvalidVersion, match="exactly one"):
        next_version(current, SetVersionRequest(version="2.0.0", bump="major"))


def test_downgrade_is_allowed_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    """Moving backwards is permitted but logged."""
    with caplog.at_level(logging.WARNING):
        target = next_version(Version(2, 0, 0), SetVersionRequest(version="1.5.0"))

    assert target == Version(1, 5, 0)
    assert "downgrading from 2.0.0 to 1.5.0" in caplog.text
