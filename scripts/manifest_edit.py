"""Facade module for the manifest editing helpers.

Callers (and the command line wrapper) import the orchestrators, request
records and error types from here while the implementation lives in focused
helper modules. Each name is documented in its defining module.
"""

from __future__ import annotations

import typing as typ

import manifest_edit_cargo as _cargo
from manifest_edit_add import AddReport, AddRequest, add, parse_crate_spec
from manifest_edit_changeset import ApplyReport, ChangeSet, ManifestEdit, commit
from manifest_edit_dependency import DepKind, Dependency, DepTable
from manifest_edit_document import ManifestDocument
from manifest_edit_errors import (
    AmbiguousKey,
    ApplyError,
    CargoCommandError,
    InvalidVersion,
    LockedModeViolation,
    MalformedDocument,
    ManifestEditError,
    ManifestNotFound,
    NoLockedVersion,
    Offline,
    RegistryError,
    UnknownKey,
    UnsupportedDependency,
    VcsError,
)
from manifest_edit_lockfile import LockEdit, LockFile
from manifest_edit_registry import (
    DEFAULT_JOBS,
    Release,
    RegistryView,
    SparseIndexRegistry,
)
from manifest_edit_remove import RemoveReport, RemoveRequest, remove
from manifest_edit_selection import Decision, DependencyOutcome, UpgradePolicy
from manifest_edit_set_version import SetVersionReport, SetVersionRequest, set_version
from manifest_edit_upgrade import (
    UpgradeReport,
    UpgradeRequest,
    format_outcomes,
    upgrade,
)
from manifest_edit_vcs import GitResolver, SourceResolver
from manifest_edit_version import BUMP_LEVELS, Version, VersionRequirement
from manifest_edit_workspace import WorkspaceGraph, discover

if typ.TYPE_CHECKING:
    from pathlib import Path

DEFAULT_TIMEOUT_SECS: typ.Final[int] = _cargo.DEFAULT_TIMEOUT_SECS

__all__ = [
    "BUMP_LEVELS",
    "DEFAULT_JOBS",
    "DEFAULT_TIMEOUT_SECS",
    "AddReport",
    "AddRequest",
    "AmbiguousKey",
    "ApplyError",
    "ApplyReport",
    "CargoCommandError",
    "ChangeSet",
    "Decision",
    "DepKind",
    "DepTable",
    "Dependency",
    "DependencyOutcome",
    "GitResolver",
    "InvalidVersion",
    "LockEdit",
    "LockFile",
    "LockedModeViolation",
    "MalformedDocument",
    "ManifestDocument",
    "ManifestEdit",
    "ManifestEditError",
    "ManifestNotFound",
    "NoLockedVersion",
    "Offline",
    "RegistryError",
    "RegistryView",
    "Release",
    "RemoveReport",
    "RemoveRequest",
    "SetVersionReport",
    "SetVersionRequest",
    "SourceResolver",
    "SparseIndexRegistry",
    "UnknownKey",
    "UnsupportedDependency",
    "UpgradePolicy",
    "UpgradeReport",
    "UpgradeRequest",
    "VcsError",
    "Version",
    "VersionRequirement",
    "WorkspaceGraph",
    "add",
    "commit",
    "default_registries",
    "discover",
    "format_outcomes",
    "parse_crate_spec",
    "remove",
    "set_version",
    "upgrade",
]


def default_registries(
    cache_dir: Path | None, *, offline: bool
) -> dict[str | None, RegistryView]:
    """Return the registry mapping used when no alternate registry is set up."""
    return {None: SparseIndexRegistry(cache_dir, offline=offline)}
