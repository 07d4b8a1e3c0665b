"""Change package versions and keep dependents consistent.

A member's version is updated in place, or in ``[workspace.package]`` when
the member inherits it. Path dependencies on a changed member whose
requirement no longer accepts the new version are rewritten at their
original precision, and the member's own lock file entry follows.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ

from manifest_edit_changeset import ApplyReport, ChangeSet, commit
from manifest_edit_dependency import write_requirement
from manifest_edit_errors import InvalidVersion
from manifest_edit_lockfile import LockFile, LockSynchronizer
from manifest_edit_selection import Decision, DependencyOutcome
from manifest_edit_version import Version, VersionRequirement, bump_version
from manifest_edit_workspace import PackagePath, WorkspaceGraph, discover

if typ.TYPE_CHECKING:
    from pathlib import Path

    from manifest_edit_changeset import ManifestEdit
    from manifest_edit_document import ManifestDocument
    from manifest_edit_lockfile import LockEdit

LOGGER = logging.getLogger(__name__)

__all__ = ["SetVersionReport", "SetVersionRequest", "next_version", "set_version"]

_INHERITED_PATH: typ.Final[tuple[str, ...]] = ("workspace", "package", "version")


@dc.dataclass(frozen=True)
class SetVersionRequest:
    """Options of a set-version run; exactly one of ``version`` or ``bump``."""

    version: str | None = None
    bump: str | None = None
    metadata: str | None = None
    manifest_path: Path | None = None
    packages: tuple[str, ...] = ()
    workspace: bool = False
    exclude: tuple[str, ...] = ()
    dry_run: bool = False
    locked: bool = False


@dc.dataclass(frozen=True)
class SetVersionReport:
    outcomes: tuple[DependencyOutcome, ...]
    edits: tuple[ManifestEdit, ...] = ()
    lock_edits: tuple[LockEdit, ...] = ()
    applied: ApplyReport = ApplyReport()


def next_version(current: Version, request: SetVersionRequest) -> Version:
    """Return the version ``request`` asks for, starting from ``current``.

    >>> str(next_version(Version.parse("1.2.3"), SetVersionRequest(bump="minor")))
    '1.3.0'
    """
    if (request.version is None) == (request.bump is None):
        message = "specify exactly one of a version or a bump level"
        raise InvalidVersion(message)
    if request.version is not None:
        target = Version.parse(request.version)
    else:
        target = bump_version(current, typ.cast("str", request.bump))
    if request.metadata is not None:
        target = dc.replace(target, build=request.metadata)
    if target < current:
        LOGGER.warning("downgrading from %s to %s", current, target)
    return target


def _is_inherited(value: object) -> bool:
    return isinstance(value, cabc.Mapping) and value.get("workspace") is True


def _update_dependents(
    graph: WorkspaceGraph,
    member: PackagePath,
    new: Version,
    changeset: ChangeSet,
) -> None:
    for ref in graph.dependents_of(member):
        current = ref.dependency.version_req
        if current is None:
            continue
        requirement = VersionRequirement.parse(current)
        if requirement.matches(new):
            continue
        try:
            moved = requirement.upgraded_to(new)
        except InvalidVersion as err:
            LOGGER.warning(
                "cannot update %s in %s to %s: %s", ref.key, ref.manifest, new, err
            )
            continue
        if moved is None:
            continue
        document = graph.document(ref.manifest)
        changes = write_requirement(document, ref.table, ref.key, str(moved))
        changeset.record(document, changes)


def _apply_version(
    document: ManifestDocument,
    path: tuple[str, ...],
    member: PackagePath,
    request: SetVersionRequest,
    changeset: ChangeSet,
) -> tuple[Version, Version]:
    """Write the requested version at ``path``, returning ``(old, new)``."""
    value = document.get(path)
    if not isinstance(value, str):
        message = f"{member.manifest} has no package version"
        raise InvalidVersion(message)
    current = Version.parse(str(value))
    new = next_version(current, request)
    if str(value) != str(new):
        document.set(path, str(new))
        changeset.record(document, [(path, str(value), str(new))])
    return current, new


def set_version(
    request: SetVersionRequest, *, graph: WorkspaceGraph | None = None
) -> SetVersionReport:
    """Set the version of the selected packages.

    Raises
    ------
    InvalidVersion
        Raised for an invalid version, bump level or current version.
    LockedModeViolation
        Raised in locked mode when a lock entry would change.
    """
    graph = graph or discover(request.manifest_path)
    members = [
        member
        for member in graph.select_members(
            request.packages, workspace=request.workspace
        )
        if member.name not in request.exclude
    ]
    lockfile = LockFile.load(graph.lockfile_path)
    synchronizer = LockSynchronizer(lockfile)
    changeset = ChangeSet(lockfile)
    outcomes: list[DependencyOutcome] = []
    inherited: tuple[Version, Version] | None = None

    for member in members:
        document = graph.document(member.manifest)
        path: tuple[str, ...] = ("package", "version")
        if _is_inherited(document.get(path)):
            document, path = graph.root_document, _INHERITED_PATH
            if inherited is None:
                inherited = _apply_version(document, path, member, request, changeset)
            current, new = inherited
        else:
            current, new = _apply_version(document, path, member, request, changeset)
        changed = current != new
        outcomes.append(
            DependencyOutcome(
                key=str(member),
                manifest=document.path,
                old_req=str(current),
                new_req=str(new),
                decision=Decision.UPGRADED if changed else Decision.UNCHANGED,
            )
        )
        if not changed:
            continue
        LOGGER.info("upgrading %s from %s to %s", member, current, new)
        _update_dependents(graph, member, new, changeset)
        if member.name is not None:
            synchronizer.sync_member(member.name, current, new)

    changeset.record_lock(synchronizer.edits)
    applied = commit(changeset, dry_run=request.dry_run, locked=request.locked)
    return SetVersionReport(
        outcomes=tuple(outcomes),
        edits=tuple(changeset.edits),
        lock_edits=tuple(synchronizer.edits),
        applied=applied,
    )
