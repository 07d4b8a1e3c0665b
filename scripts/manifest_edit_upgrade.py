"""Upgrade dependency requirements across a workspace.

The plan is built in three steps: resolve which entries are addressed,
fetch registry releases for every distinct package name concurrently, then
run :func:`manifest_edit_selection.select_requirement` per entry and record
the resulting edits. Entries inherited with ``workspace = true`` are edited
in the root ``[workspace.dependencies]`` table. Problems with individual
dependencies become diagnostics instead of aborting the batch.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import typing as typ

from manifest_edit_changeset import ApplyReport, ChangeSet, commit
from manifest_edit_dependency import (
    GitSource,
    PathSource,
    RegistrySource,
    write_requirement,
)
from manifest_edit_errors import (
    AmbiguousKey,
    InvalidVersion,
    NoLockedVersion,
    RegistryError,
    UnknownKey,
    UnsupportedDependency,
)
from manifest_edit_lockfile import LockFile, LockSynchronizer
from manifest_edit_registry import DEFAULT_JOBS, lookup_releases
from manifest_edit_selection import (
    COMPATIBLE_NOTE,
    PINNED_NOTE,
    Decision,
    DependencyOutcome,
    UpgradePolicy,
    select_requirement,
)
from manifest_edit_workspace import DependencyRef, KeySpec, WorkspaceGraph, discover

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from manifest_edit_lockfile import LockEdit
    from manifest_edit_registry import Release, RegistryView
    from manifest_edit_version import Version

LOGGER = logging.getLogger(__name__)

__all__ = [
    "REFRESH_NOTE",
    "UpgradeReport",
    "UpgradeRequest",
    "format_outcomes",
    "upgrade",
]

Registries = typ.Mapping[str | None, "RegistryView"]

REFRESH_NOTE: typ.Final[str] = (
    "Run `cargo update` to bring the lock file in line with the new requirements"
)


@dc.dataclass(frozen=True)
class UpgradeRequest:
    """Options of an upgrade run.

    ``dependencies`` holds ``[package@]key[@requirement]`` selectors; an
    empty tuple addresses every dependency of the selected packages.
    """

    manifest_path: Path | None = None
    dependencies: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    packages: tuple[str, ...] = ()
    workspace: bool = False
    policy: UpgradePolicy = UpgradePolicy()
    dry_run: bool = False
    jobs: int = DEFAULT_JOBS


@dc.dataclass(frozen=True)
class UpgradeReport:
    """Outcome rows, batch diagnostics and what was written."""

    outcomes: tuple[DependencyOutcome, ...]
    diagnostics: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()
    lock_edits: tuple[LockEdit, ...] = ()
    applied: ApplyReport = ApplyReport()

    @property
    def ok(self) -> bool:
        return not self.diagnostics


@dc.dataclass(frozen=True)
class _Target:
    ref: DependencyRef
    explicit: str | None = None
    addressed: bool = False


def _scope(graph: WorkspaceGraph, request: UpgradeRequest) -> list[Path]:
    members = graph.select_members(request.packages, workspace=request.workspace)
    manifests = [member.manifest for member in members]
    virtual_start = graph.start == graph.root and graph.root not in manifests
    if (request.workspace or virtual_start) and graph.root not in manifests:
        manifests.append(graph.root)
    return manifests


def _collect_targets(
    graph: WorkspaceGraph,
    request: UpgradeRequest,
    manifests: list[Path],
    diagnostics: list[str],
) -> list[_Target]:
    excluded = set(request.exclude)
    targets: list[_Target] = []
    if request.dependencies:
        names = graph.member_names()
        for text in request.dependencies:
            try:
                spec = KeySpec.parse(text, names)
                matches = graph.resolve(spec, manifests)
            except (UnknownKey, AmbiguousKey) as err:
                LOGGER.warning("%s", err)
                diagnostics.append(str(err))
                continue
            targets.extend(
                _Target(ref, spec.requirement, addressed=True) for ref in matches
            )
    else:
        targets = [_Target(ref) for ref in graph.references(manifests)]
    return [
        target
        for target in targets
        if target.ref.key not in excluded
        and target.ref.dependency.name not in excluded
    ]


def _redirect_inherited(
    graph: WorkspaceGraph, targets: list[_Target], diagnostics: list[str]
) -> list[_Target]:
    """Point inherited entries at the root table and drop duplicates."""
    seen: dict[tuple[Path, tuple[str, ...], str], _Target] = {}
    for target in targets:
        ref = target.ref
        if ref.is_inherited:
            root_ref = graph.workspace_entry(ref.key)
            if root_ref is None:
                message = (
                    f"{ref.key} in {ref.manifest} inherits from the workspace, "
                    f"but {graph.root} has no such entry"
                )
                diagnostics.append(message)
                continue
            target = dc.replace(target, ref=root_ref)
        identity = (target.ref.manifest, target.ref.table.path, target.ref.key)
        previous = seen.get(identity)
        if previous is None or (target.addressed and not previous.addressed):
            seen[identity] = target
    return list(seen.values())


def _fetch(
    targets: list[_Target],
    registries: Registries,
    jobs: int,
) -> dict[tuple[str | None, str], list[Release] | RegistryError]:
    wanted: dict[str | None, list[str]] = {}
    for target in targets:
        source = target.ref.dependency.source
        if isinstance(source, RegistrySource) and source.registry in registries:
            wanted.setdefault(source.registry, []).append(target.ref.dependency.name)
    results: dict[tuple[str | None, str], list[Release] | RegistryError] = {}
    for registry, names in wanted.items():
        found = lookup_releases(registries[registry], names, jobs)
        for name, releases in found.items():
            results[registry, name] = releases
    return results


def _skip_reason(
    target: _Target, registries: Registries
) -> tuple[Decision, str] | None:
    source = target.ref.dependency.source
    if isinstance(source, PathSource):
        return Decision.UNCHANGED, "path dependency"
    if isinstance(source, GitSource):
        return Decision.UNCHANGED, "git dependency"
    if isinstance(source, RegistrySource) and source.registry not in registries:
        note = f"registry `{source.registry}` is not configured"
        return Decision.UNRESOLVABLE, note
    if source.version is None:
        return Decision.UNCHANGED, "no version requirement"
    return None


def _evaluate(  # noqa: PLR0913 - shared planning state
    target: _Target,
    releases: list[Release] | RegistryError,
    policy: UpgradePolicy,
    locked_versions: list[Version],
    registries: Registries,
    diagnostics: list[str],
) -> DependencyOutcome:
    ref = target.ref
    current = ref.dependency.version_req
    skip = _skip_reason(target, registries)
    if skip is not None and target.explicit is None:
        decision, note = skip
        return DependencyOutcome(
            ref.key, ref.manifest, current, current, decision, note
        )
    if isinstance(releases, RegistryError):
        if not policy.to_lockfile and target.explicit is None:
            diagnostics.append(f"{ref.key}: {releases}")
            return DependencyOutcome(
                ref.key,
                ref.manifest,
                current,
                current,
                Decision.UNRESOLVABLE,
                str(releases),
            )
        releases = []
    try:
        selection = select_requirement(
            current,
            releases,
            policy,
            locked_versions=locked_versions,
            explicit=target.explicit,
            renamed=ref.dependency.rename is not None and not target.addressed,
        )
    except (NoLockedVersion, InvalidVersion) as err:
        diagnostics.append(f"{ref.key}: {err}")
        return DependencyOutcome(
            ref.key, ref.manifest, current, current, Decision.UNRESOLVABLE, str(err)
        )
    return selection.outcome(ref.key, ref.manifest, current)


def upgrade(
    request: UpgradeRequest,
    registries: Registries,
    *,
    graph: WorkspaceGraph | None = None,
) -> UpgradeReport:
    """Plan and apply (or dry-run) an upgrade.

    Parameters
    ----------
    request : UpgradeRequest
        What to upgrade and how.
    registries : Mapping[str | None, RegistryView]
        Registry views keyed by registry name; ``None`` is the default
        registry.
    graph : WorkspaceGraph | None, optional
        Pre-built workspace graph; discovered from the request otherwise.

    Raises
    ------
    LockedModeViolation
        Raised when ``policy.locked`` is set and the lock file would change.
    ApplyError
        Raised when writing the planned files fails.
    """
    graph = graph or discover(request.manifest_path)
    policy = request.policy
    diagnostics: list[str] = []
    manifests = _scope(graph, request)
    targets = _collect_targets(graph, request, manifests, diagnostics)
    targets = _redirect_inherited(graph, targets, diagnostics)
    fetched = _fetch(targets, registries, request.jobs)

    lockfile = LockFile.load(graph.lockfile_path)
    synchronizer = LockSynchronizer(lockfile)
    changeset = ChangeSet(lockfile)
    locked_entries = lockfile.entries() if lockfile is not None else []

    outcomes: list[DependencyOutcome] = []
    for target in targets:
        dependency = target.ref.dependency
        registry = getattr(dependency.source, "registry", None)
        releases = fetched.get((registry, dependency.name), [])
        locked_versions = [
            entry.version
            for entry in locked_entries
            if entry.name == dependency.name and entry.is_registry
        ]
        outcome = _evaluate(
            target, releases, policy, locked_versions, registries, diagnostics
        )
        outcomes.append(outcome)
        if not outcome.changed or outcome.new_req is None:
            continue
        document = graph.document(target.ref.manifest)
        try:
            changes = write_requirement(
                document, target.ref.table, target.ref.key, outcome.new_req
            )
        except UnsupportedDependency as err:
            diagnostics.append(f"{target.ref.key}: {err}")
            continue
        changeset.record(document, changes)
        known = releases if isinstance(releases, list) else []
        synchronizer.sync_requirement(
            dependency.name,
            outcome.new_req,
            outcome.old_req,
            candidates=[r.version for r in known if not r.yanked],
            checksums={r.version: r.checksum for r in known if r.checksum},
        )
    changeset.record_lock(synchronizer.edits)
    for reason in synchronizer.refresh_reasons:
        changeset.require_refresh(reason)
    applied = commit(changeset, dry_run=request.dry_run, locked=policy.locked)

    notes: list[str] = []
    decisions = {outcome.decision for outcome in outcomes}
    if Decision.PINNED in decisions:
        notes.append(PINNED_NOTE)
    if Decision.COMPATIBLE in decisions:
        notes.append(COMPATIBLE_NOTE)
    if synchronizer.refresh_reasons:
        notes.append(REFRESH_NOTE)
    return UpgradeReport(
        outcomes=tuple(outcomes),
        diagnostics=tuple(diagnostics),
        notes=tuple(notes),
        lock_edits=tuple(synchronizer.edits),
        applied=applied,
    )


def format_outcomes(outcomes: cabc.Sequence[DependencyOutcome]) -> str:
    """Render outcome rows as an aligned text table."""
    header = ("name", "old req", "locked", "latest", "new req", "note")
    rows = [header]
    rows.extend(
        (
            outcome.key,
            outcome.old_req or "-",
            str(outcome.locked_version or "-"),
            str(outcome.latest_version or "-"),
            outcome.new_req or "-",
            outcome.note or ("" if outcome.changed else outcome.decision.value),
        )
        for outcome in outcomes
    )
    widths = [max(len(row[column]) for row in rows) for column in range(len(header))]
    lines = (
        " ".join(cell.ljust(width) for cell, width in zip(row, widths, strict=True))
        for row in rows
    )
    return "\n".join(line.rstrip() for line in lines)
