"""Remove dependency entries and the feature references that activate them."""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import logging
import typing as typ

from manifest_edit_cargo import DEFAULT_TIMEOUT_SECS, refresh_lockfile
from manifest_edit_changeset import ApplyReport, ChangeSet, ManifestEdit, commit
from manifest_edit_dependency import (
    DepKind,
    DepTable,
    FieldChange,
    dependency_tables,
    locate_table,
    plain,
)
from manifest_edit_errors import UnknownKey
from manifest_edit_workspace import KeySpec, PackagePath, WorkspaceGraph, discover

if typ.TYPE_CHECKING:
    from pathlib import Path

    from manifest_edit_document import ManifestDocument

LOGGER = logging.getLogger(__name__)

__all__ = [
    "RemoveReport",
    "RemoveRequest",
    "gc_feature_references",
    "remove",
]


@dc.dataclass(frozen=True)
class RemoveRequest:
    """Options of a remove run."""

    dependencies: tuple[str, ...]
    manifest_path: Path | None = None
    packages: tuple[str, ...] = ()
    kind: DepKind = DepKind.NORMAL
    target: str | None = None
    dry_run: bool = False
    refresh_lock: bool = False
    locked: bool = False
    offline: bool = False
    timeout_secs: int = DEFAULT_TIMEOUT_SECS


@dc.dataclass(frozen=True)
class RemoveReport:
    edits: tuple[ManifestEdit, ...]
    applied: ApplyReport = ApplyReport()
    refreshed: bool = False


class _Status(enum.Enum):
    ABSENT = "absent"
    OPTIONAL = "optional"
    REQUIRED = "required"


def _other_sections(
    document: ManifestDocument, key: str, table: DepTable
) -> list[str]:
    return [
        str(other)
        for other in dependency_tables(document)
        if other != table and not other.workspace and key in document.keys(other.path)
    ]


def _missing_key_error(
    graph: WorkspaceGraph,
    members: cabc.Sequence[PackagePath],
    key: str,
    kind: DepKind,
    target: str | None,
) -> UnknownKey:
    names = ", ".join(f"`{member}`" for member in members)
    table = DepTable(kind, target)
    message = f"the dependency `{key}` could not be found in `{table}` of {names}"
    others: list[str] = []
    for member in members:
        document = graph.document(member.manifest)
        found = locate_table(document, kind, target)
        others.extend(
            f"`{section}` of `{member}`"
            for section in _other_sections(document, key, found)
        )
    if others:
        listing = ", ".join(others)
        message = (
            f"{message}\n\nhelp: a dependency with the same name exists in {listing}"
        )
    return UnknownKey(key, message)


def _dependency_status(document: ManifestDocument, key: str) -> _Status:
    status = _Status.ABSENT
    for table in dependency_tables(document):
        if table.workspace:
            continue
        entry = document.get((*table.path, key))
        if entry is None:
            continue
        if isinstance(entry, cabc.Mapping) and entry.get("optional") is True:
            return _Status.OPTIONAL
        status = _Status.REQUIRED
    return status


def _parse_feature_value(value: str) -> tuple[str, str | None, str | None, bool]:
    """Split a feature value into ``(kind, dep, dep_feature, weak)``."""
    if value.startswith("dep:"):
        return "dep", value[4:], None, False
    if "/" in value:
        dep, _, feature = value.partition("/")
        weak = dep.endswith("?")
        return "dep-feature", dep.removesuffix("?"), feature, weak
    return "feature", value, None, False


def _should_drop(value: str, key: str, status: _Status, *, explicit: bool) -> bool:
    kind, dep, _, _ = _parse_feature_value(value)
    if dep != key or status is _Status.OPTIONAL:
        return False
    if kind == "feature":
        return not explicit
    if kind == "dep":
        return True
    return status is _Status.ABSENT


def gc_feature_references(document: ManifestDocument, key: str) -> list[FieldChange]:
    """Drop or rewrite ``[features]`` values that refer to dependency ``key``.

    With no entry for ``key`` left, ``key``, ``dep:key`` and ``key/feature``
    values are dropped. When ``key`` remains as a required dependency only
    the activations of the optional dependency are dropped and weak
    ``key?/feature`` values become ``key/feature``. An optional dependency
    keeps every reference.
    """
    features = document.get(("features",))
    if not isinstance(features, cabc.Mapping):
        return []
    status = _dependency_status(document, key)
    explicit = any(
        str(value) == f"dep:{key}"
        for values in features.values()
        if isinstance(values, list)
        for value in values
    )
    changes: list[FieldChange] = []
    for feature, values in features.items():
        if not isinstance(values, list):
            continue
        before = [str(value) for value in values]
        for index in range(len(values) - 1, -1, -1):
            if _should_drop(str(values[index]), key, status, explicit=explicit):
                del values[index]
        if status is _Status.REQUIRED:
            for index, value in enumerate(list(values)):
                _, dep, dep_feature, weak = _parse_feature_value(str(value))
                if weak and dep == key:
                    values[index] = f"{key}/{dep_feature}"
        after = [str(value) for value in values]
        if after != before:
            changes.append((("features", feature), before, after))
    return changes


def _holders(
    graph: WorkspaceGraph, request: RemoveRequest, spec: KeySpec
) -> list[tuple[PackagePath, DepTable]]:
    """Return the selected members whose chosen section declares ``spec``.

    Raises
    ------
    UnknownKey
        Raised when none of the selected members declares the key there.
    """
    if spec.package is not None:
        members = [graph.member(spec.package)]
    else:
        members = graph.select_members(request.packages)
    declaring = set(graph.manifests_for(spec.key))
    holders: list[tuple[PackagePath, DepTable]] = []
    for member in members:
        if member.manifest not in declaring:
            continue
        document = graph.document(member.manifest)
        table = locate_table(document, request.kind, request.target)
        if document.get((*table.path, spec.key)) is not None:
            holders.append((member, table))
    if not holders:
        raise _missing_key_error(
            graph, members, spec.key, request.kind, request.target
        )
    return holders


def remove(
    request: RemoveRequest,
    *,
    graph: WorkspaceGraph | None = None,
) -> RemoveReport:
    """Remove the requested keys from the selected packages declaring them.

    Keys may be qualified as ``package@key``. A bare key is removed from
    every selected member that declares it in the chosen section.

    Raises
    ------
    UnknownKey
        Raised when no selected member declares a key in the chosen section;
        the message names other sections holding the key. Nothing is written.
    LockedModeViolation
        Raised when a lock refresh is requested in locked mode.
    """
    graph = graph or discover(request.manifest_path)
    names = graph.member_names()
    planned = [
        (spec.key, _holders(graph, request, spec))
        for spec in (
            KeySpec.parse(text, names) for text in dict.fromkeys(request.dependencies)
        )
    ]
    changeset = ChangeSet()
    for key, holders in planned:
        for member, table in holders:
            document = graph.document(member.manifest)
            path = (*table.path, key)
            LOGGER.info("removing %s from %s of %s", key, table, member)
            removed = document.remove(path)
            changes: list[FieldChange] = [(path, plain(removed), None)]
            changes.extend(gc_feature_references(document, key))
            changeset.record(document, changes)
            if request.refresh_lock:
                changeset.require_refresh(f"removed {key} from {member}")

    applied = commit(changeset, dry_run=request.dry_run, locked=request.locked)
    refreshed = False
    if request.refresh_lock and not request.dry_run and applied.written:
        refresh_lockfile(
            graph.root_dir, offline=request.offline, timeout_secs=request.timeout_secs
        )
        refreshed = True
    return RemoveReport(
        edits=tuple(changeset.edits), applied=applied, refreshed=refreshed
    )
