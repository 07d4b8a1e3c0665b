"""Add dependencies to a package manifest.

Each crate spec ``name[@requirement]`` becomes a :class:`Dependency` merged
into the chosen dependency table. Registry crates without a requirement get
the latest stable release at full precision, names present in the root
``[workspace.dependencies]`` are written as ``{ workspace = true }``, and
re-adding an existing entry keeps its placement and merges its features.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import os
import typing as typ
from pathlib import Path

from manifest_edit_cargo import DEFAULT_TIMEOUT_SECS, refresh_lockfile
from manifest_edit_changeset import ApplyReport, ChangeSet, commit
from manifest_edit_dependency import (
    DepKind,
    Dependency,
    GitSource,
    PathSource,
    RegistrySource,
    Source,
    WorkspaceSource,
    decode,
    locate_table,
    write_dependency,
)
from manifest_edit_document import ManifestDocument
from manifest_edit_errors import (
    ManifestNotFound,
    RegistryError,
    UnsupportedDependency,
)
from manifest_edit_lockfile import LockFile
from manifest_edit_selection import Decision, DependencyOutcome, candidate_versions
from manifest_edit_version import VersionRequirement, highest
from manifest_edit_workspace import MANIFEST_NAME, PackagePath, WorkspaceGraph, discover

if typ.TYPE_CHECKING:
    from manifest_edit_changeset import ManifestEdit
    from manifest_edit_registry import Release, RegistryView
    from manifest_edit_vcs import SourceResolver

LOGGER = logging.getLogger(__name__)

__all__ = ["AddReport", "AddRequest", "add", "parse_crate_spec"]


@dc.dataclass(frozen=True)
class AddRequest:
    """Options of an add run.

    ``default_features`` and ``optional`` left as ``None`` keep the value of
    an existing entry, or the manifest default for new ones.
    """

    crates: tuple[str, ...] = ()
    manifest_path: Path | None = None
    package: str | None = None
    rename: str | None = None
    features: tuple[str, ...] = ()
    default_features: bool | None = None
    optional: bool | None = None
    kind: DepKind = DepKind.NORMAL
    target: str | None = None
    path: Path | None = None
    git: str | None = None
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None
    registry: str | None = None
    allow_prerelease: bool = False
    dry_run: bool = False
    locked: bool = False
    offline: bool = False
    refresh_lock: bool = True
    timeout_secs: int = DEFAULT_TIMEOUT_SECS


@dc.dataclass(frozen=True)
class AddReport:
    outcomes: tuple[DependencyOutcome, ...]
    edits: tuple[ManifestEdit, ...] = ()
    applied: ApplyReport = ApplyReport()
    refreshed: bool = False


def parse_crate_spec(text: str) -> tuple[str, str | None]:
    """Split ``name[@requirement]``, validating the requirement.

    >>> parse_crate_spec("serde@1.0")
    ('serde', '1.0')
    """
    name, separator, requirement = text.partition("@")
    if not name or (separator and not requirement):
        message = f"invalid crate spec {text!r}; expected name[@version]"
        raise UnsupportedDependency(message)
    if not separator:
        return name, None
    VersionRequirement.parse(requirement)
    return name, requirement


def _split_features(
    features: typ.Sequence[str], crate: str, *, single: bool
) -> list[str]:
    """Return the features that apply to ``crate``.

    Values may be comma or space separated; ``crate/feature`` targets one
    crate, bare names apply when a single crate is added.
    """
    selected: list[str] = []
    for value in features:
        for feature in value.replace(",", " ").split():
            owner, slash, name = feature.partition("/")
            if slash and owner == crate:
                selected.append(name)
            elif not slash and single:
                selected.append(feature)
    return selected


def _merge_features(existing: tuple[str, ...], added: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys((*existing, *added)))


def _select_member(graph: WorkspaceGraph, package: str | None) -> PackagePath:
    members = graph.select_members((package,) if package else ())
    if len(members) != 1:
        message = (
            f"found a virtual manifest at {graph.root} instead of a package "
            "manifest; specify the package to add to"
        )
        raise ManifestNotFound(message)
    return members[0]


def _path_package_name(path: Path) -> str:
    manifest = path / MANIFEST_NAME if path.is_dir() else path
    document = ManifestDocument.load(manifest)
    name = document.get(("package", "name"))
    if not isinstance(name, str):
        message = f"{manifest} does not describe a package"
        raise ManifestNotFound(message)
    return str(name)


class _Planner:
    """Per-run state shared by the crate specs of one request."""

    def __init__(
        self,
        request: AddRequest,
        graph: WorkspaceGraph,
        registries: typ.Mapping[str | None, RegistryView],
        resolver: SourceResolver | None,
    ) -> None:
        self.request = request
        self.graph = graph
        self.registries = registries
        self.resolver = resolver
        self.member = _select_member(graph, request.package)
        self.document = graph.document(self.member.manifest)
        self.table = locate_table(self.document, request.kind, request.target)

    def _releases(self, name: str) -> list[Release]:
        view = self.registries.get(self.request.registry)
        if view is None:
            registry = self.request.registry or "default"
            message = f"no view of the {registry} registry is configured"
            raise RegistryError(message)
        return view.fetch_releases(name)

    def _latest_requirement(self, name: str, releases: list[Release]) -> str:
        latest = highest(
            candidate_versions(releases, allow_prerelease=self.request.allow_prerelease)
        )
        if latest is None:
            message = f"no published versions of {name} are available"
            raise RegistryError(message)
        return str(VersionRequirement.for_version(latest))

    def _source(
        self, name: str, requirement: str | None, existing: Dependency | None
    ) -> tuple[Source, list[Release]]:
        request = self.request
        if request.path is not None:
            relative = os.path.relpath(
                Path(request.path).resolve(), self.member.directory
            )
            return PathSource(Path(relative).as_posix(), requirement), []
        if request.git is not None:
            rev = request.rev
            if rev is not None and self.resolver is not None:
                rev = self.resolver.resolve_rev(request.git, rev)
            source = GitSource(
                request.git, request.branch, request.tag, rev, requirement
            )
            return source, []
        if requirement is None and existing is not None:
            return existing.source, []
        inherited = self.graph.workspace_entry(request.rename or name)
        if requirement is None and inherited is not None:
            return WorkspaceSource(), []
        releases = self._releases(name)
        if requirement is None:
            requirement = self._latest_requirement(name, releases)
        return RegistrySource(requirement, request.registry), releases

    def plan(
        self, text: str, changeset: ChangeSet, *, single: bool
    ) -> DependencyOutcome:
        request = self.request
        if request.path is not None and not text:
            name, requirement = _path_package_name(Path(request.path)), None
        else:
            name, requirement = parse_crate_spec(text)
        key = request.rename or name
        path = (*self.table.path, key)
        entry = self.document.get(path)
        existing = decode(key, entry, self.table) if entry is not None else None
        source, releases = self._source(name, requirement, existing)
        features = _split_features(request.features, name, single=single)
        dependency = Dependency(
            name=name,
            source=source,
            rename=request.rename if request.rename != name else None,
            features=_merge_features(existing.features if existing else (), features),
            default_features=_pick(
                request.default_features, existing, "default_features", default=True
            ),
            optional=_pick(request.optional, existing, "optional", default=False),
            target=self.table.target,
            kind=self.table.kind,
        )
        _warn_unknown_features(dependency, releases)
        changes = write_dependency(self.document, self.table, dependency)
        changeset.record(self.document, changes)
        if entry is None and request.refresh_lock:
            changeset.require_refresh(f"added {key} to {self.member}")
        LOGGER.info("adding %s to %s of %s", key, self.table, self.member)
        return DependencyOutcome(
            key=key,
            manifest=self.member.manifest,
            old_req=existing.version_req if existing else None,
            new_req=dependency.version_req,
            decision=Decision.UPGRADED if changes else Decision.UNCHANGED,
            note="workspace" if isinstance(source, WorkspaceSource) else None,
        )


def _pick(
    requested: bool | None, existing: Dependency | None, field: str, *, default: bool
) -> bool:
    if requested is not None:
        return requested
    if existing is not None:
        return bool(getattr(existing, field))
    return default


def _warn_unknown_features(dependency: Dependency, releases: list[Release]) -> None:
    if not dependency.features or dependency.version_req is None or not releases:
        return
    requirement = VersionRequirement.parse(dependency.version_req)
    matching = [
        release
        for release in releases
        if not release.yanked and requirement.matches(release.version)
    ]
    if not matching:
        return
    release = max(matching, key=lambda candidate: candidate.version.precedence())
    for feature in dependency.features:
        if feature not in release.features:
            LOGGER.warning(
                "unrecognized feature for crate %s: %s", dependency.name, feature
            )


def add(
    request: AddRequest,
    registries: typ.Mapping[str | None, RegistryView],
    *,
    graph: WorkspaceGraph | None = None,
    resolver: SourceResolver | None = None,
) -> AddReport:
    """Add the crates of ``request`` to one package manifest.

    Raises
    ------
    UnsupportedDependency
        Raised for invalid crate specs or option combinations.
    RegistryError
        Raised when the latest version of a crate cannot be determined.
    LockedModeViolation
        Raised when a new crate would require a lock refresh in locked mode.
    """
    crates = request.crates or (("",) if request.path is not None else ())
    if not crates:
        message = "no crates to add"
        raise UnsupportedDependency(message)
    single = len(crates) == 1
    if not single and (
        request.rename or request.path is not None or request.git is not None
    ):
        message = "--rename, --path and --git can only be used with a single crate"
        raise UnsupportedDependency(message)
    if sum(ref is not None for ref in (request.branch, request.tag, request.rev)) > 1:
        message = "only one of --branch, --tag or --rev may be given"
        raise UnsupportedDependency(message)

    graph = graph or discover(request.manifest_path)
    planner = _Planner(request, graph, registries, resolver)
    lockfile = LockFile.load(graph.lockfile_path)
    changeset = ChangeSet(lockfile)
    outcomes = [planner.plan(text, changeset, single=single) for text in crates]

    applied = commit(changeset, dry_run=request.dry_run, locked=request.locked)
    refreshed = False
    if changeset.refresh_reasons and not request.dry_run and applied.written:
        refresh_lockfile(
            graph.root_dir, offline=request.offline, timeout_secs=request.timeout_secs
        )
        refreshed = True
    return AddReport(
        outcomes=tuple(outcomes),
        edits=tuple(changeset.edits),
        applied=applied,
        refreshed=refreshed,
    )
