"""Workspace discovery and dependency key resolution.

:func:`discover` loads every manifest of a workspace once and builds a
:class:`WorkspaceGraph`: the root manifest, the ordered member packages and a
reverse index from dependency keys to the manifests that declare them. The
graph is built per invocation and never updated incrementally; edits made
through the documents it holds are picked up by the change set.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import re
import typing as typ
from pathlib import Path

from manifest_edit_dependency import (
    DepTable,
    Dependency,
    PathSource,
    WorkspaceSource,
    decode,
    iter_dependencies,
)
from manifest_edit_document import ManifestDocument
from manifest_edit_errors import (
    AmbiguousKey,
    ManifestNotFound,
    UnknownKey,
    UnsupportedDependency,
)

LOGGER = logging.getLogger(__name__)

__all__ = [
    "MANIFEST_NAME",
    "DependencyRef",
    "KeySpec",
    "PackagePath",
    "WorkspaceGraph",
    "discover",
    "locate_manifest",
]

MANIFEST_NAME: typ.Final[str] = "Cargo.toml"
_REQUIREMENT_START = re.compile(r"^[\s=<>~^*\d]")


@dc.dataclass(frozen=True)
class PackagePath:
    """A workspace member: its package name and manifest location."""

    name: str | None
    manifest: Path

    @property
    def directory(self) -> Path:
        return self.manifest.parent

    def __str__(self) -> str:
        return self.name or str(self.manifest)


@dc.dataclass(frozen=True)
class DependencyRef:
    """A dependency entry located in a specific manifest table."""

    manifest: Path
    table: DepTable
    key: str
    dependency: Dependency

    @property
    def is_inherited(self) -> bool:
        return isinstance(self.dependency.source, WorkspaceSource)


@dc.dataclass(frozen=True)
class KeySpec:
    """A user supplied dependency selector ``[package@]key[@requirement]``."""

    key: str
    package: str | None = None
    requirement: str | None = None

    @classmethod
    def parse(cls, text: str, member_names: cabc.Container[str] = ()) -> KeySpec:
        """Parse ``text``.

        With two ``@``-separated parts the left part is read as a package
        qualifier when it names a workspace member and the right part does
        not look like a version requirement; otherwise the right part is the
        requirement.

        Examples
        --------
        >>> KeySpec.parse("app@serde", {"app"})
        KeySpec(key='serde', package='app', requirement=None)
        >>> KeySpec.parse("serde@1.0")
        KeySpec(key='serde', package=None, requirement='1.0')
        """
        parts = text.split("@")
        if any(not part for part in parts) or len(parts) > 3:  # noqa: PLR2004
            message = f"invalid dependency selector {text!r}"
            raise UnknownKey(text, message)
        if len(parts) == 3:  # noqa: PLR2004
            return cls(parts[1], parts[0], parts[2])
        if len(parts) == 2:  # noqa: PLR2004
            left, right = parts
            if left in member_names and not _REQUIREMENT_START.match(right):
                return cls(right, left)
            return cls(left, requirement=right)
        return cls(text)

    def __str__(self) -> str:
        text = self.key if self.package is None else f"{self.package}@{self.key}"
        return text if self.requirement is None else f"{text}@{self.requirement}"


class WorkspaceGraph:
    """Manifests of one workspace plus the dependency reverse index."""

    def __init__(
        self,
        root: Path,
        members: cabc.Sequence[PackagePath],
        documents: cabc.Mapping[Path, ManifestDocument],
        start: Path | None = None,
    ) -> None:
        self.root = root
        self.members = list(members)
        self.documents = dict(documents)
        self.start = start or root
        self._index: dict[str, dict[Path, None]] = {}
        for manifest in self.manifests:
            for _, key, _ in iter_dependencies(self.documents[manifest]):
                self._index.setdefault(key, {})[manifest] = None

    @property
    def root_dir(self) -> Path:
        return self.root.parent

    @property
    def lockfile_path(self) -> Path:
        return self.root_dir / "Cargo.lock"

    @property
    def root_document(self) -> ManifestDocument:
        return self.documents[self.root]

    @property
    def manifests(self) -> list[Path]:
        """Member manifests followed by the root when it is not a member."""
        paths = [member.manifest for member in self.members]
        if self.root not in paths:
            paths.append(self.root)
        return paths

    def document(self, manifest: Path) -> ManifestDocument:
        return self.documents[manifest]

    def member(self, name: str) -> PackagePath:
        for member in self.members:
            if member.name == name:
                return member
        message = f"package `{name}` is not a member of the workspace at {self.root}"
        raise ManifestNotFound(message)

    def member_names(self) -> set[str]:
        return {member.name for member in self.members if member.name is not None}

    def manifests_for(self, key: str) -> list[Path]:
        """Return the manifests declaring ``key`` in any dependency table."""
        return list(self._index.get(key, {}))

    def select_members(
        self, packages: cabc.Sequence[str] = (), *, workspace: bool = False
    ) -> list[PackagePath]:
        """Return the members addressed by ``--package``/``--workspace``.

        Without either option the package owning the starting manifest is
        selected, or every member when the start is a virtual manifest.
        """
        if workspace:
            return list(self.members)
        if packages:
            return [self.member(name) for name in packages]
        for member in self.members:
            if member.manifest == self.start:
                return [member]
        return list(self.members)

    def references(
        self, manifests: cabc.Iterable[Path] | None = None
    ) -> list[DependencyRef]:
        """Decode every dependency entry of ``manifests`` (default: all).

        Entries that cannot be decoded are logged and skipped.
        """
        refs: list[DependencyRef] = []
        for manifest in manifests if manifests is not None else self.manifests:
            for table, key, entry in iter_dependencies(self.documents[manifest]):
                try:
                    dependency = decode(key, entry, table)
                except UnsupportedDependency as err:
                    LOGGER.warning("ignoring %s in %s: %s", key, manifest, err)
                    continue
                refs.append(DependencyRef(manifest, table, key, dependency))
        return refs

    def resolve(
        self, spec: KeySpec, manifests: cabc.Iterable[Path] | None = None
    ) -> list[DependencyRef]:
        """Return the entries ``spec`` addresses.

        Raises
        ------
        AmbiguousKey
            Raised when the key is the package name behind a renamed entry
            and no package qualifier narrows the match to one entry.
        UnknownKey
            Raised when no entry matches.
        """
        if spec.package is not None:
            manifests = [self.member(spec.package).manifest]
        refs = self.references(manifests)
        direct = [ref for ref in refs if ref.key == spec.key]
        renamed = [
            ref
            for ref in refs
            if ref.key != spec.key and ref.dependency.rename is not None
            and ref.dependency.name == spec.key
        ]
        if renamed:
            matches = direct + renamed
            if spec.package is not None and len(matches) == 1:
                return matches
            candidates = sorted({ref.key for ref in matches})
            raise AmbiguousKey(spec.key, candidates)
        if not direct:
            raise UnknownKey(spec.key)
        return direct

    def workspace_entry(self, key: str) -> DependencyRef | None:
        """Return the root ``[workspace.dependencies]`` entry for ``key``."""
        table = DepTable(workspace=True)
        entry = self.root_document.get((*table.path, key))
        if entry is None:
            return None
        return DependencyRef(self.root, table, key, decode(key, entry, table))

    def fallback_order(self, manifest: Path) -> list[Path]:
        """Return where an entry of ``manifest`` may be edited, nearest first."""
        if manifest == self.root:
            return [manifest]
        return [manifest, self.root]

    def dependents_of(self, member: PackagePath) -> list[DependencyRef]:
        """Return path dependency entries pointing at ``member``."""
        target = member.directory.resolve()
        dependents: list[DependencyRef] = []
        for ref in self.references():
            source = ref.dependency.source
            if not isinstance(source, PathSource):
                continue
            if (ref.manifest.parent / source.path).resolve() == target:
                dependents.append(ref)
        return dependents


def locate_manifest(path: Path | None = None) -> Path:
    """Return the manifest at ``path`` or the nearest one above the cwd."""
    if path is not None:
        path = Path(path)
        candidate = path / MANIFEST_NAME if path.is_dir() else path
        if not candidate.is_file():
            message = f"manifest not found at {candidate}"
            raise ManifestNotFound(message)
        return candidate.resolve()
    current = Path.cwd().resolve()
    for directory in (current, *current.parents):
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate
    message = f"could not find {MANIFEST_NAME} in {current} or any parent directory"
    raise ManifestNotFound(message)


class _Arena:
    """Load each manifest at most once."""

    def __init__(self) -> None:
        self.documents: dict[Path, ManifestDocument] = {}

    def load(self, manifest: Path) -> ManifestDocument:
        manifest = manifest.resolve()
        if manifest not in self.documents:
            if not manifest.is_file():
                message = f"manifest not found at {manifest}"
                raise ManifestNotFound(message)
            self.documents[manifest] = ManifestDocument.load(manifest)
        return self.documents[manifest]


def _members_array(document: ManifestDocument, key: str) -> list[str]:
    """Return ``workspace.<key>`` as a list of strings."""
    value = document.get(("workspace", key))
    if isinstance(value, list):
        return [str(entry) for entry in value if isinstance(entry, str)]
    return []


def _expand_members(root: Path, document: ManifestDocument) -> list[Path]:
    """Expand ``workspace.members`` globs, dropping ``workspace.exclude``."""
    root_dir = root.parent
    excluded = [
        (root_dir / entry).resolve() for entry in _members_array(document, "exclude")
    ]
    manifests: dict[Path, None] = {}
    for pattern in _members_array(document, "members"):
        if any(char in pattern for char in "*?["):
            directories = sorted(root_dir.glob(pattern))
        else:
            directories = [root_dir / pattern]
        for directory in directories:
            manifest = (directory / MANIFEST_NAME).resolve()
            if not manifest.is_file():
                if not any(char in pattern for char in "*?["):
                    LOGGER.warning("workspace member %s has no manifest", directory)
                continue
            if any(manifest.parent.is_relative_to(path) for path in excluded):
                continue
            manifests[manifest] = None
    return list(manifests)


def _declares_member(root: Path, document: ManifestDocument, manifest: Path) -> bool:
    return manifest == root or manifest in _expand_members(root, document)


def _find_root(manifest: Path, arena: _Arena) -> Path:
    document = arena.load(manifest)
    if document.get(("workspace",)) is not None:
        return manifest
    explicit = document.get(("package", "workspace"))
    if isinstance(explicit, str):
        return (manifest.parent / str(explicit) / MANIFEST_NAME).resolve()
    for directory in manifest.parent.parents:
        candidate = directory / MANIFEST_NAME
        if not candidate.is_file():
            continue
        candidate = candidate.resolve()
        ancestor = arena.load(candidate)
        if ancestor.get(("workspace",)) is None:
            continue
        if _declares_member(candidate, ancestor, manifest):
            return candidate
    return manifest


def _path_dependencies(
    manifest: Path, document: ManifestDocument, root_dir: Path
) -> list[Path]:
    found: list[Path] = []
    for table, key, entry in iter_dependencies(document):
        try:
            source = decode(key, entry, table).source
        except UnsupportedDependency:
            continue
        if not isinstance(source, PathSource):
            continue
        target = (manifest.parent / source.path / MANIFEST_NAME).resolve()
        if target.is_file() and target.parent.is_relative_to(root_dir):
            found.append(target)
    return found


def _package_name(document: ManifestDocument) -> str | None:
    name = document.get(("package", "name"))
    return str(name) if isinstance(name, str) else None


def discover(manifest_path: Path | None = None) -> WorkspaceGraph:
    """Build the :class:`WorkspaceGraph` containing ``manifest_path``.

    Parameters
    ----------
    manifest_path : Path | None, optional
        A ``Cargo.toml`` or the directory holding one. Defaults to the
        nearest manifest above the current directory.

    Raises
    ------
    ManifestNotFound
        Raised when a manifest (or a listed workspace member) is missing.
    MalformedDocument
        Raised when any loaded manifest is not valid TOML.
    """
    start = locate_manifest(manifest_path)
    arena = _Arena()
    root = _find_root(start, arena)
    root_document = arena.load(root)
    root_dir = root.parent

    ordered: dict[Path, None] = {}
    if root_document.get(("package",)) is not None:
        ordered[root] = None
    for manifest in _expand_members(root, root_document):
        ordered[manifest] = None
    if start not in ordered:
        ordered[start] = None
    pending = list(ordered)
    while pending:
        manifest = pending.pop(0)
        for dependency in _path_dependencies(manifest, arena.load(manifest), root_dir):
            if dependency not in ordered:
                ordered[dependency] = None
                pending.append(dependency)

    members = [
        PackagePath(_package_name(arena.load(manifest)), manifest)
        for manifest in ordered
        if arena.load(manifest).get(("package",)) is not None
    ]
    documents = {
        path: document
        for path, document in arena.documents.items()
        if path in ordered or path == root
    }
    LOGGER.debug("workspace %s has %d members", root, len(members))
    return WorkspaceGraph(root, members, documents, start=start)
