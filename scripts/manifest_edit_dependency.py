"""Dependency records and their manifest representation.

:func:`decode` turns a manifest entry (bare requirement string, inline table
or ``[dependencies.name]`` table) into a :class:`Dependency`; :func:`encode`
produces the smallest representation for a new entry and
:func:`write_dependency` merges a record into an existing entry, touching only
the fields whose values differ.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import logging
import typing as typ

from manifest_edit_document import KeyPath, ManifestDocument, render_inline_table
from manifest_edit_errors import UnsupportedDependency
from tomlkit import item as toml_item
from tomlkit.items import InlineTable, Item, SingleKey

LOGGER = logging.getLogger(__name__)

__all__ = [
    "CANONICAL_ORDER",
    "DepKind",
    "DepTable",
    "Dependency",
    "FieldChange",
    "GitSource",
    "PathSource",
    "RegistrySource",
    "Source",
    "WorkspaceSource",
    "decode",
    "dependency_tables",
    "encode",
    "iter_dependencies",
    "locate_table",
    "plain",
    "write_dependency",
    "write_requirement",
]

FieldChange = tuple[KeyPath, object, object]

CANONICAL_ORDER: typ.Final[tuple[str, ...]] = (
    "workspace",
    "version",
    "registry",
    "path",
    "git",
    "branch",
    "tag",
    "rev",
    "package",
    "default-features",
    "features",
    "optional",
)
_DEFAULT_FEATURES_KEYS: typ.Final[tuple[str, ...]] = (
    "default-features",
    "default_features",
)


class DepKind(enum.Enum):
    """The dependency section a dependency belongs to."""

    NORMAL = "normal"
    DEV = "dev"
    BUILD = "build"

    @property
    def table_names(self) -> tuple[str, ...]:
        """Return the table spellings for this kind, preferred first."""
        return {
            DepKind.NORMAL: ("dependencies",),
            DepKind.DEV: ("dev-dependencies", "dev_dependencies"),
            DepKind.BUILD: ("build-dependencies", "build_dependencies"),
        }[self]


@dc.dataclass(frozen=True)
class DepTable:
    """Location of a dependency table within a manifest.

    ``key`` records the spelling found in the document (for example the
    legacy ``dev_dependencies``) and does not take part in equality.
    """

    kind: DepKind = DepKind.NORMAL
    target: str | None = None
    workspace: bool = False
    key: str | None = dc.field(default=None, compare=False)

    @property
    def path(self) -> KeyPath:
        if self.workspace:
            return ("workspace", "dependencies")
        name = self.key or self.kind.table_names[0]
        if self.target is not None:
            return ("target", self.target, name)
        return (name,)

    def __str__(self) -> str:
        if self.workspace:
            return "workspace.dependencies"
        name = self.kind.table_names[0]
        if self.target is not None:
            return f"{name} for target `{self.target}`"
        return name


@dc.dataclass(frozen=True)
class RegistrySource:
    """A dependency resolved from a package registry."""

    version: str | None = None
    registry: str | None = None


@dc.dataclass(frozen=True)
class PathSource:
    """A dependency on a local package, optionally with a published version."""

    path: str
    version: str | None = None


@dc.dataclass(frozen=True)
class GitSource:
    """A dependency fetched from a git repository."""

    url: str
    branch: str | None = None
    tag: str | None = None
    rev: str | None = None
    version: str | None = None


@dc.dataclass(frozen=True)
class WorkspaceSource:
    """A dependency inherited from ``[workspace.dependencies]``."""

    version: None = None


Source = RegistrySource | PathSource | GitSource | WorkspaceSource


@dc.dataclass(frozen=True)
class Dependency:
    """A dependency entry as the user means it, independent of formatting."""

    name: str
    source: Source = dc.field(default_factory=RegistrySource)
    rename: str | None = None
    features: tuple[str, ...] = ()
    default_features: bool = True
    optional: bool = False
    target: str | None = None
    kind: DepKind = DepKind.NORMAL

    @property
    def toml_key(self) -> str:
        return self.rename or self.name

    @property
    def version_req(self) -> str | None:
        return self.source.version

    def with_version(self, version_req: str) -> Dependency:
        """Return a copy whose source carries ``version_req``."""
        if isinstance(self.source, WorkspaceSource):
            message = f"{self.toml_key} inherits its version from the workspace"
            raise UnsupportedDependency(message)
        return dc.replace(self, source=dc.replace(self.source, version=version_req))

    def is_bare(self) -> bool:
        """Return ``True`` when the entry can be written as a plain string."""
        return (
            isinstance(self.source, RegistrySource)
            and self.source.version is not None
            and self.source.registry is None
            and self.rename is None
            and not self.features
            and self.default_features
            and not self.optional
        )


def plain(value: object) -> object:
    """Return ``value`` with tomlkit wrappers removed."""
    if isinstance(value, Item):
        return value.unwrap()
    return value


def dependency_tables(document: ManifestDocument) -> list[DepTable]:
    """Return every dependency table present in ``document``."""
    tables: list[DepTable] = []
    for kind in DepKind:
        tables.extend(
            DepTable(kind, key=name)
            for name in kind.table_names
            if isinstance(document.get((name,)), cabc.Mapping)
        )
    targets = document.get(("target",))
    if isinstance(targets, cabc.Mapping):
        for target, section in targets.items():
            if not isinstance(section, cabc.Mapping):
                continue
            for kind in DepKind:
                tables.extend(
                    DepTable(kind, target=target, key=name)
                    for name in kind.table_names
                    if isinstance(section.get(name), cabc.Mapping)
                )
    if isinstance(document.get(("workspace", "dependencies")), cabc.Mapping):
        tables.append(DepTable(workspace=True))
    return tables


def iter_dependencies(
    document: ManifestDocument,
) -> cabc.Iterator[tuple[DepTable, str, object]]:
    """Yield ``(table, key, entry)`` for every dependency in ``document``."""
    for table in dependency_tables(document):
        section = document.get(table.path)
        for key, entry in section.items():
            yield table, key, entry


def _string_field(fields: cabc.Mapping[str, object], name: str, key: str) -> str | None:
    value = fields.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        message = f"dependency {key!r}: `{name}` must be a string"
        raise UnsupportedDependency(message)
    return str(value)


def _bool_field(
    fields: cabc.Mapping[str, object],
    names: tuple[str, ...],
    key: str,
    *,
    default: bool,
) -> bool:
    for name in names:
        if name in fields:
            value = fields[name]
            if not isinstance(value, bool):
                message = f"dependency {key!r}: `{name}` must be a boolean"
                raise UnsupportedDependency(message)
            return value
    return default


def _features_field(fields: cabc.Mapping[str, object], key: str) -> tuple[str, ...]:
    value = fields.get("features")
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        message = f"dependency {key!r}: `features` must be an array of strings"
        raise UnsupportedDependency(message)
    return tuple(str(feature) for feature in value)


def _decode_source(fields: cabc.Mapping[str, object], key: str) -> Source:
    version = _string_field(fields, "version", key)
    path = _string_field(fields, "path", key)
    git = _string_field(fields, "git", key)
    if fields.get("workspace") is True:
        if version or path or git:
            message = (
                f"dependency {key!r}: `workspace` cannot be combined with a source"
            )
            raise UnsupportedDependency(message)
        return WorkspaceSource()
    if path is not None and git is not None:
        message = f"dependency {key!r} specifies both `path` and `git`"
        raise UnsupportedDependency(message)
    if git is not None:
        refs = {
            name: _string_field(fields, name, key) for name in ("branch", "tag", "rev")
        }
        if sum(value is not None for value in refs.values()) > 1:
            message = f"dependency {key!r}: only one of branch, tag or rev is allowed"
            raise UnsupportedDependency(message)
        return GitSource(git, version=version, **refs)
    if path is not None:
        return PathSource(path, version)
    return RegistrySource(version, _string_field(fields, "registry", key))


def decode(key: str, entry: object, table: DepTable | None = None) -> Dependency:
    """Decode the manifest ``entry`` stored under ``key``.

    Raises
    ------
    UnsupportedDependency
        Raised when the entry has an unexpected shape or conflicting sources.
    """
    table = table or DepTable()
    if isinstance(entry, str):
        return Dependency(
            key,
            RegistrySource(str(entry)),
            target=table.target,
            kind=table.kind,
        )
    if not isinstance(entry, cabc.Mapping):
        message = f"dependency {key!r} must be a version string or a table"
        raise UnsupportedDependency(message)
    package = _string_field(entry, "package", key)
    return Dependency(
        name=package or key,
        source=_decode_source(entry, key),
        rename=key if package is not None and package != key else None,
        features=_features_field(entry, key),
        default_features=_bool_field(
            entry, _DEFAULT_FEATURES_KEYS, key, default=True
        ),
        optional=_bool_field(entry, ("optional",), key, default=False),
        target=table.target,
        kind=table.kind,
    )


def _fields(dependency: Dependency) -> dict[str, object]:
    """Return the non-default fields of ``dependency`` in canonical order."""
    source = dependency.source
    fields: dict[str, object] = {}
    if isinstance(source, WorkspaceSource):
        fields["workspace"] = True
    if source.version is not None:
        fields["version"] = source.version
    if isinstance(source, RegistrySource) and source.registry is not None:
        fields["registry"] = source.registry
    if isinstance(source, PathSource):
        fields["path"] = source.path
    if isinstance(source, GitSource):
        fields["git"] = source.url
        for name in ("branch", "tag", "rev"):
            if (value := getattr(source, name)) is not None:
                fields[name] = value
    if dependency.rename is not None:
        fields["package"] = dependency.name
    if not dependency.default_features:
        fields["default-features"] = False
    if dependency.features:
        fields["features"] = list(dependency.features)
    if dependency.optional:
        fields["optional"] = True
    return fields


def encode(dependency: Dependency) -> str | InlineTable:
    """Return the minimal manifest representation of ``dependency``."""
    if dependency.is_bare():
        return typ.cast("str", dependency.version_req)
    return render_inline_table(
        [
            (SingleKey(name).as_string(), toml_item(value).as_string())
            for name, value in _fields(dependency).items()
        ]
    )


def _document_key(entry: cabc.Mapping[str, object], field: str) -> str:
    if field == "default-features":
        return next(
            (name for name in _DEFAULT_FEATURES_KEYS if name in entry), field
        )
    return field


def _merge_features(
    entry: cabc.Mapping[str, object], key: str, wanted: list[str] | None
) -> bool:
    """Edit an existing features array in place; ``False`` means replace it."""
    current = entry.get(key)
    if not isinstance(current, list) or not wanted:
        return False
    for index in range(len(current) - 1, -1, -1):
        if current[index] not in wanted:
            del current[index]
    present = [str(feature) for feature in current]
    for feature in wanted:
        if feature not in present:
            current.append(feature)
    return True


def write_dependency(
    document: ManifestDocument, table: DepTable, dependency: Dependency
) -> list[FieldChange]:
    """Write ``dependency`` into ``table``, changing as little text as possible.

    Returns
    -------
    list[FieldChange]
        ``(key_path, old, new)`` for every field that changed. An empty list
        means the document already described ``dependency``.
    """
    path = (*table.path, dependency.toml_key)
    existing = document.get(path)
    if existing is None:
        encoded = encode(dependency)
        document.set(path, encoded)
        return [(path, None, plain(encoded))]
    if isinstance(existing, str):
        old = str(existing)
        if dependency.is_bare():
            if old == dependency.version_req:
                return []
            document.set(path, dependency.version_req)
            return [(path, old, dependency.version_req)]
        encoded = encode(dependency)
        document.set(path, encoded)
        return [(path, old, plain(encoded))]
    if not isinstance(existing, cabc.Mapping):
        message = f"dependency {dependency.toml_key!r} must be a string or a table"
        raise UnsupportedDependency(message)
    return _merge_table(document, path, existing, _fields(dependency))


def _merge_table(
    document: ManifestDocument,
    path: KeyPath,
    existing: cabc.Mapping[str, object],
    wanted: dict[str, object],
) -> list[FieldChange]:
    changes: list[FieldChange] = []
    structural: dict[str, object | None] = {}
    for field in CANONICAL_ORDER:
        key = _document_key(existing, field)
        have = plain(existing.get(key))
        want = wanted.get(field)
        if field == "features" and have is not None and want is not None:
            have_features = typ.cast("list[str]", have)
            if sorted(have_features) == sorted(typ.cast("list[str]", want)):
                continue
        if field == "default-features" and have is True and want is None:
            continue
        if have == want:
            continue
        changes.append(((*path, key), have, want))
        if field == "features" and _merge_features(
            existing, key, typ.cast("list[str] | None", want)
        ):
            continue
        if have is not None and want is not None:
            document.set((*path, key), want)
        else:
            structural[key] = want
    if structural:
        if isinstance(existing, InlineTable):
            document.update_inline(path, structural, CANONICAL_ORDER)
        else:
            for key, value in structural.items():
                if value is None:
                    document.remove((*path, key))
                else:
                    document.set((*path, key), value)
    if changes:
        LOGGER.debug("updated %s: %s", ".".join(path), [c[0][-1] for c in changes])
    return changes


def write_requirement(
    document: ManifestDocument, table: DepTable, key: str, requirement: str
) -> list[FieldChange]:
    """Replace only the version requirement of the entry stored under ``key``."""
    path = (*table.path, key)
    entry = document.get(path)
    if isinstance(entry, str):
        target = path
    elif isinstance(entry, cabc.Mapping):
        target = (*path, "version")
    else:
        message = f"dependency {key!r} not found in {table}"
        raise UnsupportedDependency(message)
    old = plain(document.get(target))
    if old == requirement:
        return []
    document.set(target, requirement)
    return [(target, old, requirement)]


def locate_table(
    document: ManifestDocument, kind: DepKind, target: str | None = None
) -> DepTable:
    """Return the table for ``kind``, honouring a legacy spelling in use."""
    for name in kind.table_names:
        table = DepTable(kind, target, key=name)
        if document.get(table.path) is not None:
            return table
    return DepTable(kind, target)
