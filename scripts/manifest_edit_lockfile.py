"""In-place updates of ``Cargo.lock`` pins.

The lock file is subordinate to the manifests: it is only consulted for the
concrete versions it pins, and edits never add or remove ``[[package]]``
entries. When a manifest requirement moves past the locked version, the
matching entry is re-pointed at the best known version that satisfies the
new requirement, together with every ``"name version"`` reference to it.
Anything that needs real dependency resolution is left to ``cargo``.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ
from pathlib import Path

from manifest_edit_document import ManifestDocument
from manifest_edit_errors import InvalidVersion
from manifest_edit_version import Version, VersionRequirement, highest

if typ.TYPE_CHECKING:
    from tomlkit.items import Table

LOGGER = logging.getLogger(__name__)

__all__ = [
    "CRATES_IO_SOURCE",
    "LockEdit",
    "LockEntry",
    "LockFile",
    "LockSynchronizer",
]

CRATES_IO_SOURCE: typ.Final[str] = (
    "registry+https://github.com/rust-lang/crates.io-index"
)
_REGISTRY_PREFIXES: typ.Final[tuple[str, ...]] = ("registry+", "sparse+")


@dc.dataclass(frozen=True)
class LockEntry:
    """A ``[[package]]`` record of the lock file."""

    name: str
    version: Version
    source: str | None = None
    checksum: str | None = None

    @property
    def is_registry(self) -> bool:
        return self.source is not None and self.source.startswith(_REGISTRY_PREFIXES)


@dc.dataclass(frozen=True)
class LockEdit:
    """A pin moved from ``old_version`` to ``new_version``."""

    name: str
    old_version: Version
    new_version: Version
    source: str | None = None

    def __str__(self) -> str:
        return f"{self.name} {self.old_version} -> {self.new_version}"


class LockFile:
    """Format preserving view over a parsed ``Cargo.lock``."""

    def __init__(self, document: ManifestDocument) -> None:
        self.document = document

    @classmethod
    def load(cls, path: Path) -> LockFile | None:
        """Return the lock file at ``path``, or ``None`` when there is none."""
        path = Path(path)
        if not path.is_file():
            LOGGER.debug("no lock file at %s", path)
            return None
        return cls(ManifestDocument.load(path))

    @property
    def path(self) -> Path | None:
        return self.document.path

    @property
    def is_modified(self) -> bool:
        return self.document.is_modified

    def _tables(self) -> list[Table]:
        packages = self.document.get(("package",))
        if not isinstance(packages, list):
            return []
        return [table for table in packages if isinstance(table, cabc.Mapping)]

    def entries(self) -> list[LockEntry]:
        """Return every entry with a parseable version."""
        entries = (_entry(table) for table in self._tables())
        return [entry for entry in entries if entry is not None]

    def versions_of(self, name: str) -> list[Version]:
        return [entry.version for entry in self.entries() if entry.name == name]

    def referrers(self, entry: LockEntry) -> list[LockEntry]:
        """Return the entries whose ``dependencies`` list points at ``entry``.

        Cargo writes a bare ``"name"`` reference when only one version of the
        package is locked, and ``"name version"`` otherwise.
        """
        exact = f"{entry.name} {entry.version}"
        bare = len(self.versions_of(entry.name)) == 1
        found: list[LockEntry] = []
        for table in self._tables():
            dependencies = table.get("dependencies")
            if not isinstance(dependencies, list):
                continue
            if any(
                text == exact
                or text.startswith(f"{exact} (")
                or (bare and text == entry.name)
                for text in map(str, dependencies)
            ):
                referrer = _entry(table)
                if referrer is not None:
                    found.append(referrer)
        return found

    def set_version(
        self,
        entry: LockEntry,
        new_version: Version,
        *,
        checksum: str | None = None,
    ) -> LockEdit:
        """Re-point ``entry`` at ``new_version`` and fix references to it.

        The checksum is replaced with ``checksum``; a registry entry without a
        known checksum for the new version loses its stale one so cargo
        recomputes it.
        """
        old_text = str(entry.version)
        new_text = str(new_version)
        target = None
        for table in self._tables():
            if (
                table.get("name") == entry.name
                and str(table.get("version")) == old_text
                and table.get("source") == entry.source
            ):
                target = table
                break
        if target is None:
            message = f"{entry.name} {old_text} is not in the lock file"
            raise KeyError(message)
        target["version"] = new_text
        if checksum is not None:
            target["checksum"] = checksum
        elif "checksum" in target:
            LOGGER.warning(
                "dropping checksum of %s %s; cargo will recompute it",
                entry.name,
                new_text,
            )
            del target["checksum"]
        self._rewrite_references(entry.name, old_text, new_text)
        return LockEdit(entry.name, entry.version, new_version, entry.source)

    def _rewrite_references(self, name: str, old_text: str, new_text: str) -> None:
        prefix = f"{name} {old_text}"
        for table in self._tables():
            dependencies = table.get("dependencies")
            if not isinstance(dependencies, list):
                continue
            for index, reference in enumerate(list(dependencies)):
                text = str(reference)
                if text == prefix or text.startswith(f"{prefix} ("):
                    dependencies[index] = f"{name} {new_text}{text[len(prefix):]}"


def _entry(table: cabc.Mapping[str, object]) -> LockEntry | None:
    try:
        version = Version.parse(str(table.get("version", "")))
    except InvalidVersion:
        LOGGER.warning("skipping lock entry %s", table.get("name"))
        return None
    source = table.get("source")
    checksum = table.get("checksum")
    return LockEntry(
        name=str(table.get("name", "")),
        version=version,
        source=str(source) if source is not None else None,
        checksum=str(checksum) if checksum is not None else None,
    )


class LockSynchronizer:
    """Keep lock file pins consistent with rewritten requirements.

    Parameters
    ----------
    lockfile : LockFile | None
        The workspace lock file; ``None`` turns every call into a no-op.
    """

    def __init__(self, lockfile: LockFile | None) -> None:
        self.lockfile = lockfile
        self.edits: list[LockEdit] = []
        self.refresh_reasons: list[str] = []

    def _needs_refresh(self, reason: str) -> None:
        LOGGER.debug("lock needs a refresh: %s", reason)
        self.refresh_reasons.append(reason)

    def sync_requirement(
        self,
        name: str,
        new_req: str,
        old_req: str | None = None,
        candidates: cabc.Iterable[Version] = (),
        checksums: cabc.Mapping[Version, str] | None = None,
    ) -> LockEdit | None:
        """Move the pin of ``name`` when it no longer satisfies ``new_req``.

        A stale pin that cannot be moved in place, because no known version
        satisfies ``new_req`` or because a package outside the workspace also
        depends on it, is appended to :attr:`refresh_reasons` instead.

        Returns
        -------
        LockEdit | None
            The edit made, or ``None`` when the lock already satisfies the
            requirement or only a full resolve can update it.
        """
        if self.lockfile is None:
            return None
        requirement = VersionRequirement.parse(new_req)
        locked = [
            entry
            for entry in self.lockfile.entries()
            if entry.name == name and entry.is_registry
        ]
        if not locked or any(requirement.matches(entry.version) for entry in locked):
            return None
        previous = VersionRequirement.parse(old_req) if old_req else None
        matching = [
            entry
            for entry in locked
            if previous is None or previous.matches(entry.version)
        ]
        if not matching:
            self._needs_refresh(f"no locked version of {name} matches {old_req}")
            return None
        current = max(matching, key=lambda entry: entry.version.precedence())
        shared = sorted(
            {
                referrer.name
                for referrer in self.lockfile.referrers(current)
                if referrer.source is not None
            }
        )
        if shared:
            self._needs_refresh(
                f"{name} {current.version} is also required by {', '.join(shared)}"
            )
            return None
        pool = [entry.version for entry in locked]
        pool.extend(candidates)
        best = highest(version for version in pool if requirement.matches(version))
        if best is None:
            self._needs_refresh(f"no known version of {name} satisfies {new_req}")
            return None
        known = dict(checksums or {})
        edit = self.lockfile.set_version(current, best, checksum=known.get(best))
        LOGGER.info("lock: %s", edit)
        self.edits.append(edit)
        return edit

    def sync_member(
        self, name: str, old: Version, new: Version
    ) -> LockEdit | None:
        """Update the lock entry of workspace member ``name``."""
        if self.lockfile is None:
            return None
        for entry in self.lockfile.entries():
            if entry.name == name and entry.version == old and entry.source is None:
                edit = self.lockfile.set_version(entry, new)
                self.edits.append(edit)
                return edit
        LOGGER.debug("lock file has no entry for member %s %s", name, old)
        return None
