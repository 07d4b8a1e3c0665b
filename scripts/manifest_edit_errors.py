"""Error taxonomy shared by the manifest editing helpers.

Every failure surfaced by the manifest tooling derives from
:class:`ManifestEditError` so callers (and the command line wrapper) can
convert the whole family into a single exit path while still matching on the
specific subclasses when they need to.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

__all__ = [
    "AmbiguousKey",
    "ApplyError",
    "CargoCommandError",
    "InvalidVersion",
    "LockedModeViolation",
    "MalformedDocument",
    "ManifestEditError",
    "ManifestNotFound",
    "NoLockedVersion",
    "Offline",
    "RegistryError",
    "UnknownKey",
    "UnsupportedDependency",
    "VcsError",
]


class ManifestEditError(Exception):
    """Base class for every manifest editing failure."""


class MalformedDocument(ManifestEditError):
    """Raised when a manifest or lock file is not valid TOML."""

    def __init__(self, path: Path | None, detail: str) -> None:
        self.path = path
        self.detail = detail
        location = str(path) if path is not None else "<memory>"
        super().__init__(f"failed to parse {location}: {detail}")


class ManifestNotFound(ManifestEditError):
    """Raised when no ``Cargo.toml`` exists where one was expected."""


class UnknownKey(ManifestEditError):
    """Raised when a dependency key is not referenced by any manifest."""

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"dependency {key!r} doesn't exist")


class AmbiguousKey(ManifestEditError):
    """Raised when a bare name matches renamed dependency entries."""

    def __init__(self, key: str, candidates: cabc.Iterable[str]) -> None:
        self.key = key
        self.candidates = tuple(candidates)
        formatted = ", ".join(self.candidates)
        super().__init__(
            f"dependency {key!r} is ambiguous; specify one of: {formatted}"
        )


class UnsupportedDependency(ManifestEditError):
    """Raised when a dependency entry cannot be decoded."""


class InvalidVersion(ManifestEditError, ValueError):
    """Raised when a version or version requirement cannot be parsed."""


class RegistryError(ManifestEditError):
    """Raised when registry index data cannot be obtained for a package."""


class Offline(RegistryError):
    """Raised in offline mode for packages absent from the local cache."""


class NoLockedVersion(ManifestEditError):
    """Raised when ``to_lockfile`` finds no locked version to upgrade to."""


class LockedModeViolation(ManifestEditError):
    """Raised when a plan would change the lock file in locked mode."""

    def __init__(self, changes: cabc.Sequence[str]) -> None:
        self.changes = tuple(changes)
        listing = "".join(f"\n  {change}" for change in self.changes)
        super().__init__(f"cannot apply changes due to `--locked`:{listing}")


class VcsError(ManifestEditError):
    """Raised when a version-control reference cannot be resolved."""


class CargoCommandError(ManifestEditError):
    """Raised when an external ``cargo`` invocation fails."""


class ApplyError(ManifestEditError):
    """Raised when writing a planned change set fails part way through."""

    def __init__(
        self,
        written: cabc.Sequence[Path],
        failed: cabc.Sequence[Path],
        cause: BaseException,
    ) -> None:
        self.written = tuple(written)
        self.failed = tuple(failed)
        self.cause = cause
        written_list = ", ".join(str(path) for path in self.written) or "none"
        failed_list = ", ".join(str(path) for path in self.failed)
        super().__init__(
            f"failed to write {failed_list} ({cause}); already written: {written_list}"
        )
