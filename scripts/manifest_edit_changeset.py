"""Collect planned edits and write them in one pass.

Orchestrators mutate in-memory documents while planning and record each field
change here. :meth:`ChangeSet.validate` rejects plans that break the caller's
constraints before anything is written, and :meth:`ChangeSet.apply` writes
every modified file in a fixed order, each one atomically.
"""

from __future__ import annotations

import dataclasses as dc
import difflib
import logging
import os
import typing as typ

from manifest_edit_errors import ApplyError, LockedModeViolation

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from manifest_edit_document import KeyPath, ManifestDocument
    from manifest_edit_lockfile import LockEdit, LockFile

LOGGER = logging.getLogger(__name__)

__all__ = ["ApplyReport", "ChangeSet", "ManifestEdit", "commit"]


@dc.dataclass(frozen=True)
class ManifestEdit:
    """A single field change in one manifest."""

    manifest: Path | None
    key_path: KeyPath
    old: object
    new: object

    def __str__(self) -> str:
        location = ".".join(self.key_path)
        return f"{self.manifest}: {location}: {self.old!r} -> {self.new!r}"


@dc.dataclass(frozen=True)
class ApplyReport:
    """Files written by :meth:`ChangeSet.apply`, or planned in a dry run."""

    written: tuple[Path, ...] = ()
    planned: tuple[Path, ...] = ()
    dry_run: bool = False


class ChangeSet:
    """Ordered manifest and lock file edits awaiting validation and apply."""

    def __init__(self, lockfile: LockFile | None = None) -> None:
        self.lockfile = lockfile
        self.edits: list[ManifestEdit] = []
        self.lock_edits: list[LockEdit] = []
        self.refresh_reasons: list[str] = []
        self._documents: dict[Path | None, ManifestDocument] = {}

    def record(
        self,
        document: ManifestDocument,
        changes: cabc.Iterable[tuple[KeyPath, object, object]],
    ) -> int:
        """Record ``(key_path, old, new)`` changes made to ``document``."""
        count = 0
        for key_path, old, new in changes:
            self.edits.append(ManifestEdit(document.path, key_path, old, new))
            count += 1
        if count:
            self._documents.setdefault(document.path, document)
        return count

    def record_lock(self, edits: cabc.Iterable[LockEdit]) -> None:
        self.lock_edits.extend(edits)

    def require_refresh(self, reason: str) -> None:
        """Note that ``cargo`` must re-resolve the lock file after applying."""
        self.refresh_reasons.append(reason)

    @property
    def is_empty(self) -> bool:
        return not self.edits and not self.lock_edits

    def documents(self) -> list[ManifestDocument]:
        """Modified documents in write order: manifests by path, lock last."""
        manifests = sorted(
            (doc for doc in self._documents.values() if doc.is_modified),
            key=lambda doc: str(doc.path),
        )
        if self.lockfile is not None and self.lockfile.is_modified:
            manifests.append(self.lockfile.document)
        return manifests

    def files(self) -> list[Path]:
        return [doc.path for doc in self.documents() if doc.path is not None]

    def validate(self, *, locked: bool) -> None:
        """Reject the plan when ``locked`` forbids its lock file changes.

        Raises
        ------
        LockedModeViolation
            Listing every lock edit and refresh the plan would cause.
        """
        if not locked:
            return
        changes = [str(edit) for edit in self.lock_edits]
        changes.extend(
            f"lock refresh needed: {reason}" for reason in self.refresh_reasons
        )
        if changes:
            raise LockedModeViolation(changes)

    def preview(self) -> dict[Path | None, str]:
        """Return a unified diff per modified file."""
        diffs: dict[Path | None, str] = {}
        for document in self.documents():
            name = str(document.path) if document.path is not None else "<memory>"
            diffs[document.path] = "".join(
                difflib.unified_diff(
                    document.original_text.splitlines(keepends=True),
                    document.serialize().splitlines(keepends=True),
                    fromfile=f"a/{name}",
                    tofile=f"b/{name}",
                )
            )
        return diffs

    def apply(self) -> ApplyReport:
        """Write every modified file, stopping at the first failure.

        Raises
        ------
        ApplyError
            Naming the files already written and those left untouched.
        """
        documents = self.documents()
        written: list[Path] = []
        for index, document in enumerate(documents):
            try:
                document.write()
            except OSError as err:
                failed = [doc.path for doc in documents[index:] if doc.path is not None]
                LOGGER.exception("failed to write %s", document.path)
                raise ApplyError(written, failed, err) from err
            if document.path is not None:
                written.append(document.path)
        return ApplyReport(written=tuple(written), planned=tuple(written))


def commit(changeset: ChangeSet, *, dry_run: bool, locked: bool) -> ApplyReport:
    """Validate ``changeset`` and either apply it or report what would change."""
    changeset.validate(locked=locked)
    if dry_run:
        planned = tuple(changeset.files())
        for path, diff in changeset.preview().items():
            LOGGER.info("would write %s:%s%s", path, os.linesep, diff)
        LOGGER.warning("aborting due to dry run")
        return ApplyReport(planned=planned, dry_run=True)
    return changeset.apply()
