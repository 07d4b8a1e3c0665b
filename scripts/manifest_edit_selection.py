"""Choose new version requirements for dependencies.

:func:`select_requirement` is a pure function of the current requirement,
the published releases, the locked versions and an :class:`UpgradePolicy`.
It never touches documents; orchestrators turn the returned
:class:`Selection` into edits and :class:`DependencyOutcome` report rows.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import logging
import typing as typ

from manifest_edit_errors import InvalidVersion, NoLockedVersion
from manifest_edit_version import Version, VersionRequirement, highest

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from manifest_edit_registry import Release

LOGGER = logging.getLogger(__name__)

__all__ = [
    "COMPATIBLE_NOTE",
    "PINNED_NOTE",
    "Decision",
    "DependencyOutcome",
    "Selection",
    "UpgradePolicy",
    "candidate_versions",
    "select_requirement",
]

PINNED_NOTE: typ.Final[str] = (
    "Re-run with `--pinned` to upgrade pinned version requirements"
)
COMPATIBLE_NOTE: typ.Final[str] = (
    "Re-run with `--compatible` or `--to-lockfile` to upgrade compatible "
    "version requirements"
)


@dc.dataclass(frozen=True)
class UpgradePolicy:
    """Flags steering version selection.

    Attributes
    ----------
    pinned_skip
        Leave pinned requirements (``=``, ``<``, ``<=``, partial wildcards)
        and renamed dependencies untouched.
    to_lockfile
        Upgrade to the version recorded in the lock file instead of the
        latest published release.
    allow_prerelease
        Consider pre-release versions. Requirements that already name a
        pre-release always do.
    upgrade_compatible
        Rewrite requirements that already accept the selected version.
    locked
        Refuse any plan that would change the lock file.
    offline
        Answer registry queries from the local cache only.
    """

    pinned_skip: bool = True
    to_lockfile: bool = False
    allow_prerelease: bool = False
    upgrade_compatible: bool = False
    locked: bool = False
    offline: bool = False


class Decision(enum.Enum):
    """What happened to a dependency's requirement."""

    UPGRADED = "upgraded"
    PINNED = "pinned"
    COMPATIBLE = "compatible"
    UNRESOLVABLE = "unresolvable"
    UNCHANGED = "unchanged"


@dc.dataclass(frozen=True)
class Selection:
    """Result of :func:`select_requirement` for one requirement."""

    decision: Decision
    new_req: str | None
    note: str | None = None
    latest_version: Version | None = None
    locked_version: Version | None = None

    def outcome(
        self, key: str, manifest: Path | None, old_req: str | None
    ) -> DependencyOutcome:
        return DependencyOutcome(
            key=key,
            manifest=manifest,
            old_req=old_req,
            new_req=self.new_req,
            decision=self.decision,
            note=self.note,
            locked_version=self.locked_version,
            latest_version=self.latest_version,
        )


@dc.dataclass(frozen=True)
class DependencyOutcome:
    """One row of an operation report."""

    key: str
    manifest: Path | None
    old_req: str | None
    new_req: str | None
    decision: Decision
    note: str | None = None
    locked_version: Version | None = None
    latest_version: Version | None = None

    @property
    def changed(self) -> bool:
        return self.decision is Decision.UPGRADED and self.new_req != self.old_req


def candidate_versions(
    releases: cabc.Iterable[Release], *, allow_prerelease: bool
) -> list[Version]:
    """Return non-yanked versions, dropping pre-releases unless allowed."""
    return [
        release.version
        for release in releases
        if not release.yanked
        and (allow_prerelease or not release.version.is_prerelease)
    ]


def _parse(requirement: str | None) -> VersionRequirement | None:
    if requirement is None:
        return None
    return VersionRequirement.parse(requirement)


def select_requirement(  # noqa: C901, PLR0911 - mirrors the decision table
    current: str | None,
    releases: cabc.Sequence[Release],
    policy: UpgradePolicy,
    *,
    locked_versions: cabc.Iterable[Version] = (),
    explicit: str | None = None,
    renamed: bool = False,
) -> Selection:
    """Decide the requirement ``current`` should be replaced with.

    Parameters
    ----------
    current : str | None
        Requirement found in the manifest; ``None`` for entries without one.
    releases : Sequence[Release]
        Published releases of the package.
    policy : UpgradePolicy
        Selection flags.
    locked_versions : Iterable[Version], optional
        Versions of the package recorded in the lock file.
    explicit : str | None, optional
        Requirement requested by the user; written as given.
    renamed : bool, optional
        Whether the entry renames its package, which counts as pinned.

    Returns
    -------
    Selection
        The decision and the requirement the manifest should hold afterwards.

    Raises
    ------
    NoLockedVersion
        Raised with ``policy.to_lockfile`` when no locked version matches.
    InvalidVersion
        Raised when ``explicit`` is not a valid requirement.

    Examples
    --------
    >>> from manifest_edit_registry import Release
    >>> releases = [Release(Version.parse("1.5.3"))]
    >>> select_requirement("1.2", releases, UpgradePolicy()).decision.value
    'compatible'
    """
    try:
        requirement = _parse(current)
    except InvalidVersion as err:
        return Selection(Decision.UNRESOLVABLE, current, note=str(err))
    locked = None
    if requirement is not None:
        locked = highest(v for v in locked_versions if requirement.matches(v))
        if locked is not None:
            locked = locked.without_build()

    if explicit is not None:
        VersionRequirement.parse(explicit)

    if policy.pinned_skip and (
        renamed or (requirement is not None and requirement.is_pinned())
    ):
        return Selection(Decision.PINNED, current, note="pinned", locked_version=locked)

    if explicit is not None:
        decision = Decision.UNCHANGED if explicit == current else Decision.UPGRADED
        return Selection(decision, explicit, locked_version=locked)

    allow_prerelease = policy.allow_prerelease or (
        requirement is not None and requirement.is_prerelease
    )
    candidates = candidate_versions(releases, allow_prerelease=allow_prerelease)
    latest = highest(candidates)
    if latest is not None:
        latest = latest.without_build()

    if policy.to_lockfile:
        if locked is None:
            message = f"no locked version matches {current!r}"
            raise NoLockedVersion(message)
        target: Version | None = locked
    else:
        if latest is None:
            return Selection(
                Decision.UNRESOLVABLE,
                current,
                note="no published versions",
                locked_version=locked,
            )
        floor = requirement.lower_bound() if requirement is not None else None
        target = highest(
            version
            for version in candidates
            if floor is None or version.precedence() >= floor.precedence()
        )
        if target is None:
            return Selection(
                Decision.UNCHANGED,
                current,
                latest_version=latest,
                locked_version=locked,
            )
        target = target.without_build()

    def _selection(
        decision: Decision, new_req: str | None, note: str | None = None
    ) -> Selection:
        return Selection(
            decision, new_req, note=note, latest_version=latest, locked_version=locked
        )

    if requirement is None:
        return _selection(
            Decision.UPGRADED, str(VersionRequirement.for_version(target))
        )
    try:
        moved = requirement.upgraded_to(target)
    except InvalidVersion as err:
        LOGGER.debug("cannot move %s to %s: %s", current, target, err)
        return _selection(Decision.UNRESOLVABLE, current, note=str(err))
    if moved is None:
        return _selection(Decision.UNCHANGED, current)
    if (
        not policy.to_lockfile
        and not policy.upgrade_compatible
        and requirement.matches(target)
    ):
        return _selection(Decision.COMPATIBLE, current, note="compatible")
    return _selection(Decision.UPGRADED, str(moved))
