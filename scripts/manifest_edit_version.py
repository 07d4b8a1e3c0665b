"""Semantic version and version requirement arithmetic.

The helpers implement Cargo's flavour of semantic versioning: bare
requirements such as ``"1.2"`` behave like caret requirements, partial
versions widen the accepted interval, and pre-release versions only satisfy
requirements that mention a pre-release on the same ``major.minor.patch``.

Requirements remember how they were written. Each comparator records its
operator, whether that operator was spelled out, and how many version
components the author supplied, so an upgraded requirement can be rendered
at the same precision as the original:

>>> req = VersionRequirement.parse("1.2")
>>> str(req.upgraded_to(Version.parse("1.5.3")))
'1.5'
"""

from __future__ import annotations

import dataclasses as dc
import enum
import functools
import re
import typing as typ

from manifest_edit_errors import InvalidVersion

if typ.TYPE_CHECKING:
    import collections.abc as cabc

__all__ = [
    "BUMP_LEVELS",
    "Comparator",
    "Op",
    "Version",
    "VersionRequirement",
    "bump_version",
    "highest",
]

_VERSION_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_WILDCARDS: typ.Final[frozenset[str]] = frozenset({"*", "x", "X"})
_PRE_LABELS: typ.Final[tuple[str, ...]] = ("alpha", "beta", "rc")
BUMP_LEVELS: typ.Final[tuple[str, ...]] = (
    "major",
    "minor",
    "patch",
    "release",
    *_PRE_LABELS,
)


def _pre_key(pre: tuple[str, ...]) -> tuple[object, ...]:
    """Return a sort key where an empty pre-release outranks any other."""
    if not pre:
        return (1,)
    return (
        0,
        tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre),
    )


@functools.total_ordering
@dc.dataclass(frozen=True)
class Version:
    """A concrete ``MAJOR.MINOR.PATCH[-pre][+build]`` version."""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: str = ""

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse ``text`` or raise :class:`InvalidVersion`."""
        match = _VERSION_RE.match(text.strip())
        if match is None:
            message = f"invalid version {text!r}"
            raise InvalidVersion(message)
        pre = match.group("pre")
        return cls(
            int(match.group("major")),
            int(match.group("minor")),
            int(match.group("patch")),
            tuple(pre.split(".")) if pre else (),
            match.group("build") or "",
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def precedence(self) -> tuple[object, ...]:
        """Return the semver precedence key, ignoring build metadata."""
        return (self.major, self.minor, self.patch, _pre_key(self.pre))

    def without_build(self) -> Version:
        return dc.replace(self, build="")

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return (self.precedence(), self.build) < (other.precedence(), other.build)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text = f"{text}-{'.'.join(self.pre)}"
        if self.build:
            text = f"{text}+{self.build}"
        return text


class Op(enum.Enum):
    """Comparison operators understood in version requirements."""

    EXACT = "="
    GREATER = ">"
    GREATER_EQ = ">="
    LESS = "<"
    LESS_EQ = "<="
    TILDE = "~"
    CARET = "^"
    WILDCARD = "*"


_OPERATOR_PREFIXES: typ.Final[tuple[str, ...]] = (">=", "<=", ">", "<", "=", "~", "^")
_PINNED_OPS: typ.Final[frozenset[Op]] = frozenset(
    {Op.EXACT, Op.LESS, Op.LESS_EQ, Op.WILDCARD}
)
_MOVABLE_OPS: typ.Final[frozenset[Op]] = frozenset(
    {Op.EXACT, Op.TILDE, Op.CARET, Op.WILDCARD}
)


@dc.dataclass(frozen=True)
class Comparator:
    """A single ``op version`` clause of a requirement.

    ``minor`` and ``patch`` are ``None`` when the author omitted them and
    ``explicit`` is ``False`` when the operator was implied (bare versions
    imply ``^``, bare wildcards imply ``*``).
    """

    op: Op
    major: int
    minor: int | None = None
    patch: int | None = None
    pre: tuple[str, ...] = ()
    explicit: bool = True

    @property
    def precision(self) -> int:
        """Return how many version components were written."""
        return 1 + (self.minor is not None) + (self.patch is not None)

    def matches(self, version: Version) -> bool:
        """Return ``True`` when ``version`` satisfies this clause."""
        if self.op in {Op.EXACT, Op.WILDCARD}:
            return self._matches_exact(version)
        if self.op is Op.GREATER:
            return self._matches_greater(version)
        if self.op is Op.GREATER_EQ:
            return self._matches_exact(version) or self._matches_greater(version)
        if self.op is Op.LESS:
            return self._matches_less(version)
        if self.op is Op.LESS_EQ:
            return self._matches_exact(version) or self._matches_less(version)
        if self.op is Op.TILDE:
            return self._matches_tilde(version)
        return self._matches_caret(version)

    def _matches_exact(self, version: Version) -> bool:
        if version.major != self.major:
            return False
        if self.minor is not None and version.minor != self.minor:
            return False
        if self.patch is not None and version.patch != self.patch:
            return False
        return version.pre == self.pre

    def _matches_greater(self, version: Version) -> bool:
        if version.major != self.major:
            return version.major > self.major
        if self.minor is None:
            return False
        if version.minor != self.minor:
            return version.minor > self.minor
        if self.patch is None:
            return False
        if version.patch != self.patch:
            return version.patch > self.patch
        return _pre_key(version.pre) > _pre_key(self.pre)

    def _matches_less(self, version: Version) -> bool:
        if version.major != self.major:
            return version.major < self.major
        if self.minor is None:
            return False
        if version.minor != self.minor:
            return version.minor < self.minor
        if self.patch is None:
            return False
        if version.patch != self.patch:
            return version.patch < self.patch
        return _pre_key(version.pre) < _pre_key(self.pre)

    def _matches_tilde(self, version: Version) -> bool:
        if version.major != self.major:
            return False
        if self.minor is not None and version.minor != self.minor:
            return False
        if self.patch is not None and version.patch != self.patch:
            return version.patch > self.patch
        return _pre_key(version.pre) >= _pre_key(self.pre)

    def _matches_caret(self, version: Version) -> bool:
        if version.major != self.major:
            return False
        if self.minor is None:
            return True
        if self.patch is None:
            if self.major > 0:
                return version.minor >= self.minor
            return version.minor == self.minor
        if self.major > 0:
            if version.minor != self.minor:
                return version.minor > self.minor
            if version.patch != self.patch:
                return version.patch > self.patch
        elif self.minor > 0:
            if version.minor != self.minor:
                return False
            if version.patch != self.patch:
                return version.patch > self.patch
        elif version.minor != self.minor or version.patch != self.patch:
            return False
        return _pre_key(version.pre) >= _pre_key(self.pre)

    def admits_prerelease_of(self, version: Version) -> bool:
        """Return ``True`` when this clause opts into ``version``'s pre-releases."""
        return (
            bool(self.pre)
            and self.major == version.major
            and self.minor == version.minor
            and self.patch == version.patch
        )

    def lower_bound(self) -> Version | None:
        """Return the smallest version this clause can accept, if bounded."""
        if self.op in {Op.LESS, Op.LESS_EQ}:
            return None
        minor = self.minor or 0
        patch = self.patch or 0
        if self.op is Op.GREATER:
            if self.minor is None:
                return Version(self.major + 1, 0, 0)
            if self.patch is None:
                return Version(self.major, self.minor + 1, 0)
            if not self.pre:
                return Version(self.major, minor, self.patch + 1)
        return Version(self.major, minor, patch, self.pre)

    def moved_to(self, version: Version) -> Comparator:
        """Return this clause re-targeted at ``version`` with equal precision."""
        if self.op not in _MOVABLE_OPS:
            message = f"unsupported version requirement operator {self.op.value!r}"
            raise InvalidVersion(message)
        minor = version.minor if self.minor is not None else None
        patch = version.patch if self.patch is not None else None
        if self.op is Op.WILDCARD:
            return dc.replace(self, major=version.major, minor=minor)
        pre: tuple[str, ...] = ()
        if version.pre:
            # A pre-release can only be expressed against a full version.
            minor, patch, pre = version.minor, version.patch, version.pre
        return dc.replace(
            self, major=version.major, minor=minor, patch=patch, pre=pre
        )

    def __str__(self) -> str:
        parts = [str(self.major)]
        if self.minor is not None:
            parts.append(str(self.minor))
        if self.op is Op.WILDCARD:
            return ".".join([*parts, "*"])
        if self.patch is not None:
            parts.append(str(self.patch))
        text = ".".join(parts)
        if self.pre:
            text = f"{text}-{'.'.join(self.pre)}"
        if self.explicit:
            return f"{self.op.value}{text}"
        return text


def _split_operator(text: str) -> tuple[Op | None, str]:
    for symbol in _OPERATOR_PREFIXES:
        if text.startswith(symbol):
            return Op(symbol), text[len(symbol) :].strip()
    return None, text


def _parse_components(core: str, requirement: str) -> list[int | None]:
    components: list[int | None] = []
    wildcard_seen = False
    parts = core.split(".")
    if not 1 <= len(parts) <= 3:
        message = f"invalid version requirement {requirement!r}"
        raise InvalidVersion(message)
    for part in parts:
        if part in _WILDCARDS:
            wildcard_seen = True
            components.append(None)
            continue
        if wildcard_seen or not part.isdigit():
            message = f"invalid version requirement {requirement!r}"
            raise InvalidVersion(message)
        components.append(int(part))
    return components


def _parse_comparator(text: str, requirement: str) -> Comparator:
    op, remainder = _split_operator(text.strip())
    core = remainder.partition("+")[0]
    core, dash, pre_text = core.partition("-")
    components = _parse_components(core, requirement)
    major = components[0]
    if major is None:
        message = f"invalid version requirement {requirement!r}"
        raise InvalidVersion(message)
    minor = components[1] if len(components) > 1 else None
    patch = components[2] if len(components) > 2 else None  # noqa: PLR2004
    pre = tuple(pre_text.split(".")) if dash else ()
    if pre and patch is None:
        message = f"pre-release requires a full version in {requirement!r}"
        raise InvalidVersion(message)
    if op is None:
        implied = Op.WILDCARD if None in components else Op.CARET
        return Comparator(implied, major, minor, patch, pre, explicit=False)
    return Comparator(op, major, minor, patch, pre, explicit=True)


@dc.dataclass(frozen=True)
class VersionRequirement:
    """A parsed requirement string such as ``"^1.2"`` or ``">=1, <2"``."""

    text: str
    comparators: tuple[Comparator, ...]

    @classmethod
    def parse(cls, text: str) -> VersionRequirement:
        """Parse ``text`` or raise :class:`InvalidVersion`."""
        stripped = text.strip()
        if not stripped:
            message = "empty version requirement"
            raise InvalidVersion(message)
        if stripped in _WILDCARDS:
            return cls(text, ())
        comparators = tuple(
            _parse_comparator(part, text) for part in stripped.split(",")
        )
        return cls(text, comparators)

    @classmethod
    def for_version(cls, version: Version) -> VersionRequirement:
        """Return the default full-precision caret requirement for ``version``."""
        return cls.parse(str(version.without_build()))

    @property
    def is_prerelease(self) -> bool:
        return any(comparator.pre for comparator in self.comparators)

    def is_pinned(self) -> bool:
        """Return ``True`` for exact, upper-bounded, or partial wildcard pins."""
        return any(comparator.op in _PINNED_OPS for comparator in self.comparators)

    def matches(self, version: Version) -> bool:
        """Return ``True`` when ``version`` satisfies every comparator."""
        if not all(comparator.matches(version) for comparator in self.comparators):
            return False
        if not version.pre:
            return True
        return any(
            comparator.admits_prerelease_of(version) for comparator in self.comparators
        )

    def lower_bound(self) -> Version:
        """Return the smallest version admitted by the requirement."""
        bounds = [
            bound
            for comparator in self.comparators
            if (bound := comparator.lower_bound()) is not None
        ]
        return max(bounds, default=Version(0, 0, 0))

    def upgraded_to(self, version: Version) -> VersionRequirement | None:
        """Return the requirement moved to ``version``, or ``None`` if unchanged.

        Raises
        ------
        InvalidVersion
            Raised when a comparator uses an operator that cannot be moved
            (``>``, ``>=``, ``<``, ``<=``).
        """
        if not self.comparators:
            return None
        moved = tuple(comparator.moved_to(version) for comparator in self.comparators)
        rendered = ", ".join(str(comparator) for comparator in moved)
        if rendered == self.text.strip():
            return None
        return VersionRequirement(rendered, moved)

    def __str__(self) -> str:
        return self.text


def highest(versions: cabc.Iterable[Version]) -> Version | None:
    """Return the highest version of ``versions`` by semver precedence."""
    return max(versions, key=Version.precedence, default=None)


def bump_version(version: Version, level: str) -> Version:
    """Return ``version`` bumped by ``level`` (see :data:`BUMP_LEVELS`).

    >>> str(bump_version(Version.parse("1.2.3"), "minor"))
    '1.3.0'
    >>> str(bump_version(Version.parse("1.3.0-rc.1"), "rc"))
    '1.3.0-rc.2'
    """
    major, minor, patch, pre = version.major, version.minor, version.patch, version.pre
    if level == "major":
        if pre and minor == 0 and patch == 0:
            return Version(major, 0, 0)
        return Version(major + 1, 0, 0)
    if level == "minor":
        if pre and patch == 0:
            return Version(major, minor, 0)
        return Version(major, minor + 1, 0)
    if level == "patch":
        if pre:
            return Version(major, minor, patch)
        return Version(major, minor, patch + 1)
    if level == "release":
        return Version(major, minor, patch)
    if level in _PRE_LABELS:
        return _bump_prerelease(version, level)
    message = f"unknown bump level {level!r}; expected one of {', '.join(BUMP_LEVELS)}"
    raise InvalidVersion(message)


def _bump_prerelease(version: Version, label: str) -> Version:
    major, minor, patch, pre = version.major, version.minor, version.patch, version.pre
    if not pre:
        return Version(major, minor, patch + 1, (label, "1"))
    current = pre[0]
    if current == label:
        if len(pre) == 2 and pre[1].isdigit():  # noqa: PLR2004
            return Version(major, minor, patch, (label, str(int(pre[1]) + 1)))
        return Version(major, minor, patch, (label, "1"))
    if current in _PRE_LABELS and _PRE_LABELS.index(current) > _PRE_LABELS.index(
        label
    ):
        message = f"cannot bump {version} back to a {label} pre-release"
        raise InvalidVersion(message)
    return Version(major, minor, patch, (label, "1"))
