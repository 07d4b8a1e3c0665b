"""Unit tests for version and requirement arithmetic."""

from __future__ import annotations

import pytest
from manifest_edit_errors import InvalidVersion
from manifest_edit_version import (
    Version,
    VersionRequirement,
    bump_version,
    highest,
)


def test_version_round_trips_text() -> None:
    """Parsing and rendering keeps pre-release and build metadata."""
    text = "1.2.3-rc.1+build.5"

    version = Version.parse(text)

    assert str(version) == text
    assert version.pre == ("rc", "1")
    assert version.build == "build.5"
    assert version.is_prerelease


def test_version_rejects_partial_versions() -> None:
    """A concrete version needs all three components."""
    with pytest.raises(InvalidVersion, match="invalid version"):
        Version.parse("1.2")


def test_prerelease_precedence() -> None:
    """Pre-releases sort by identifier and below the release."""
    ordered = [
        Version.parse(text)
        for text in ("1.0.0-alpha", "1.0.0-alpha.1", "1.0.0-beta", "1.0.0")
    ]

    assert sorted(reversed(ordered)) == ordered


@pytest.mark.parametrize(
    ("requirement", "version", "expected"),
    [
        ("1.2", "1.5.3", True),
        ("1.2", "2.0.0", False),
        ("1.2", "1.1.9", False),
        ("0.2", "0.2.9", True),
        ("0.2", "0.3.0", False),
        ("~1.2.3", "1.2.9", True),
        ("~1.2.3", "1.3.0", False),
        ("=1.2.3", "1.2.3", True),
        ("=1.2.3", "1.2.4", False),
        (">=1.0, <2", "1.9.0", True),
        (">=1.0, <2", "2.0.0", False),
        ("1.*", "1.4.0", True),
        ("1.*", "2.0.0", False),
        ("*", "3.0.0", True),
        ("1.0.0", "1.0.1-alpha", False),
        ("1.0.0-alpha", "1.0.0-beta", True),
    ],
)
def test_requirement_matches(requirement: str, version: str, *, expected: bool) -> None:
    """Requirements follow Cargo's caret, tilde and wildcard semantics."""
    parsed = VersionRequirement.parse(requirement)

    assert parsed.matches(Version.parse(version)) is expected


@pytest.mark.parametrize(
    ("requirement", "target", "expected"),
    [
        ("1.2", "1.5.3", "1.5"),
        ("1", "2.0.1", "2"),
        ("^1.2.3", "2.0.0", "^2.0.0"),
        ("~0.3", "0.4.2", "~0.4"),
        ("=1.2.3", "1.3.0", "=1.3.0"),
        ("1.*", "2.3.0", "2.*"),
        ("1.2", "2.0.0-rc.1", "2.0.0-rc.1"),
    ],
)
def test_upgrade_keeps_precision(requirement: str, target: str, expected: str) -> None:
    """Upgraded requirements keep their operator and written precision."""
    moved = VersionRequirement.parse(requirement).upgraded_to(Version.parse(target))

    assert moved is not None
    assert str(moved) == expected


def test_upgrade_to_covered_version_is_a_no_op() -> None:
    """Nothing changes when the rendered requirement would be identical."""
    requirement = VersionRequirement.parse("1.5")

    assert requirement.upgraded_to(Version.parse("1.5.3")) is None


def test_upgrade_rejects_range_operators() -> None:
    """Range comparators cannot be moved without changing their meaning."""
    requirement = VersionRequirement.parse(">=1.0")

    with pytest.raises(InvalidVersion, match="unsupported"):
        requirement.upgraded_to(Version.parse("2.0.0"))


@pytest.mark.parametrize(
    ("requirement", "pinned"),
    [("=1.0", True), ("<2", True), ("1.*", True), ("1.2", False), ("~1.2", False)],
)
def test_pinned_requirements(requirement: str, *, pinned: bool) -> None:
    """Exact, upper-bounded and partial wildcard requirements count as pinned."""
    assert VersionRequirement.parse(requirement).is_pinned() is pinned


def test_lower_bound_of_exclusive_requirement() -> None:
    """An exclusive bound starts after the written version."""
    assert VersionRequirement.parse(">1.2").lower_bound() == Version(1, 3, 0)
    assert VersionRequirement.parse(">=1.0, <2").lower_bound() == Version(1, 0, 0)


def test_default_requirement_drops_build_metadata() -> None:
    """Requirements for a version never carry build metadata."""
    requirement = VersionRequirement.for_version(Version.parse("1.2.3+meta"))

    assert str(requirement) == "1.2.3"


@pytest.mark.parametrize("text", ["", "1.2.3.4", "one", "1.*.3", "1.2-rc.1"])
def test_invalid_requirements(text: str) -> None:
    """Malformed requirements are rejected."""
    with pytest.raises(InvalidVersion):
        VersionRequirement.parse(text)


@pytest.mark.parametrize(
    ("current", "level", "expected"),
    [
        ("1.2.3", "major", "2.0.0"),
        ("1.2.3", "minor", "1.3.0"),
        ("1.2.3", "patch", "1.2.4"),
        ("1.2.3-rc.1", "release", "1.2.3"),
        ("1.2.3", "rc", "1.2.4-rc.1"),
        ("1.3.0-rc.1", "rc", "1.3.0-rc.2"),
        ("1.3.0-alpha.2", "beta", "1.3.0-beta.1"),
        ("2.0.0-rc.1", "major", "2.0.0"),
        ("1.2.0-beta.1", "minor", "1.2.0"),
    ],
)
def test_bump_version(current: str, level: str, expected: str) -> None:
    """Bumps follow cargo-edit's release and pre-release rules."""
    assert str(bump_version(Version.parse(current), level)) == expected


def test_bump_back_to_earlier_prerelease_fails() -> None:
    """A release candidate cannot become an alpha."""
    with pytest.raises(InvalidVersion, match="cannot bump"):
        bump_version(Version.parse("1.0.0-rc.1"), "alpha")


def test_bump_rejects_unknown_level() -> None:
    """Only the documented bump levels are accepted."""
    with pytest.raises(InvalidVersion, match="unknown bump level"):
        bump_version(Version.parse("1.0.0"), "huge")


def test_highest_uses_numeric_precedence() -> None:
    """Components compare numerically rather than as text."""
    versions = [Version.parse(text) for text in ("1.0.0", "1.10.0", "1.9.0")]

    assert highest(versions) == Version(1, 10, 0)
    assert highest([]) is None
