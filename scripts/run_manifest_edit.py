#!/usr/bin/env -S uv run python
"""Command line entry point for editing Cargo manifests in place.

The ``add``, ``rm``, ``upgrade`` and ``set-version`` commands build request
records, hand them to the orchestrators exposed by :mod:`manifest_edit`, and
print the resulting outcome table. Every edit keeps the formatting, comments
and key order of the files it touches.

Registry metadata is read from a directory laid out like the crates.io index,
configured through ``MANIFEST_EDIT_REGISTRY_CACHE``. Other options may be set
in the environment with the ``MANIFEST_EDIT_`` prefix.

Examples
--------
Upgrade every dependency of the current package without writing anything::

    python scripts/run_manifest_edit.py upgrade --dry-run

Bump the minor version of every workspace member::

    python scripts/run_manifest_edit.py set-version --bump minor --workspace
"""

# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "cyclopts>=2.9,<4",
#     "plumbum",
#     "tomlkit>=0.12",
# ]
# ///
from __future__ import annotations

import contextlib
import logging
import sys
import typing as typ
from pathlib import Path

import cyclopts
from cyclopts import App, Parameter
from manifest_edit import (
    DEFAULT_JOBS,
    DEFAULT_TIMEOUT_SECS,
    AddRequest,
    DepKind,
    GitResolver,
    ManifestEditError,
    RemoveRequest,
    SetVersionRequest,
    UpgradePolicy,
    UpgradeRequest,
    add,
    default_registries,
    format_outcomes,
    remove,
    set_version,
    upgrade,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

LOGGER = logging.getLogger(__name__)

app = App(
    help="Edit Cargo manifests and lock files in place.",
    config=cyclopts.config.Env("MANIFEST_EDIT_", command=False),
)

OfflineFlag = typ.Annotated[bool, Parameter(env_var="MANIFEST_EDIT_OFFLINE")]
RegistryCache = typ.Annotated[
    Path | None, Parameter(env_var="MANIFEST_EDIT_REGISTRY_CACHE")
]
Jobs = typ.Annotated[int, Parameter(env_var="MANIFEST_EDIT_JOBS")]
TimeoutSecs = typ.Annotated[int, Parameter(env_var="MANIFEST_EDIT_TIMEOUT_SECS")]


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


def _check_timeout(timeout_secs: int) -> None:
    if timeout_secs <= 0:
        message = "timeout-secs must be a positive integer"
        raise SystemExit(message)


@contextlib.contextmanager
def _exit_on_error() -> cabc.Iterator[None]:
    """Turn manifest editing failures into a ``SystemExit`` carrying the message."""
    try:
        yield
    except ManifestEditError as err:
        LOGGER.debug("manifest edit failed", exc_info=True)
        raise SystemExit(str(err)) from err


def _dep_kind(*, dev: bool, build: bool) -> DepKind:
    if dev and build:
        message = "--dev and --build cannot be combined"
        raise SystemExit(message)
    if dev:
        return DepKind.DEV
    if build:
        return DepKind.BUILD
    return DepKind.NORMAL


@app.command(name="add")
def add_command(  # noqa: PLR0913 - mirrors the cargo add options
    *crates: str,
    manifest_path: Path | None = None,
    package: str | None = None,
    rename: str | None = None,
    features: list[str] | None = None,
    default_features: bool | None = None,
    optional: bool | None = None,
    dev: bool = False,
    build: bool = False,
    target: str | None = None,
    path: Path | None = None,
    git: str | None = None,
    branch: str | None = None,
    tag: str | None = None,
    rev: str | None = None,
    registry: str | None = None,
    allow_prerelease: bool = False,
    dry_run: bool = False,
    locked: bool = False,
    offline: OfflineFlag = False,
    registry_cache: RegistryCache = None,
    timeout_secs: TimeoutSecs = DEFAULT_TIMEOUT_SECS,
    verbose: bool = False,
) -> None:
    """Add dependencies to a package manifest.

    Parameters
    ----------
    crates : str
        Crate specs of the form ``name[@requirement]``.
    manifest_path : Path | None, optional
        Manifest to start from; defaults to the nearest ``Cargo.toml``.
    package : str | None, optional
        Workspace member to add to.
    features : list[str] | None, optional
        Features to enable; ``crate/feature`` targets one of several crates.
    default_features, optional : bool | None, optional
        Set or clear the flag; an existing entry keeps its value otherwise.
    path, git : optional
        Add a local or git dependency instead of a registry one.
    offline : bool, optional
        Answer registry queries from the cache only. Also read from
        ``MANIFEST_EDIT_OFFLINE``.
    registry_cache : Path | None, optional
        Registry index cache directory, or ``MANIFEST_EDIT_REGISTRY_CACHE``.
    timeout_secs : int, optional
        Timeout for ``cargo`` and ``git`` invocations, or
        ``MANIFEST_EDIT_TIMEOUT_SECS``.
    """
    _configure_logging(verbose=verbose)
    _check_timeout(timeout_secs)
    request = AddRequest(
        crates=crates,
        manifest_path=manifest_path,
        package=package,
        rename=rename,
        features=tuple(features or ()),
        default_features=default_features,
        optional=optional,
        kind=_dep_kind(dev=dev, build=build),
        target=target,
        path=path,
        git=git,
        branch=branch,
        tag=tag,
        rev=rev,
        registry=registry,
        allow_prerelease=allow_prerelease,
        dry_run=dry_run,
        locked=locked,
        offline=offline,
        timeout_secs=timeout_secs,
    )
    registries = default_registries(registry_cache, offline=offline)
    with _exit_on_error():
        report = add(
            request, registries, resolver=GitResolver(timeout_secs=timeout_secs)
        )
    print(format_outcomes(report.outcomes))


@app.command(name="rm")
def remove_command(  # noqa: PLR0913 - mirrors the cargo remove options
    *dependencies: str,
    manifest_path: Path | None = None,
    package: list[str] | None = None,
    dev: bool = False,
    build: bool = False,
    target: str | None = None,
    refresh_lock: bool = False,
    dry_run: bool = False,
    locked: bool = False,
    offline: OfflineFlag = False,
    timeout_secs: TimeoutSecs = DEFAULT_TIMEOUT_SECS,
    verbose: bool = False,
) -> None:
    """Remove dependencies and the feature references that activate them."""
    _configure_logging(verbose=verbose)
    _check_timeout(timeout_secs)
    if not dependencies:
        message = "no dependencies to remove"
        raise SystemExit(message)
    request = RemoveRequest(
        dependencies=dependencies,
        manifest_path=manifest_path,
        packages=tuple(package or ()),
        kind=_dep_kind(dev=dev, build=build),
        target=target,
        dry_run=dry_run,
        refresh_lock=refresh_lock,
        locked=locked,
        offline=offline,
        timeout_secs=timeout_secs,
    )
    with _exit_on_error():
        report = remove(request)
    for edit in report.edits:
        print(edit)


@app.command(name="upgrade")
def upgrade_command(  # noqa: PLR0913 - mirrors the cargo upgrade options
    *dependencies: str,
    manifest_path: Path | None = None,
    package: list[str] | None = None,
    workspace: bool = False,
    exclude: list[str] | None = None,
    pinned: bool = False,
    compatible: bool = False,
    to_lockfile: bool = False,
    allow_prerelease: bool = False,
    dry_run: bool = False,
    locked: bool = False,
    offline: OfflineFlag = False,
    registry_cache: RegistryCache = None,
    jobs: Jobs = DEFAULT_JOBS,
    verbose: bool = False,
) -> None:
    """Upgrade dependency requirements to the latest releases.

    Parameters
    ----------
    dependencies : str
        Selectors of the form ``[package@]key[@requirement]``; every
        dependency is considered when none are given.
    pinned : bool, optional
        Also upgrade pinned and renamed dependencies.
    compatible : bool, optional
        Also rewrite requirements that already accept the latest release.
    to_lockfile : bool, optional
        Upgrade to the versions recorded in ``Cargo.lock``.
    jobs : int, optional
        Concurrent registry lookups, or ``MANIFEST_EDIT_JOBS``.
    """
    _configure_logging(verbose=verbose)
    if jobs <= 0:
        message = "jobs must be a positive integer"
        raise SystemExit(message)
    policy = UpgradePolicy(
        pinned_skip=not pinned,
        to_lockfile=to_lockfile,
        allow_prerelease=allow_prerelease,
        upgrade_compatible=compatible,
        locked=locked,
        offline=offline,
    )
    request = UpgradeRequest(
        manifest_path=manifest_path,
        dependencies=dependencies,
        exclude=tuple(exclude or ()),
        packages=tuple(package or ()),
        workspace=workspace,
        policy=policy,
        dry_run=dry_run,
        jobs=jobs,
    )
    registries = default_registries(registry_cache, offline=offline)
    with _exit_on_error():
        report = upgrade(request, registries)
    print(format_outcomes(report.outcomes))
    for note in report.notes:
        print(f"note: {note}")
    for diagnostic in report.diagnostics:
        print(f"error: {diagnostic}", file=sys.stderr)
    if not report.ok:
        message = f"upgrade finished with {len(report.diagnostics)} error(s)"
        raise SystemExit(message)


@app.command(name="set-version")
def set_version_command(  # noqa: PLR0913 - mirrors the cargo set-version options
    version: str | None = None,
    *,
    bump: str | None = None,
    metadata: str | None = None,
    manifest_path: Path | None = None,
    package: list[str] | None = None,
    workspace: bool = False,
    exclude: list[str] | None = None,
    dry_run: bool = False,
    locked: bool = False,
    verbose: bool = False,
) -> None:
    """Set or bump package versions and update dependents to match."""
    _configure_logging(verbose=verbose)
    request = SetVersionRequest(
        version=version,
        bump=bump,
        metadata=metadata,
        manifest_path=manifest_path,
        packages=tuple(package or ()),
        workspace=workspace,
        exclude=tuple(exclude or ()),
        dry_run=dry_run,
        locked=locked,
    )
    with _exit_on_error():
        report = set_version(request)
    print(format_outcomes(report.outcomes))


if __name__ == "__main__":
    app()
