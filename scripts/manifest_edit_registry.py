"""Read-only access to package registry metadata.

Registries are consulted through the :class:`RegistryView` protocol. The
shipped :class:`SparseIndexRegistry` reads files in the crates.io index
format (one JSON object per published version) from a local cache directory
and, when not offline, falls back to an injected transport for files the
cache does not hold.
"""

from __future__ import annotations

import collections.abc as cabc
import concurrent.futures
import dataclasses as dc
import json
import logging
import threading
import typing as typ
from pathlib import Path

from manifest_edit_errors import InvalidVersion, Offline, RegistryError
from manifest_edit_version import Version

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_JOBS",
    "Release",
    "RegistryView",
    "SparseIndexRegistry",
    "Transport",
    "index_path",
    "lookup_releases",
    "parse_index",
]

DEFAULT_JOBS: typ.Final[int] = 8

Transport = cabc.Callable[[str], str]


@dc.dataclass(frozen=True)
class Release:
    """A single published version of a package."""

    version: Version
    yanked: bool = False
    checksum: str | None = None
    features: frozenset[str] = frozenset()


class RegistryView(typ.Protocol):
    """Source of published versions for package names."""

    def fetch_releases(self, name: str) -> list[Release]:
        """Return every release of ``name``, including yanked ones."""
        ...

    def fetch_versions(self, name: str) -> list[Version]:
        """Return the versions of ``name`` that have not been yanked."""
        ...


def index_path(name: str) -> str:
    """Return the index-relative path of the file describing ``name``.

    Examples
    --------
    >>> index_path("a")
    '1/a'
    >>> index_path("serde")
    'se/rd/serde'
    """
    lowered = name.lower()
    if len(lowered) <= 2:  # noqa: PLR2004
        return f"{len(lowered)}/{lowered}"
    if len(lowered) == 3:  # noqa: PLR2004
        return f"3/{lowered[0]}/{lowered}"
    return f"{lowered[:2]}/{lowered[2:4]}/{lowered}"


def parse_index(text: str, name: str) -> list[Release]:
    """Parse an index file into releases, skipping unparseable versions.

    Raises
    ------
    RegistryError
        Raised when a line is not a JSON object or its features are not
        tables.
    """
    releases: list[Release] = []
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as err:
            message = f"invalid index entry for {name} on line {number}: {err}"
            raise RegistryError(message) from err
        if not isinstance(record, dict) or "vers" not in record:
            message = f"invalid index entry for {name} on line {number}"
            raise RegistryError(message)
        try:
            version = Version.parse(str(record["vers"]))
        except InvalidVersion:
            LOGGER.warning("skipping %s %s: invalid version", name, record["vers"])
            continue
        releases.append(
            Release(
                version=version,
                yanked=bool(record.get("yanked", False)),
                checksum=record.get("cksum"),
                features=_feature_names(record, name, number),
            )
        )
    return releases


def _feature_names(
    record: dict[str, typ.Any], name: str, number: int
) -> frozenset[str]:
    names: set[str] = set()
    for key in ("features", "features2"):
        value = record.get(key)
        if value is None:
            continue
        if not isinstance(value, dict):
            message = f"invalid {key} in index entry for {name} on line {number}"
            raise RegistryError(message)
        names.update(value)
    return frozenset(names)


class SparseIndexRegistry:
    """Registry view over an index cache directory.

    Parameters
    ----------
    cache_dir : Path | None
        Directory laid out like the crates.io index (``1/``, ``2/``,
        ``3/a/``, ``ab/cd/``). ``None`` means no cache.
    offline : bool, optional
        Answer from the cache only, raising :class:`Offline` for misses.
    transport : Callable[[str], str] | None, optional
        Callable returning the text of an index-relative path on a cache
        miss. Its failures are reported as :class:`RegistryError`.
    name : str, optional
        Registry name used in diagnostics.
    """

    def __init__(
        self,
        cache_dir: Path | None,
        *,
        offline: bool = False,
        transport: Transport | None = None,
        name: str = "crates-io",
    ) -> None:
        self.cache_dir = Path(cache_dir) if cache_dir is not None else None
        self.offline = offline
        self.name = name
        self._transport = transport
        self._memo: dict[str, list[Release]] = {}
        self._lock = threading.Lock()

    def fetch_releases(self, name: str) -> list[Release]:
        with self._lock:
            if name in self._memo:
                return list(self._memo[name])
        releases = parse_index(self._read(name), name)
        with self._lock:
            self._memo[name] = releases
        LOGGER.debug("%s: %d releases of %s", self.name, len(releases), name)
        return list(releases)

    def fetch_versions(self, name: str) -> list[Version]:
        releases = self.fetch_releases(name)
        return [release.version for release in releases if not release.yanked]

    def _read(self, name: str) -> str:
        relative = index_path(name)
        if self.cache_dir is not None:
            cached = self.cache_dir / relative
            if cached.is_file():
                try:
                    return cached.read_text(encoding="utf-8")
                except (OSError, ValueError) as err:
                    message = f"failed to read the cached index entry for {name}: {err}"
                    raise RegistryError(message) from err
        if self.offline:
            message = f"{name} is not available in the offline {self.name} cache"
            raise Offline(message)
        if self._transport is None:
            message = f"no index entry for {name} in the {self.name} registry"
            raise RegistryError(message)
        try:
            return self._transport(relative)
        except RegistryError:
            raise
        except (OSError, ValueError) as err:
            message = f"failed to fetch {name} from the {self.name} registry: {err}"
            raise RegistryError(message) from err


def lookup_releases(
    registry: RegistryView, names: cabc.Iterable[str], jobs: int = DEFAULT_JOBS
) -> dict[str, list[Release] | RegistryError]:
    """Fetch releases for every distinct name using up to ``jobs`` threads.

    Failures are returned in place of the release list so callers can report
    them per dependency. The result follows the order of ``names``.
    """
    unique = list(dict.fromkeys(names))
    if not unique:
        return {}
    results: dict[str, list[Release] | RegistryError] = {}
    workers = max(1, min(jobs, len(unique)))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(registry.fetch_releases, name): name for name in unique}
        for future in concurrent.futures.as_completed(futures):
            name = futures[future]
            try:
                results[name] = future.result()
            except RegistryError as err:
                LOGGER.warning("registry lookup for %s failed: %s", name, err)
                results[name] = err
    return {name: results[name] for name in unique}
