"""Resolve version-control references for git dependencies."""

from __future__ import annotations

import logging
import re
import typing as typ

from manifest_edit_errors import VcsError
from plumbum import local
from plumbum.commands import CommandNotFound
from plumbum.commands.processes import ProcessTimedOut

LOGGER = logging.getLogger(__name__)

__all__ = ["GitResolver", "SourceResolver"]

_FULL_SHA = re.compile(r"^[0-9a-f]{40}$")
_SHORT_SHA = re.compile(r"^[0-9a-f]{4,39}$")


class SourceResolver(typ.Protocol):
    """Turns a user supplied revision into a stable commit identifier."""

    def resolve_rev(self, url: str, rev: str) -> str:
        """Return the full commit id that ``rev`` names in ``url``."""
        ...


class GitResolver:
    """Resolve revisions with ``git ls-remote``."""

    def __init__(self, *, timeout_secs: int = 60) -> None:
        self.timeout_secs = timeout_secs

    def resolve_rev(self, url: str, rev: str) -> str:
        """Return the commit for ``rev``, which may be a ref or a short sha.

        Raises
        ------
        VcsError
            Raised when git is unavailable, fails, or nothing matches.
        """
        if _FULL_SHA.match(rev):
            return rev
        for sha, ref in self._list_refs(url):
            if ref in {rev, f"refs/heads/{rev}", f"refs/tags/{rev}"}:
                return sha
            if _SHORT_SHA.match(rev) and sha.startswith(rev):
                return sha
        message = f"revision {rev!r} not found in {url}"
        raise VcsError(message)

    def _list_refs(self, url: str) -> list[tuple[str, str]]:
        try:
            return_code, stdout, stderr = local["git"]["ls-remote", url].run(
                retcode=None, timeout=self.timeout_secs
            )
        except CommandNotFound as error:
            message = "git was not found on PATH"
            raise VcsError(message) from error
        except ProcessTimedOut as error:
            LOGGER.exception("git ls-remote timed out for %s", url)
            message = f"git ls-remote timed out after {self.timeout_secs} seconds"
            raise VcsError(message) from error
        if return_code != 0:
            LOGGER.error("git ls-remote failed for %s: %s", url, stderr.strip())
            message = f"git ls-remote {url} failed (exit code {return_code})"
            raise VcsError(message)
        refs: list[tuple[str, str]] = []
        for line in stdout.splitlines():
            sha, _, ref = line.partition("\t")
            if sha and ref:
                refs.append((sha.strip(), ref.strip()))
        return refs
