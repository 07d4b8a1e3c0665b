"""File writing helpers shared by the manifest and lock file models.

Rendering is left to the document objects themselves; this module only
guarantees that a file on disk is either the old content or the complete new
content, never a truncated mix of both.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

LOGGER = logging.getLogger(__name__)

__all__ = ["write_text_atomically"]


def write_text_atomically(path: Path, rendered: str) -> None:
    """Replace ``path`` with ``rendered`` via a sibling temporary file."""
    path = Path(path)
    handle, temp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    try:
        with os.fdopen(handle, "w", encoding="utf-8", newline="") as stream:
            stream.write(rendered)
        _copy_permissions(path, Path(temp_name))
        Path(temp_name).replace(path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            Path(temp_name).unlink()
        raise
    LOGGER.debug("wrote %s", path)


def _copy_permissions(original: Path, replacement: Path) -> None:
    """Carry the file mode of ``original`` over to ``replacement``."""
    try:
        mode = original.stat().st_mode
    except FileNotFoundError:
        return
    replacement.chmod(mode & 0o7777)
