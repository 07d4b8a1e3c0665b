"""Shared fixtures and helper fakes for manifest editing tests."""

from __future__ import annotations

import contextlib
import json
import sys
import textwrap
import typing as typ
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).resolve().parents[1]
if str(SCRIPTS_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPTS_DIR))

from manifest_edit_registry import SparseIndexRegistry, index_path  # noqa: E402

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from types import ModuleType

RunCallable = typ.Callable[[list[str], int | None], tuple[int, str, str]]
WorkspaceWriter = typ.Callable[[dict[str, str]], Path]


class FakeInvocation:
    """Record an invocation and proxy execution to the fake runner."""

    def __init__(self, local: FakeLocal, args: list[str]) -> None:
        self._local = local
        self._args = args

    def run(
        self, *, retcode: object | None, timeout: int | None
    ) -> tuple[int, str, str]:
        """Record an invocation and delegate to the configured callable."""
        self._local.invocations.append((self._args, timeout))
        return self._local.run_callable(self._args, timeout)


class FakeCommand:
    """Proxy indexing calls into ``FakeInvocation`` instances."""

    def __init__(self, local: FakeLocal, command: str) -> None:
        self._local = local
        self._command = command

    def __getitem__(self, args: object) -> FakeInvocation:
        extras = list(args) if isinstance(args, (list, tuple)) else [str(args)]
        return FakeInvocation(self._local, [self._command, *extras])


class FakeLocal:
    """Mimic plumbum's ``local`` for cargo and git invocations."""

    def __init__(self, run_callable: RunCallable) -> None:
        self.run_callable = run_callable
        self.cwd_calls: list[Path] = []
        self.env_calls: list[dict[str, str]] = []
        self.invocations: list[tuple[list[str], int | None]] = []

    def __getitem__(self, command: str) -> FakeCommand:
        if command not in {"cargo", "git"}:
            msg = f"FakeLocal only understands cargo and git, received {command!r}"
            raise RuntimeError(msg)
        return FakeCommand(self, command)

    def cwd(self, path: Path) -> contextlib.AbstractContextManager[None]:
        """Record the working directory change for later assertions."""
        self.cwd_calls.append(path)
        return contextlib.nullcontext()

    def env(self, **kwargs: str) -> contextlib.AbstractContextManager[None]:
        """Record environment mutations for later assertions."""
        self.env_calls.append(kwargs)
        return contextlib.nullcontext()


@pytest.fixture
def patch_local(
    monkeypatch: pytest.MonkeyPatch,
) -> typ.Callable[[ModuleType, RunCallable], FakeLocal]:
    """Install a ``FakeLocal`` as ``module.local`` around the callable."""

    def _install(module: ModuleType, run_callable: RunCallable) -> FakeLocal:
        fake_local = FakeLocal(run_callable)
        monkeypatch.setattr(module, "local", fake_local)
        return fake_local

    return _install


@pytest.fixture
def write_workspace(tmp_path: Path) -> WorkspaceWriter:
    """Write ``{relative_path: text}`` under a fresh directory and return it."""

    def _write(files: dict[str, str]) -> Path:
        root = tmp_path / "workspace"
        for relative, text in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(text).lstrip("\n"), encoding="utf-8")
        return root

    return _write


class IndexCache:
    """Build a directory in the crates.io index layout."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def publish(
        self,
        name: str,
        *versions: str,
        yanked: cabc.Iterable[str] = (),
        features: cabc.Iterable[str] = (),
    ) -> None:
        """Append one index line per version of ``name``."""
        yanked_set = set(yanked)
        feature_map = {feature: [] for feature in features}
        path = self.root / index_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            json.dumps(
                {
                    "name": name,
                    "vers": version,
                    "deps": [],
                    "cksum": f"{name}-{version}-sum",
                    "features": feature_map,
                    "yanked": version in yanked_set,
                }
            )
            for version in versions
        ]
        with path.open("a", encoding="utf-8") as stream:
            stream.writelines(f"{line}\n" for line in lines)

    def view(self, *, offline: bool = True) -> SparseIndexRegistry:
        return SparseIndexRegistry(self.root, offline=offline)


@pytest.fixture
def index_cache(tmp_path: Path) -> IndexCache:
    """Provide an empty registry index cache."""
    return IndexCache(tmp_path / "index")
