"""Format-preserving manifest documents.

:class:`ManifestDocument` wraps a tomlkit document and exposes key-path based
``get``/``set``/``remove`` operations. tomlkit keeps the comments, whitespace
and quoting of every node, so rendering an untouched document reproduces the
input byte for byte and targeted edits only rewrite the spans they touch.

The wrapper adds the policies tomlkit leaves to its callers:

* scalars keep their quote style when replaced;
* missing tables are created in the header form used by the surrounding
  document, inline when the neighbouring tables are inline, or as a dotted
  key when the neighbouring keys are dotted;
* keys land in sorted position when the receiving table is already sorted;
* tables emptied by a removal disappear only when this session created them.
"""

from __future__ import annotations

import collections.abc as cabc
import logging
import typing as typ
from pathlib import Path

import tomlkit
from manifest_edit_errors import MalformedDocument
from manifest_edit_serialise import write_text_atomically
from tomlkit.exceptions import ParseError
from tomlkit.items import InlineTable, Item, SingleKey, String, Table

if typ.TYPE_CHECKING:
    from tomlkit.toml_document import TOMLDocument

LOGGER = logging.getLogger(__name__)

KeyPath = tuple[str, ...]

__all__ = ["KeyPath", "ManifestDocument", "render_inline_table"]

_EXCERPT_RADIUS: typ.Final[int] = 2


class ManifestDocument:
    """A parsed TOML file that remembers its original text.

    Parameters
    ----------
    document : TOMLDocument
        Parsed tomlkit document that edits are applied to.
    text : str
        The exact text the document was parsed from.
    path : Path | None, optional
        Location of the file on disk, used for diagnostics and writing.
    """

    def __init__(
        self, document: TOMLDocument, text: str, path: Path | None = None
    ) -> None:
        self._document = document
        self._original = text
        self.path = Path(path) if path is not None else None
        self._preexisting = frozenset(_table_paths(document))

    @classmethod
    def parse(cls, text: str, path: Path | None = None) -> ManifestDocument:
        """Parse ``text`` or raise :class:`MalformedDocument`."""
        try:
            document = tomlkit.parse(text)
        except ParseError as error:
            detail = str(error)
            if excerpt := _error_excerpt(text, error.line):
                indented = "\n".join(f"    {line}" for line in excerpt)
                detail = f"{detail}\n\nexcerpt:\n{indented}"
            raise MalformedDocument(path, detail) from error
        return cls(document, text, path)

    @classmethod
    def load(cls, path: Path) -> ManifestDocument:
        """Read and parse the file at ``path``."""
        path = Path(path)
        return cls.parse(path.read_text(encoding="utf-8"), path)

    @property
    def data(self) -> TOMLDocument:
        return self._document

    @property
    def original_text(self) -> str:
        return self._original

    @property
    def is_modified(self) -> bool:
        return self.serialize() != self._original

    def serialize(self) -> str:
        """Render the document, including every unmodified byte."""
        return tomlkit.dumps(self._document)

    def write(self) -> None:
        """Persist the rendered document over :attr:`path`."""
        if self.path is None:
            message = "cannot write a document that was not loaded from disk"
            raise ValueError(message)
        write_text_atomically(self.path, self.serialize())

    def existed_before(self, path: cabc.Sequence[str]) -> bool:
        """Return ``True`` when the table at ``path`` was present when parsed."""
        return tuple(path) in self._preexisting

    def get(self, path: cabc.Sequence[str]) -> typ.Any | None:
        """Return the node stored at ``path`` or ``None`` when absent."""
        node: object = self._document
        for key in path:
            if not isinstance(node, cabc.Mapping) or key not in node:
                return None
            node = node[key]
        return node

    def keys(self, path: cabc.Sequence[str]) -> list[str]:
        """Return the keys of the table at ``path`` in document order."""
        node = self.get(path)
        if not isinstance(node, cabc.Mapping):
            return []
        return list(node.keys())

    def set(self, path: cabc.Sequence[str], value: object) -> None:
        """Store ``value`` at ``path``, creating intermediate tables as needed."""
        *parents, leaf = path
        if self._set_dotted(parents, leaf, value):
            return
        owner, owner_key, container = self._ensure_table(parents)
        current = container.get(leaf)
        if current is None:
            self._insert(owner, owner_key, container, leaf, value)
            return
        container[leaf] = _preserving_style(current, value)

    def update_inline(
        self,
        path: cabc.Sequence[str],
        changes: cabc.Mapping[str, object | None],
        order: cabc.Sequence[str] = (),
    ) -> None:
        """Apply several key changes to the inline table at ``path`` at once.

        ``None`` values drop the key. New keys are placed after the last
        existing key that precedes them in ``order``; keys absent from
        ``order`` follow the table's sorting policy.
        """
        *parents, leaf = path
        owner = self.get(parents) if parents else self._document
        inline = self.get(path)
        if not isinstance(inline, InlineTable) or not isinstance(
            owner, cabc.MutableMapping
        ):
            message = f"expected an inline table at {'.'.join(path)}"
            raise MalformedDocument(self.path, message)
        owner[leaf] = _rebuild_inline(inline, changes, order)

    def remove(self, path: cabc.Sequence[str]) -> object | None:
        """Delete ``path`` and prune tables this session left empty."""
        *parents, leaf = path
        container = self.get(parents) if parents else self._document
        if not isinstance(container, cabc.MutableMapping) or leaf not in container:
            return None
        removed = container[leaf]
        if isinstance(container, InlineTable):
            *owner_path, owner_key = parents
            owner = self.get(owner_path) if owner_path else self._document
            owner[owner_key] = _rebuild_inline(container, {leaf: None}, ())
        else:
            del container[leaf]
        self._prune(parents)
        return removed

    def _prune(self, path: list[str]) -> None:
        while path:
            node = self.get(path)
            if not isinstance(node, cabc.Mapping) or node:
                return
            if self.existed_before(path):
                return
            *parents, leaf = path
            owner = self.get(parents) if parents else self._document
            LOGGER.debug("dropping empty table %s", ".".join(path))
            del owner[leaf]
            path = parents

    def _set_dotted(
        self, parents: cabc.Sequence[str], leaf: str, value: object
    ) -> bool:
        """Write ``value`` as one dotted key when its parents sit beside dotted keys.

        ``[target]`` holding ``unix.dependencies.libc = "0.2"`` receives
        ``windows.dependencies.winapi = "0.3"`` rather than a new
        ``[target.windows.dependencies]`` header.
        """
        if isinstance(value, Table):
            return False
        node: typ.Any = self._document
        for depth, key in enumerate(parents):
            child = node.get(key)
            if child is None:
                if not _has_dotted_keys(node):
                    return False
                item = value if isinstance(value, Item) else tomlkit.item(value)
                node.append(tomlkit.key([*parents[depth:], leaf]), item)
                return True
            if not isinstance(child, cabc.MutableMapping):
                return False
            node = child
        return False

    def _ensure_table(
        self, path: cabc.Sequence[str]
    ) -> tuple[cabc.MutableMapping[str, typ.Any] | None, str | None, typ.Any]:
        """Return ``(owner, key, table)`` for ``path``, creating tables."""
        owner: cabc.MutableMapping[str, typ.Any] | None = None
        owner_key: str | None = None
        node: typ.Any = self._document
        for depth, key in enumerate(path):
            child = node.get(key)
            if child is None:
                is_last = depth == len(path) - 1
                node[key] = _new_table(node, is_last=is_last)
                child = node[key]
            elif not isinstance(child, cabc.MutableMapping):
                dotted = ".".join(path[: depth + 1])
                message = f"expected a table at {dotted}"
                raise MalformedDocument(self.path, message)
            owner, owner_key, node = node, key, child
        return owner, owner_key, node

    def _insert(
        self,
        owner: cabc.MutableMapping[str, typ.Any] | None,
        owner_key: str | None,
        container: typ.Any,
        key: str,
        value: object,
    ) -> None:
        if isinstance(container, InlineTable) and owner is not None:
            owner[owner_key] = _rebuild_inline(container, {key: value}, ())
            return
        is_header_table = isinstance(value, Table)
        if (
            isinstance(container, Table)
            and not is_header_table
            and _is_sorted(list(container.keys()))
            and _insert_sorted(container, key, value)
        ):
            return
        container[key] = value


def _table_paths(
    node: cabc.Mapping[str, typ.Any], prefix: KeyPath = ()
) -> cabc.Iterator[KeyPath]:
    for key, value in node.items():
        if isinstance(value, cabc.Mapping):
            path = (*prefix, key)
            yield path
            yield from _table_paths(value, path)


def _error_excerpt(text: str, line: int) -> list[str] | None:
    """Return the lines around ``line`` (1-based) for diagnostics."""
    lines = text.splitlines()
    if not lines or line < 1:
        return None
    start = max(line - 1 - _EXCERPT_RADIUS, 0)
    end = min(line + _EXCERPT_RADIUS, len(lines))
    return lines[start:end]


def _is_sorted(keys: list[str]) -> bool:
    return len(keys) > 1 and keys == sorted(keys)


def _insert_sorted(table: Table, key: str, value: object) -> bool:
    """Insert ``key`` before its sorted successor, returning ``False`` to append."""
    successor = next((existing for existing in table if existing > key), None)
    if successor is None or isinstance(table[successor], Table):
        return False
    container = table.value
    index = next(
        position
        for position, (existing, _) in enumerate(container.body)
        if existing is not None and existing.key == successor
    )
    item = value if isinstance(value, Item) else tomlkit.item(value)
    item.trivia.indent = container.body[index][1].trivia.indent
    # tomlkit has no public positional insert.
    container._insert_at(index, key, item)  # noqa: SLF001
    dict.__setitem__(table, key, item)
    return True


def _new_table(parent: object, *, is_last: bool) -> Item:
    """Create a table matching the style of the tables already in ``parent``."""
    if isinstance(parent, InlineTable) or _siblings_are_inline(parent):
        return tomlkit.inline_table()
    return tomlkit.table(is_super_table=not is_last)


def _siblings_are_inline(parent: object) -> bool:
    if not isinstance(parent, cabc.Mapping):
        return False
    tables = [value for value in parent.values() if isinstance(value, cabc.Mapping)]
    return bool(tables) and all(isinstance(value, InlineTable) for value in tables)


def _has_dotted_keys(node: object) -> bool:
    """Return ``True`` when a header table holds sub-tables spelled as dotted keys."""
    if not isinstance(node, Table):
        return False
    return any(
        key is not None and key.is_dotted() and isinstance(value, Table)
        for key, value in node.value.body
    )


def _preserving_style(current: object, value: object) -> object:
    """Return ``value`` rendered with the quote style of ``current``."""
    if isinstance(current, String) and isinstance(value, str) and not isinstance(
        value, Item
    ):
        literal = current.as_string().startswith("'")
        if literal and "'" not in value and "\n" not in value:
            return tomlkit.string(value, literal=True)
        return tomlkit.string(value)
    return value


def _render_value(value: object) -> str:
    item = value if isinstance(value, Item) else tomlkit.item(value)
    return item.as_string()


def render_inline_table(pairs: cabc.Sequence[tuple[str, str]]) -> InlineTable:
    """Build an inline table from pre-rendered ``(key, value)`` text pairs."""
    if pairs:
        body = ", ".join(f"{key} = {value}" for key, value in pairs)
        rendered = f"{{ {body} }}"
    else:
        rendered = "{}"
    return tomlkit.parse(f"value = {rendered}\n")["value"]


def _rebuild_inline(
    inline: InlineTable,
    changes: cabc.Mapping[str, object | None],
    order: cabc.Sequence[str],
) -> InlineTable:
    """Re-render ``inline`` with ``changes`` applied, keeping untouched spans."""
    pairs: list[tuple[str, str, str]] = []
    for key, item in inline.value.body:
        if key is None:
            continue
        name = key.key
        if name in changes:
            replacement = changes[name]
            if replacement is None:
                continue
            pairs.append((name, key.as_string().strip(), _render_value(replacement)))
            continue
        pairs.append((name, key.as_string().strip(), item.as_string()))
    existing = {name for name, _, _ in pairs} | {
        key.key for key, _ in inline.value.body if key is not None
    }
    keep_sorted = _is_sorted([name for name, _, _ in pairs])
    for name, value in changes.items():
        if value is None or name in existing:
            continue
        entry = (name, SingleKey(name).as_string(), _render_value(value))
        pairs.insert(_position_for(name, pairs, order, keep_sorted=keep_sorted), entry)
    return render_inline_table([(key_text, value) for _, key_text, value in pairs])


def _position_for(
    name: str,
    pairs: list[tuple[str, str, str]],
    order: cabc.Sequence[str],
    *,
    keep_sorted: bool,
) -> int:
    if name in order:
        rank = order.index(name)
        position = 0
        for index, (existing, _, _) in enumerate(pairs):
            if existing in order and order.index(existing) < rank:
                position = index + 1
        return position
    if keep_sorted:
        return next(
            (index for index, (existing, _, _) in enumerate(pairs) if existing > name),
            len(pairs),
        )
    return len(pairs)
