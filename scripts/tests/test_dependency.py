"""Tests for decoding, encoding and merging dependency entries."""

from __future__ import annotations

import tomllib

import pytest
from manifest_edit_dependency import (
    DepKind,
    DepTable,
    Dependency,
    GitSource,
    PathSource,
    RegistrySource,
    WorkspaceSource,
    decode,
    dependency_tables,
    encode,
    iter_dependencies,
    locate_table,
    write_dependency,
    write_requirement,
)
from manifest_edit_document import ManifestDocument
from manifest_edit_errors import UnsupportedDependency

DEPENDENCIES = DepTable()


def _document(text: str) -> ManifestDocument:
    return ManifestDocument.parse(text)


def test_decode_bare_requirement() -> None:
    """A plain string is a registry requirement."""
    dependency = decode("serde", "1.0")

    assert dependency == Dependency("serde", RegistrySource("1.0"))
    assert dependency.is_bare()


def test_decode_renamed_entry() -> None:
    """``package`` names the real package behind a renamed key."""
    document = _document(
        '[dependencies]\nserde1 = { package = "serde", version = "1" }\n'
    )

    dependency = decode("serde1", document.get(("dependencies", "serde1")))

    assert dependency.name == "serde"
    assert dependency.rename == "serde1"
    assert dependency.toml_key == "serde1"
    assert dependency.version_req == "1"


def test_decode_sources() -> None:
    """Path, git and workspace entries decode to their source types."""
    document = _document(
        """\
[dependencies]
local = { path = "../local", version = "0.2" }
remote = { git = "https://example.com/remote.git", tag = "v1" }
shared = { workspace = true, features = ["extra"], optional = true }
"""
    )
    section = document.get(("dependencies",))

    assert decode("local", section["local"]).source == PathSource("../local", "0.2")
    assert decode("remote", section["remote"]).source == GitSource(
        "https://example.com/remote.git", tag="v1"
    )
    shared = decode("shared", section["shared"])
    assert shared.source == WorkspaceSource()
    assert shared.features == ("extra",)
    assert shared.optional


def test_decode_legacy_default_features_spelling() -> None:
    """The underscore spelling of ``default-features`` is honoured."""
    document = _document(
        '[dependencies]\nrand = { version = "0.8", default_features = false }\n'
    )

    dependency = decode("rand", document.get(("dependencies", "rand")))

    assert dependency.default_features is False


@pytest.mark.parametrize(
    ("entry", "fragment"),
    [
        ('{ path = "a", git = "b" }', "both `path` and `git`"),
        ('{ workspace = true, version = "1" }', "cannot be combined"),
        ('{ version = "1", features = "derive" }', "array of strings"),
        ('{ git = "a", tag = "t", rev = "r" }', "only one of branch, tag or rev"),
        ("42", "version string or a table"),
    ],
)
def test_decode_rejects_unsupported_entries(entry: str, fragment: str) -> None:
    """Conflicting or mistyped fields raise ``UnsupportedDependency``."""
    document = _document(f"[dependencies]\nbroken = {entry}\n")

    with pytest.raises(UnsupportedDependency, match=fragment):
        decode("broken", document.get(("dependencies", "broken")))


def test_encode_minimal_forms() -> None:
    """Bare registry dependencies encode as strings, others as inline tables."""
    bare = Dependency("serde", RegistrySource("1.0"))
    featured = Dependency("serde", RegistrySource("1.0"), features=("derive",))
    inherited = Dependency("serde", WorkspaceSource())

    assert encode(bare) == "1.0"
    assert encode(featured).as_string() == (
        '{ version = "1.0", features = ["derive"] }'
    )
    assert encode(inherited).as_string() == "{ workspace = true }"


def test_write_new_dependency() -> None:
    """A new entry is added in its minimal form."""
    document = _document('[package]\nname = "demo"\n\n[dependencies]\n')

    changes = write_dependency(
        document, DEPENDENCIES, Dependency("serde", RegistrySource("1.0"))
    )

    assert changes == [(("dependencies", "serde"), None, "1.0")]
    assert tomllib.loads(document.serialize())["dependencies"] == {"serde": "1.0"}


def test_write_identical_dependency_is_a_no_op() -> None:
    """Writing what the manifest already says changes nothing."""
    document = _document('[dependencies]\nserde = "1.0"  # keep\n')

    changes = write_dependency(
        document, DEPENDENCIES, Dependency("serde", RegistrySource("1.0"))
    )

    assert changes == []
    assert not document.is_modified


def test_write_promotes_bare_entry_and_keeps_comment() -> None:
    """Adding features turns a bare string into an inline table."""
    document = _document('[dependencies]\nserde = "1.0"  # keep\n')

    write_dependency(
        document,
        DEPENDENCIES,
        Dependency("serde", RegistrySource("1.0"), features=("derive",)),
    )

    assert document.serialize() == (
        '[dependencies]\nserde = { version = "1.0", features = ["derive"] }  # keep\n'
    )


def test_write_merges_features_in_place() -> None:
    """Existing feature arrays are edited rather than replaced."""
    document = _document(
        '[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n'
    )

    changes = write_dependency(
        document,
        DEPENDENCIES,
        Dependency("serde", RegistrySource("1.0"), features=("derive", "rc")),
    )

    assert [path[-1] for path, _, _ in changes] == ["features"]
    parsed = tomllib.loads(document.serialize())
    assert parsed["dependencies"]["serde"] == {
        "version": "1.0",
        "features": ["derive", "rc"],
    }


def test_write_reordered_features_is_a_no_op() -> None:
    """Feature order alone is not a change."""
    document = _document(
        '[dependencies]\nserde = { version = "1.0", features = ["rc", "derive"] }\n'
    )

    changes = write_dependency(
        document,
        DEPENDENCIES,
        Dependency("serde", RegistrySource("1.0"), features=("derive", "rc")),
    )

    assert changes == []


def test_write_adds_inline_keys_in_canonical_position() -> None:
    """New inline keys are placed by the canonical field order."""
    document = _document(
        '[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n'
    )

    write_dependency(
        document,
        DEPENDENCIES,
        Dependency(
            "serde", RegistrySource("1.0"), features=("derive",), optional=True
        ),
    )

    assert document.serialize() == (
        "[dependencies]\n"
        'serde = { version = "1.0", features = ["derive"], optional = true }\n'
    )


def test_write_into_header_table() -> None:
    """``[dependencies.name]`` tables receive new keys as lines."""
    document = _document('[dependencies.serde]\nversion = "1.0"  # pinned by ops\n')

    write_dependency(
        document,
        DEPENDENCIES,
        Dependency("serde", RegistrySource("1.0"), features=("derive",)),
    )

    rendered = document.serialize()
    assert "# pinned by ops" in rendered
    assert tomllib.loads(rendered)["dependencies"]["serde"] == {
        "version": "1.0",
        "features": ["derive"],
    }


def test_write_requirement_touches_only_the_version() -> None:
    """Only the version span of an inline entry changes."""
    document = _document(
        '[dependencies]\nserde = { version = "1.0", features = ["derive"] }\n'
    )

    changes = write_requirement(document, DEPENDENCIES, "serde", "1.5")

    assert changes == [(("dependencies", "serde", "version"), "1.0", "1.5")]
    assert document.serialize() == (
        '[dependencies]\nserde = { version = "1.5", features = ["derive"] }\n'
    )


def test_write_requirement_for_bare_entry() -> None:
    """Bare entries are replaced whole."""
    document = _document('[dependencies]\nserde = "1.0"\n')

    write_requirement(document, DEPENDENCIES, "serde", "1.5")

    assert document.serialize() == '[dependencies]\nserde = "1.5"\n'


def test_write_requirement_for_missing_entry() -> None:
    """A missing key is reported rather than created."""
    document = _document("[dependencies]\n")

    with pytest.raises(UnsupportedDependency, match="not found"):
        write_requirement(document, DEPENDENCIES, "serde", "1.5")


def test_dependency_tables_cover_every_section() -> None:
    """Legacy, target-specific and workspace tables are all found."""
    document = _document(
        """\
[dependencies]
serde = "1"

[dev_dependencies]
pretty_assertions = "1"

[target.'cfg(unix)'.build-dependencies]
cc = "1"

[workspace.dependencies]
anyhow = "1"
"""
    )

    tables = dependency_tables(document)

    assert [str(table) for table in tables] == [
        "dependencies",
        "dev-dependencies",
        "build-dependencies for target `cfg(unix)`",
        "workspace.dependencies",
    ]
    assert tables[1].path == ("dev_dependencies",)
    assert [key for _, key, _ in iter_dependencies(document)] == [
        "serde",
        "pretty_assertions",
        "cc",
        "anyhow",
    ]


def test_locate_table_prefers_spelling_in_use() -> None:
    """A manifest using the legacy spelling keeps using it."""
    document = _document('[dev_dependencies]\npretty_assertions = "1"\n')

    assert locate_table(document, DepKind.DEV).path == ("dev_dependencies",)
    assert locate_table(document, DepKind.BUILD).path == ("build-dependencies",)
    assert locate_table(document, DepKind.NORMAL, "cfg(unix)").path == (
        "target",
        "cfg(unix)",
        "dependencies",
    )


def test_with_version_rejects_inherited_entries() -> None:
    """Inherited entries have no version of their own."""
    dependency = Dependency("serde", WorkspaceSource())

    with pytest.raises(UnsupportedDependency, match="inherits"):
        dependency.with_version("1.0")
