"""
Unit tests for definition parsing and the Definition Store.

Tests cover:
- Versions, fields and @checkWith scoping
- Structural errors (fatal for one file only)
- Store lookup, caching and directory errors
"""

import textwrap
from datetime import datetime

import pytest

from plaixt.errors import (
    DefinitionStoreUnavailable,
    DuplicateFieldName,
    MalformedDate,
    MalformedDefinition,
    ReservedFieldName,
    UnknownKind,
    UnknownTypeToken,
)
from plaixt.schema.definitions import DefinitionStore, parse_definition
from plaixt.schema.types import FieldKind


def _parse(text, kind="purchase"):
    return parse_definition(textwrap.dedent(text), kind, source=f"{kind}.pldef")


class TestParseDefinition:
    """Tests for parse_definition."""

    def test_versions_in_declaration_order(self):
        """Each define block becomes a version, in file order."""
        definition = _parse(
            """
            define 15-11-2024
                name -> string
            define 26-10-2024
                name -> string
                count -> integer
            """
        )

        assert [v.live_from for v in definition.versions] == [
            datetime(2024, 11, 15),
            datetime(2024, 10, 26),
        ]
        assert [v.position for v in definition.versions] == [0, 1]
        assert definition.versions[1].get_field_names() == ["name", "count"]

    def test_field_types(self):
        """Field types, optional markers and links are parsed."""
        definition = _parse(
            """
            define 26-10-2024
                store -> LinkTo[Store]
                warranty_length -> duration?
                price -> currency
            """
        )
        fields = {f.name: f.type for f in definition.versions[0].fields}

        assert fields["store"].link_kind == "Store"
        assert fields["warranty_length"].optional is True
        assert fields["price"].kind == FieldKind.CURRENCY

    def test_check_with_applies_to_next_block_only(self):
        """@checkWith scopes to the following define."""
        definition = _parse(
            """
            @checkWith "links_exist"
            define 01-01-2024
                name -> string
            define 01-02-2024
                name -> string
            """
        )

        assert definition.versions[0].check_with == "links_exist"
        assert definition.versions[1].check_with is None

    def test_comments_and_blank_lines(self):
        """Comments are stripped and blank lines are allowed inside a block."""
        definition = _parse(
            """
            # a purchase
            define 01-01-2024 // first version
                name -> string  # the product

                /* a block
                   comment */
                count -> integer
            """
        )

        assert definition.versions[0].get_field_names() == ["name", "count"]

    def test_shared_live_from_date_allowed(self):
        """Two versions may share a live-from date."""
        definition = _parse(
            """
            define 01-01-2024
                a -> string
            define 01-01-2024
                b -> string
            """
        )

        assert len(definition.versions) == 2

    def test_all_fields_union(self):
        """all_fields is the union of every version, first declaration wins."""
        definition = _parse(
            """
            define 01-01-2024
                name -> string
                count -> integer
            define 01-02-2024
                name -> string
                price -> currency
            """
        )

        assert [f.name for f in definition.all_fields()] == ["name", "count", "price"]

    def test_duplicate_field(self):
        """A field declared twice in a block is rejected."""
        with pytest.raises(DuplicateFieldName) as exc_info:
            _parse(
                """
                define 01-01-2024
                    name -> string
                    name -> integer
                """
            )

        assert exc_info.value.field_name == "name"
        assert exc_info.value.line == 4
        assert exc_info.value.source == "purchase.pldef"

    def test_same_field_in_different_blocks(self):
        """Duplicate detection is per block."""
        definition = _parse(
            """
            define 01-01-2024
                name -> string
            define 01-02-2024
                name -> integer
            """
        )

        assert definition.versions[1].fields[0].type.kind == FieldKind.INTEGER

    def test_unknown_type(self):
        """Unknown type tokens carry the token and line."""
        with pytest.raises(UnknownTypeToken) as exc_info:
            _parse(
                """
                define 01-01-2024
                    price -> money
                """
            )

        assert exc_info.value.token == "money"
        assert exc_info.value.line == 3

    def test_malformed_date(self):
        """An impossible define date is a MalformedDate."""
        with pytest.raises(MalformedDate):
            _parse(
                """
                define 32-13-2024
                    name -> string
                """
            )

    def test_reserved_field_name(self):
        """Field names starting with '_' are reserved."""
        with pytest.raises(ReservedFieldName):
            _parse(
                """
                define 01-01-2024
                    _kind -> string
                """
            )

    @pytest.mark.parametrize(
        "text, message",
        [
            ("    name -> string\n", "outside of a define block"),
            ("define 01-01-2024\n    name string\n", "Expected 'name -> type'"),
            ("define\n", "Expected 'define"),
            ("defin 01-01-2024\n", "Unexpected"),
            ('@checkWith "a"\n', "not followed by a define block"),
            ('@checkWith "a"\n@checkWith "b"\ndefine 01-01-2024\n', "given twice"),
            ("@deprecated\ndefine 01-01-2024\n", "Unknown directive"),
        ],
    )
    def test_malformed_definition(self, text, message):
        """Other structural problems raise MalformedDefinition."""
        with pytest.raises(MalformedDefinition, match=message):
            parse_definition(text, "purchase")

    def test_to_dict(self):
        """Definitions serialize with their versions."""
        definition = _parse(
            """
            @checkWith "warranty"
            define 26-10-2024
                name -> string
                warranty_length -> duration?
            """
        )

        data = definition.to_dict()

        assert data["kind"] == "purchase"
        assert data["versions"][0]["check_with"] == "warranty"
        assert data["versions"][0]["fields"] == {
            "name": "string",
            "warranty_length": "duration?",
        }


class TestDefinitionStore:
    """Tests for DefinitionStore."""

    @pytest.fixture
    def directory(self, tmp_path):
        directory = tmp_path / "definitions"
        directory.mkdir()
        (directory / "purchase.pldef").write_text("define 01-01-2024\n    name -> string\n")
        (directory / "Store").write_text("define 01-01-2020\n    name -> string\n")
        (directory / ".hidden").write_text("ignored")
        (directory / "nested").mkdir()
        return directory

    def test_kinds(self, directory):
        """Kinds come from file names, with or without the suffix."""
        assert DefinitionStore(directory).kinds() == ["Store", "purchase"]

    def test_load(self, directory):
        """load returns the parsed definition with its source."""
        definition = DefinitionStore(directory).load("purchase")

        assert definition.kind == "purchase"
        assert definition.source.endswith("purchase.pldef")

    def test_load_is_cached(self, directory):
        """The same Definition object is returned on every load."""
        store = DefinitionStore(directory)

        assert store.load("Store") is store.load("Store")

    def test_unknown_kind(self, directory):
        """A kind without a file raises UnknownKind."""
        with pytest.raises(UnknownKind) as exc_info:
            DefinitionStore(directory).load("invoice")

        assert exc_info.value.kind == "invoice"

    def test_missing_directory(self, tmp_path):
        """A missing directory makes the store unavailable."""
        store = DefinitionStore(tmp_path / "missing")

        with pytest.raises(DefinitionStoreUnavailable):
            store.load_all()
        with pytest.raises(DefinitionStoreUnavailable):
            store.load("purchase")

    def test_load_all_isolates_bad_files(self, directory):
        """A malformed file is reported; other kinds stay usable."""
        (directory / "broken.pldef").write_text("define 01-01-2024\n    price -> money\n")

        definitions, errors = DefinitionStore(directory).load_all()

        assert sorted(definitions) == ["Store", "purchase"]
        assert len(errors) == 1
        assert isinstance(errors[0], UnknownTypeToken)
        assert errors[0].source.endswith("broken.pldef")
