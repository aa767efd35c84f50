"""
Integration tests for the command-line interface.

Tests cover:
- check exit codes and report formats
- dump in text and JSON
- query files with variables, and query errors
- schema output and variable parsing
"""

import json
import os

import pytest

from plaixt.tools import cli
from plaixt.tools.cli import main, parse_variables

QUERY = """
{
  RecordsOfKind(kind: "purchase") {
    ... on p_purchase {
      name @output
      count @filter(op: ">=", value: ["$min"])
    }
  }
}
"""


@pytest.fixture(autouse=True)
def quiet(monkeypatch, tmp_path):
    """Keep the root logger untouched and run in an empty directory."""
    monkeypatch.setattr(cli, "setup_logging", lambda settings: None)
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("PLAIXT_"):
            monkeypatch.delenv(name)


def _run(argv):
    """Run the CLI and return its exit code (0 when it returns normally)."""
    try:
        main(argv)
    except SystemExit as e:
        return e.code
    return 0


class TestCheck:
    """Tests for `plaixt check`."""

    def test_clean_store(self, sample_root, capsys):
        """A clean store exits 0."""
        code = _run(["--root", str(sample_root), "check"])

        assert code == 0
        assert capsys.readouterr().out == "Store is clean: 9 record(s)\n"

    def test_problems_exit_1(self, make_store, tmp_path, capsys):
        """Problems are listed and the exit code is 1."""
        make_store(records={"a.plrecs": "invoice 01-01-2024\n"})

        code = _run(["--root", str(tmp_path), "check"])

        out = capsys.readouterr().out
        assert code == 1
        assert "Store check found 1 problem(s):" in out
        assert "[UNKNOWN_KIND]" in out

    def test_json_report(self, sample_root, capsys):
        """--format json prints the summary and problems."""
        _run(["--root", str(sample_root), "check", "--format", "json"])

        report = json.loads(capsys.readouterr().out)
        assert report["summary"]["records"] == 9
        assert report["problems"] == []

    def test_missing_definitions(self, tmp_path, capsys):
        """A root without definitions exits 2."""
        code = _run(["--root", str(tmp_path), "check"])

        assert code == 2
        assert "Error:" in capsys.readouterr().err

    def test_invalid_configuration(self, sample_root, capsys):
        """Invalid settings exit 1 before loading."""
        code = _run(["--root", str(sample_root), "--workers", "0", "check"])

        assert code == 1
        assert "Configuration error" in capsys.readouterr().err


class TestDump:
    """Tests for `plaixt dump`."""

    def test_text(self, sample_root, capsys):
        """Records are printed in canonical record syntax."""
        _run(["--root", str(sample_root), "dump", "--kind", "Store"])

        assert capsys.readouterr().out == (
            "Store:FarmerBernard 01-01-2024\n"
            '    name <- "Farmer Bernard"\n'
            "    city <- Lyon\n"
            "\n"
            "Store:CornerShop 01-01-2024\n"
            '    name <- "Corner Shop"\n'
        )

    def test_json(self, sample_root, capsys):
        """--format json prints record dicts."""
        _run(["--root", str(sample_root), "dump", "--kind", "purchase", "--format", "json"])

        records = json.loads(capsys.readouterr().out)
        assert [r["_id"] for r in records] == ["apples", "pears", "milk"]
        assert records[2]["price"] == "1.25"


class TestQuery:
    """Tests for `plaixt query`."""

    def test_query_file(self, sample_root, capsys):
        """Rows are printed as JSON."""
        query_file = sample_root / "q.graphql"
        query_file.write_text(QUERY)

        code = _run(["--root", str(sample_root), "query", str(query_file), "--var", "min=2"])

        assert code == 0
        assert json.loads(capsys.readouterr().out) == [
            {"name": "Organic apples"},
            {"name": "Milk"},
        ]

    def test_query_error(self, sample_root, capsys):
        """Query errors go to stderr with their code and exit 1."""
        query_file = sample_root / "q.graphql"
        query_file.write_text(QUERY)

        code = _run(["--root", str(sample_root), "query", str(query_file)])

        assert code == 1
        assert "Query failed [UNKNOWN_VARIABLE]" in capsys.readouterr().err

    def test_missing_file(self, sample_root, capsys):
        """An unreadable query file exits 2."""
        code = _run(["--root", str(sample_root), "query", str(sample_root / "nope.graphql")])

        assert code == 2

    def test_bad_variable(self, sample_root, capsys):
        """Malformed --var exits 2."""
        query_file = sample_root / "q.graphql"
        query_file.write_text(QUERY)

        code = _run(["--root", str(sample_root), "query", str(query_file), "--var", "min"])

        assert code == 2
        assert "Expected name=value" in capsys.readouterr().err


class TestSchema:
    """Tests for `plaixt schema`."""

    def test_schema(self, sample_root, capsys):
        """The SDL is printed."""
        _run(["--root", str(sample_root), "schema"])

        out = capsys.readouterr().out
        assert out.startswith("schema {")
        assert "type p_person implements Record {" in out


class TestParseVariables:
    """Tests for parse_variables."""

    def test_json_values(self):
        """Values are parsed as JSON."""
        assert parse_variables(["min=2", 'ids=["a", "b"]', "max=1.5"]) == {
            "min": 2,
            "ids": ["a", "b"],
            "max": 1.5,
        }

    def test_plain_strings(self):
        """Values that are not JSON stay strings."""
        assert parse_variables(["store=FarmerBernard", "empty="]) == {
            "store": "FarmerBernard",
            "empty": "",
        }

    @pytest.mark.parametrize("pair", ["min", "=2"])
    def test_malformed(self, pair):
        """Pairs need a name and '='."""
        with pytest.raises(ValueError, match="Expected name=value"):
            parse_variables([pair])
