"""
Integration tests for queries over a loaded store.

Tests cover:
- Outputs, filters, tags and transforms on record kinds
- Edges: links, @optional, @recurse, @fold and inline fragments
- Filesystem paths and document-management edges
- Cancellation and timeouts
"""

import threading
from types import SimpleNamespace

import httpx
import pytest

from plaixt.errors import QueryCancelled
from plaixt.paperless import PaperlessClient
from plaixt.query import Adapter
from plaixt.query import interpreter

PURCHASES = 'RecordsOfKind(kind: "purchase") { ... on p_purchase { %s } }'
PEOPLE = 'RecordsOfKind(kind: "person") { ... on p_person { %s } }'


def _purchases(body):
    return "{ " + PURCHASES % body + " }"


def _people(body):
    return "{ " + PEOPLE % body + " }"


def _column(rows, name):
    return [row[name] for row in rows]


class TestRecordQueries:
    """Properties, filters and transforms on one kind."""

    def test_outputs_in_load_order(self, adapter):
        """Rows follow record order."""
        rows = adapter.run(_purchases("name @output"))

        assert rows == [{"name": "Organic apples"}, {"name": "Pears"}, {"name": "Milk"}]

    def test_filter_with_variable(self, adapter):
        """Numeric filters compare against variables."""
        rows = adapter.run(
            _purchases('name @output count @filter(op: ">=", value: ["$min"])'), {"min": 2}
        )

        assert _column(rows, "name") == ["Organic apples", "Milk"]

    def test_string_filters(self, adapter):
        """Substring and regex filters."""
        by_substring = adapter.run(
            _purchases('name @output @filter(op: "has_substring", value: ["$s"])'), {"s": "ear"}
        )
        by_regex = adapter.run(
            _purchases('name @output @filter(op: "regex", value: ["$re"])'),
            {"re": "^[A-Z][a-z]+$"},
        )

        assert _column(by_substring, "name") == ["Pears"]
        assert _column(by_regex, "name") == ["Pears", "Milk"]

    def test_one_of(self, adapter):
        """one_of matches against a list variable."""
        rows = adapter.run(
            _purchases('_id @output @filter(op: "one_of", value: ["$ids"])'),
            {"ids": ["apples", "milk"]},
        )

        assert _column(rows, "_id") == ["apples", "milk"]

    def test_is_null_on_optional_field(self, adapter):
        """Absent optional fields are null."""
        rows = adapter.run(_purchases('_id @output warranty_length @filter(op: "is_null")'))

        assert _column(rows, "_id") == ["pears", "milk"]

    def test_null_fails_ordering(self, adapter):
        """Records without a price never pass a price comparison."""
        rows = adapter.run(
            _purchases('_id @output price @filter(op: "<", value: ["$max"])'), {"max": 2.0}
        )

        assert _column(rows, "_id") == ["milk"]

    def test_values_rendered_for_queries(self, adapter):
        """Durations, links and dates have query representations."""
        (row,) = adapter.run(
            _purchases(
                '_id @filter(op: "=", value: ["$id"]) '
                "warranty_length @output store @output _at @output"
            ),
            {"id": "apples"},
        )

        assert row == {
            "warranty_length": "1y",
            "store": "FarmerBernard",
            "_at": "2024-10-30T00:00:00",
        }

    def test_transforms(self, adapter):
        """Transforms feed later directives on the same field."""
        rows = adapter.run(
            _purchases(
                'upper: name @transform(op: "uppercase") @output '
                'size: name @transform(op: "length") @output'
            )
        )

        assert rows[0] == {"upper": "ORGANIC APPLES", "size": 14}

    def test_variable_root_argument(self, adapter):
        """The kind can be passed as a variable."""
        rows = adapter.run("{ RecordsOfKind(kind: $k) { _id @output } }", {"k": "Store"})

        assert _column(rows, "_id") == ["FarmerBernard", "CornerShop"]

    def test_records_root_with_fragment(self, adapter):
        """Inline fragments narrow Records to one kind."""
        rows = adapter.run("{ Records { ... on p_Store { name @output } } }")

        assert _column(rows, "name") == ["Farmer Bernard", "Corner Shop"]

    def test_typename(self, adapter):
        """__typename gives the vertex type."""
        rows = adapter.run("{ Records { __typename @output } }")

        assert _column(rows, "__typename")[:3] == ["p_Store", "p_Store", "p_purchase"]
        assert len(rows) == 9

    def test_lazy_rows(self, adapter):
        """execute returns an iterator."""
        rows = adapter.execute(_purchases("name @output"))

        assert next(rows) == {"name": "Organic apples"}


class TestEdges:
    """Link traversal and edge directives."""

    def test_link_edge(self, adapter):
        """LinkTo fields dereference to the target record."""
        rows = adapter.run(_purchases("name @output store { shop: name @output }"))

        assert rows == [
            {"name": "Organic apples", "shop": "Farmer Bernard"},
            {"name": "Pears", "shop": "Farmer Bernard"},
            {"name": "Milk", "shop": "Corner Shop"},
        ]

    def test_tag_compared_in_neighbor(self, adapter):
        """A tag from the outer vertex filters the neighbor."""
        rows = adapter.run(
            _people(
                'name @output age @tag(name: "mine") '
                'parent { age @filter(op: "<", value: ["%mine"]) }'
            )
        )

        assert _column(rows, "name") == ["Bob"]

    def test_missing_neighbor_drops_row(self, adapter):
        """Without @optional, no neighbor means no row."""
        rows = adapter.run(_people("name @output parent { name }"))

        assert "Dave" not in _column(rows, "name")

    def test_optional(self, adapter):
        """@optional keeps rows without neighbors, with null outputs."""
        rows = adapter.run(_people("name @output parent @optional { parent_name: name @output }"))

        assert rows == [
            {"name": "Alice", "parent_name": "Bob"},
            {"name": "Bob", "parent_name": "Alice"},
            {"name": "Carol", "parent_name": "Alice"},
            {"name": "Dave", "parent_name": None},
        ]

    def test_tag_from_missing_optional_passes(self, adapter):
        """Filters on a tag from an absent optional edge pass."""
        rows = adapter.run(
            _people(
                'name @output parent @optional { age @tag(name: "parent_age") } '
                'age @filter(op: "<", value: ["%parent_age"])'
            )
        )

        assert _column(rows, "name") == ["Alice", "Carol", "Dave"]

    def test_optional_neighbor_failing_filter_drops_row(self, adapter):
        """A neighbor that exists but fails its filters drops the row."""
        rows = adapter.run(
            _people('name @output parent @optional { age @filter(op: ">=", value: ["$min"]) }'),
            {"min": 50},
        )

        assert _column(rows, "name") == ["Alice", "Dave"]

    def test_recurse_through_cycle(self, adapter):
        """@recurse includes the start vertex and stops at its depth."""
        query = _people(
            '_id @filter(op: "=", value: ["$who"]) parent @recurse(depth: %d) { name @output }'
        )

        assert _column(adapter.run(query % 3, {"who": "carol"}), "name") == [
            "Carol",
            "Alice",
            "Bob",
            "Alice",
        ]
        assert _column(adapter.run(query % 0, {"who": "carol"}), "name") == ["Carol"]

    def test_deep_recurse_on_self_link(self, make_store, tmp_path):
        """Deep recursion is bounded by its depth alone."""
        result = make_store(
            definitions={
                "person": "define 01-01-1900\n    name -> string\n    parent -> LinkTo[person]?\n"
            },
            records={
                "people.plrecs": "person:loop 01-01-2024\n    name <- Loop\n    parent <- loop\n"
            },
        ).load()
        adapter = Adapter.from_load_result(result, root=tmp_path)

        rows = adapter.run(_people("parent @recurse(depth: 3000) { name @output }"))

        assert len(rows) == 3001
        assert set(_column(rows, "name")) == {"Loop"}

    def test_fold(self, adapter):
        """@fold gives one row per vertex with list outputs and a count."""
        rows = adapter.run(
            _people(
                "name @output "
                'parent @fold @transform(op: "count") @output(name: "parents") '
                "{ parent_names: name @output }"
            )
        )

        assert rows[0] == {"name": "Alice", "parent_names": ["Bob"], "parents": 1}
        assert rows[3] == {"name": "Dave", "parent_names": [], "parents": 0}

    def test_fold_count_filter(self, adapter):
        """The folded count can be filtered."""
        rows = adapter.run(
            _people(
                "name @output "
                'parent @fold @transform(op: "count") @filter(op: "=", value: ["$n"]) { name }'
            ),
            {"n": 0},
        )

        assert _column(rows, "name") == ["Dave"]

    def test_fold_counts_after_inner_filters(self, adapter):
        """Neighbors failing filters inside the fold are not counted."""
        rows = adapter.run(
            _people(
                "name @output "
                'parent @fold @transform(op: "count") @output(name: "old_parents") '
                '{ age @filter(op: ">", value: ["$age"]) }'
            ),
            {"age": 50},
        )

        assert _column(rows, "old_parents") == [1, 0, 0, 0]


DANGLING = """
    Store:S 01-01-2024
        name <- Shop

    purchase:ghost 30-10-2024
        store <- Ghost
        name <- Phantom
        count <- 1
"""

INVOICED = """
    Store:S 01-01-2024
        name <- Shop

    purchase:a 20-11-2024
        store <- S
        name <- A
        count <- 1
        price <- 1.00
        invoice <- 42

    purchase:b 21-11-2024
        store <- S
        name <- B
        count <- 1
        price <- 2.00
        invoice <- 42

    purchase:c 22-11-2024
        store <- S
        name <- C
        count <- 1
        price <- 3.00
        invoice <- 7
"""


class TestDanglingLinks:
    """Records kept despite a failed check still query safely."""

    @pytest.fixture
    def dangling(self, make_store, tmp_path):
        result = make_store(records={"a.plrecs": DANGLING}, reject_failed_checks=False).load()
        return result, Adapter.from_load_result(result, root=tmp_path)

    def test_dangling_link_has_no_neighbor(self, dangling):
        """Following a dangling link yields nothing."""
        result, adapter = dangling

        assert [e.code for e in result.errors] == ["CHECK_FAILURE"]
        assert adapter.run(_purchases("name @output store { shop: name @output }")) == []

    def test_dangling_link_optional(self, dangling):
        """With @optional the row survives with nulls."""
        _, adapter = dangling

        rows = adapter.run(_purchases("name @output store @optional { shop: name @output }"))

        assert rows == [{"name": "Phantom", "shop": None}]


class TestCancellation:
    """Cancel events and timeouts abort evaluation."""

    def test_cancel_event(self, adapter):
        """A set event aborts the query."""
        cancel = threading.Event()
        cancel.set()

        rows = adapter.execute(_purchases("name @output"), cancel=cancel)

        with pytest.raises(QueryCancelled):
            list(rows)

    def test_cancel_mid_iteration(self, adapter):
        """Setting the event while iterating stops further rows."""
        cancel = threading.Event()
        rows = adapter.execute(_purchases("name @output"), cancel=cancel)

        next(rows)
        cancel.set()

        with pytest.raises(QueryCancelled):
            next(rows)

    def test_timeout(self, adapter, monkeypatch):
        """Evaluation stops once the deadline has passed."""
        ticks = iter(range(0, 1000, 10))
        monkeypatch.setattr(interpreter, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

        with pytest.raises(QueryCancelled, match="timeout"):
            adapter.run(_purchases("name @output"), timeout=5)

    def test_default_timeout(self, sample_result, monkeypatch):
        """The adapter's default timeout applies when none is given."""
        adapter = Adapter.from_load_result(sample_result, default_timeout=5)
        ticks = iter(range(0, 1000, 10))
        monkeypatch.setattr(interpreter, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

        with pytest.raises(QueryCancelled):
            adapter.run(_purchases("name @output"))


class TestPaths:
    """Filesystem vertices."""

    @pytest.fixture
    def tree(self, sample_root):
        docs = sample_root / "docs"
        (docs / "sub").mkdir(parents=True)
        (docs / "a.txt").write_text("a")
        (docs / "sub" / "b.md").write_text("b")
        return sample_root

    @pytest.fixture
    def path_adapter(self, tree, sample_result):
        return Adapter.from_load_result(sample_result, root=tree)

    def test_children_sorted(self, path_adapter):
        """Directory children are listed in sorted order with their types."""
        rows = path_adapter.run(
            '{ Path(path: "docs") { ... on Directory '
            "{ Children { basename @output __typename @output } } } }"
        )

        assert rows == [
            {"basename": "a.txt", "__typename": "File"},
            {"basename": "sub", "__typename": "Directory"},
        ]

    def test_recurse_children(self, path_adapter):
        """@recurse walks the tree depth-first from the directory itself."""
        rows = path_adapter.run(
            '{ Path(path: "docs") { ... on Directory '
            "{ Children @recurse(depth: 3) { basename @output } } } }"
        )

        assert _column(rows, "basename") == ["docs", "a.txt", "sub", "b.md"]

    def test_fold_children(self, path_adapter):
        """Children can be counted."""
        (row,) = path_adapter.run(
            '{ Path(path: "docs") { ... on Directory { '
            'Children @fold @transform(op: "count") @output(name: "entries") { basename } '
            "} } }"
        )

        assert row == {"entries": 2}

    def test_file_properties(self, path_adapter):
        """Files expose their extension."""
        (row,) = path_adapter.run(
            '{ Path(path: "docs/a.txt") { ... on File { extension @output exists @output } } }'
        )

        assert row == {"extension": "txt", "exists": True}

    def test_missing_path(self, path_adapter):
        """A path that does not exist is neither File nor Directory."""
        rows = path_adapter.run('{ Path(path: "nope") { __typename @output exists @output } }')

        assert rows == [{"__typename": "Path", "exists": False}]

    def test_fragment_mismatch_drops_row(self, path_adapter):
        """A File does not match a Directory fragment."""
        rows = path_adapter.run(
            '{ Path(path: "docs/a.txt") { ... on Directory { basename @output } } }'
        )

        assert rows == []

    def test_path_field_relative_to_record_file(self, make_store, tmp_path):
        """path fields resolve against the directory of their record file."""
        result = make_store(
            definitions={"doc": "define 01-01-2024\n    file -> path\n"},
            records={"records/docs.plrecs": "doc:readme 01-01-2024\n    file <- notes/readme.txt\n"},
        ).load()
        (tmp_path / "records" / "notes").mkdir()
        (tmp_path / "records" / "notes" / "readme.txt").write_text("hello")
        adapter = Adapter.from_load_result(result, root=tmp_path)

        rows = adapter.run(
            '{ RecordsOfKind(kind: "doc") { ... on p_doc { '
            "file @output file { ... on File { basename @output exists @output } } } } }"
        )

        assert rows == [{"file": "notes/readme.txt", "basename": "readme.txt", "exists": True}]


class TestDocuments:
    """Document-management edges."""

    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def documents_result(self, make_store):
        return make_store(records={"a.plrecs": INVOICED}).load()

    @pytest.fixture
    def documents_adapter(self, documents_result, tmp_path, calls):
        def handler(request):
            calls.append(request.url.path)
            if request.url.path == "/api/documents/42/":
                return httpx.Response(
                    200,
                    json={"id": 42, "title": "Invoice", "content": "", "created": "2024-11-20"},
                )
            return httpx.Response(404)

        client = PaperlessClient("https://docs.example.org", transport=httpx.MockTransport(handler))
        yield Adapter.from_load_result(documents_result, root=tmp_path, paperless=client)
        client.close()

    def test_document_edge(self, documents_adapter, calls):
        """Documents are fetched once per id and execution; missing ones drop rows."""
        rows = documents_adapter.run(_purchases("name @output invoice { title @output }"))

        assert rows == [{"name": "A", "title": "Invoice"}, {"name": "B", "title": "Invoice"}]
        assert calls == ["/api/documents/42/", "/api/documents/7/"]

    def test_document_id_as_property(self, documents_adapter, calls):
        """Without a sub-selection the field is the raw id."""
        rows = documents_adapter.run(_purchases("invoice @output"))

        assert _column(rows, "invoice") == [42, 42, 7]
        assert calls == []

    def test_no_client_configured(self, documents_result):
        """Without a client document edges have no neighbors."""
        adapter = Adapter.from_load_result(documents_result)

        rows = adapter.run(_purchases("name @output invoice @optional { title @output }"))

        assert _column(rows, "title") == [None, None, None]
