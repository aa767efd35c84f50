"""
Shared fixtures for plaixt tests.

The sample store holds three kinds:
- Store: two shops
- purchase: two definition versions, `price` required from 15-11-2024
- person: an optional parent link with a cycle (alice <-> bob)
"""

import textwrap
from typing import Dict, Optional

import pytest

from plaixt.query import Adapter
from plaixt.records import parse_records, validate_record
from plaixt.schema.definitions import parse_definition
from plaixt.schema.resolver import resolve_record
from plaixt.store import Store

PURCHASE_DEF = """
    # Purchases of goods
    @checkWith "links_exist"
    define 26-10-2024
        store -> LinkTo[Store]
        name -> string
        warranty_length -> duration?
        count -> integer

    @checkWith "links_exist"
    define 15-11-2024
        store -> LinkTo[Store]
        name -> string
        warranty_length -> duration?
        count -> integer
        price -> currency
        invoice -> paperless?
"""

STORE_DEF = """
    define 01-01-2020
        name -> string
        city -> string?
"""

PERSON_DEF = """
    define 01-01-1900
        name -> string
        age -> integer
        parent -> LinkTo[person]?
"""

PURCHASE_RECORDS = """
    Store:FarmerBernard 01-01-2024
        name <- "Farmer Bernard"
        city <- Lyon

    Store:CornerShop 01-01-2024
        name <- "Corner Shop"

    purchase:apples 30-10-2024
        store <- FarmerBernard
        name <- "Organic apples"
        warranty_length <- 1y
        count <- 3

    purchase:pears 01-11-2024
        store <- Store:FarmerBernard
        name <- Pears
        count <- 1

    purchase:milk 20-11-2024
        store <- CornerShop
        name <- Milk
        count <- 2
        price <- 1.25
"""

PEOPLE_RECORDS = """
    person:alice 01-01-2024
        name <- Alice
        age <- 40
        parent <- bob

    person:bob 01-01-2024
        name <- Bob
        age <- 70
        parent <- alice

    person:carol 01-01-2024
        name <- Carol
        age <- 10
        parent <- alice

    person:dave 01-01-2024
        name <- Dave
        age <- 5
"""

SAMPLE_DEFINITIONS = {"purchase": PURCHASE_DEF, "Store": STORE_DEF, "person": PERSON_DEF}
SAMPLE_RECORDS = {
    "records/2024.plrecs": PURCHASE_RECORDS,
    "records/people.plrecs": PEOPLE_RECORDS,
}


def write_store(root, definitions: Dict[str, str], records: Dict[str, str]) -> None:
    """Write definition and record files below `root` (texts are dedented)."""
    definitions_dir = root / "definitions"
    definitions_dir.mkdir(parents=True, exist_ok=True)
    for kind, text in definitions.items():
        (definitions_dir / f"{kind}.pldef").write_text(textwrap.dedent(text), encoding="utf-8")
    for name, text in records.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")


@pytest.fixture
def make_store(tmp_path):
    """Factory writing a store root in tmp_path and returning a Store over it."""

    def _make(
        definitions: Optional[Dict[str, str]] = None,
        records: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> Store:
        write_store(
            tmp_path,
            SAMPLE_DEFINITIONS if definitions is None else definitions,
            SAMPLE_RECORDS if records is None else records,
        )
        return Store(tmp_path, **kwargs)

    return _make


@pytest.fixture
def sample_root(tmp_path):
    write_store(tmp_path, SAMPLE_DEFINITIONS, SAMPLE_RECORDS)
    return tmp_path


@pytest.fixture
def sample_result(sample_root):
    return Store(sample_root).load()


@pytest.fixture
def adapter(sample_result, sample_root):
    return Adapter.from_load_result(sample_result, root=sample_root)


@pytest.fixture
def definitions():
    """Sample definitions parsed in memory."""
    return {
        kind: parse_definition(textwrap.dedent(text), kind)
        for kind, text in SAMPLE_DEFINITIONS.items()
    }


@pytest.fixture
def validate(definitions):
    """Parse, resolve and validate record text against the sample definitions."""

    def _validate(text: str):
        return [
            validate_record(raw, resolve_record(definitions, raw))
            for raw in parse_records(textwrap.dedent(text))
        ]

    return _validate
