"""
Query schema: the typed vertex model exposed to queries.

Built from the loaded definitions:

    RootSchemaQuery
        Records: [Record!]!
        RecordsOfKind(kind: String!): [Record!]!
        Path(path: String!): Path!

    interface Record        _kind, _at, _id
    type p_<kind>           one per kind, union of all versions' fields
    interface Path          path, exists, basename
    type File               + extension
    type Directory          + Children edge
    type PaperlessDocument  id, title, content, created, added, archive_serial_number

Record fields typed LinkTo, path or paperless are both a property (their
scalar value) and an edge (when selected with a sub-selection).

Invariants:
    - The schema is derived, never edited; reloading the store rebuilds it
    - A field's type is taken from the first version that declares it
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..schema.types import Definition, FieldKind

RECORD_INTERFACE = "Record"
PATH_INTERFACE = "Path"
FILE_TYPE = "File"
DIRECTORY_TYPE = "Directory"
DOCUMENT_TYPE = "PaperlessDocument"
TYPENAME = "__typename"

ROOT_RECORDS = "Records"
ROOT_RECORDS_OF_KIND = "RecordsOfKind"
ROOT_PATH = "Path"

EDGE_LINK = "link"
EDGE_PATH = "path"
EDGE_DOCUMENT = "paperless"
EDGE_CHILDREN = "children"

_SCALAR_TYPES = {
    FieldKind.STRING: "String",
    FieldKind.INTEGER: "Int",
    FieldKind.DECIMAL: "Float",
    FieldKind.CURRENCY: "Float",
    FieldKind.DURATION: "String",
    FieldKind.DATETIME: "String",
    FieldKind.PATH: "String",
    FieldKind.PAPERLESS: "Int",
    FieldKind.LINK: "String",
    FieldKind.ONE_OF: "String",
}

_NAME_RE = re.compile(r"[^A-Za-z0-9_]")


def graphql_name(name: str) -> str:
    """Make a kind or field name usable as a GraphQL name."""
    return _NAME_RE.sub("_", name)


def type_name_for_kind(kind: str) -> str:
    return f"p_{graphql_name(kind)}"


@dataclass(frozen=True)
class PropertyDef:
    """A scalar property of a vertex type.

    Attributes:
        name: Property name in queries
        type: GraphQL type, e.g. `String!`
        field_name: Backing record field, for record kinds
    """

    name: str
    type: str
    field_name: Optional[str] = None


@dataclass(frozen=True)
class EdgeDef:
    """A traversable edge of a vertex type.

    Attributes:
        name: Edge name in queries
        target: Type of the neighbor vertices
        resolver: How neighbors are found (link, path, paperless, children)
        field_name: Backing record field, for record kinds
        many: Whether the edge is list-valued in the schema
    """

    name: str
    target: str
    resolver: str
    field_name: Optional[str] = None
    many: bool = False


@dataclass
class VertexType:
    """An object or interface type of the query schema."""

    name: str
    properties: Dict[str, PropertyDef] = field(default_factory=dict)
    edges: Dict[str, EdgeDef] = field(default_factory=dict)
    interfaces: Tuple[str, ...] = ()
    abstract: bool = False
    record_kind: Optional[str] = None
    description: Optional[str] = None

    def add_property(self, name: str, type_: str, field_name: Optional[str] = None) -> None:
        self.properties[name] = PropertyDef(name=name, type=type_, field_name=field_name)

    def add_edge(self, edge: EdgeDef) -> None:
        self.edges[edge.name] = edge


def _path_properties(vertex_type: VertexType) -> VertexType:
    vertex_type.add_property("path", "String!")
    vertex_type.add_property("exists", "Boolean!")
    vertex_type.add_property("basename", "String")
    return vertex_type


class QuerySchema:
    """The vertex types a query can traverse.

    Example:
        >>> schema = QuerySchema.from_definitions(definitions)
        >>> schema.get("p_purchase").edges["store"].target
        'p_Store'
        >>> print(schema.to_sdl())
    """

    def __init__(self, types: Iterable[VertexType]) -> None:
        self._types: Dict[str, VertexType] = {t.name: t for t in types}
        self._kinds: Dict[str, str] = {
            t.record_kind: t.name for t in self._types.values() if t.record_kind
        }

    @classmethod
    def from_definitions(cls, definitions: Mapping[str, Definition]) -> QuerySchema:
        """Derive the schema from loaded definitions."""
        record = VertexType(
            RECORD_INTERFACE,
            abstract=True,
            description="Any record, whatever its kind",
        )
        for builtin, type_ in (("_kind", "String!"), ("_at", "String!"), ("_id", "String")):
            record.add_property(builtin, type_)

        types: List[VertexType] = [record]
        kind_types = {kind: type_name_for_kind(kind) for kind in definitions}

        for kind in sorted(definitions):
            vertex_type = VertexType(
                kind_types[kind],
                interfaces=(RECORD_INTERFACE,),
                record_kind=kind,
                properties=dict(record.properties),
            )
            for f in definitions[kind].all_fields():
                name = graphql_name(f.name)
                vertex_type.add_property(name, _SCALAR_TYPES[f.type.kind], field_name=f.name)

                if f.type.kind == FieldKind.LINK and f.type.link_kind in kind_types:
                    vertex_type.add_edge(
                        EdgeDef(name, kind_types[f.type.link_kind], EDGE_LINK, f.name)
                    )
                elif f.type.kind == FieldKind.PATH:
                    vertex_type.add_edge(EdgeDef(name, PATH_INTERFACE, EDGE_PATH, f.name))
                elif f.type.kind == FieldKind.PAPERLESS:
                    vertex_type.add_edge(EdgeDef(name, DOCUMENT_TYPE, EDGE_DOCUMENT, f.name))
            types.append(vertex_type)

        path = _path_properties(
            VertexType(PATH_INTERFACE, abstract=True, description="A filesystem path")
        )
        file_type = _path_properties(VertexType(FILE_TYPE, interfaces=(PATH_INTERFACE,)))
        file_type.add_property("extension", "String")
        directory = _path_properties(VertexType(DIRECTORY_TYPE, interfaces=(PATH_INTERFACE,)))
        directory.add_edge(EdgeDef("Children", PATH_INTERFACE, EDGE_CHILDREN, many=True))

        document = VertexType(DOCUMENT_TYPE, description="A document-management entry")
        for name, type_ in (
            ("id", "Int!"),
            ("title", "String!"),
            ("content", "String!"),
            ("created", "String!"),
            ("added", "String"),
            ("archive_serial_number", "Int"),
        ):
            document.add_property(name, type_)

        types.extend([path, file_type, directory, document])
        return cls(types)

    def get(self, name: str) -> Optional[VertexType]:
        return self._types.get(name)

    def type_for_kind(self, kind: str) -> Optional[str]:
        return self._kinds.get(kind)

    def kinds(self) -> List[str]:
        return sorted(self._kinds)

    def type_names(self) -> List[str]:
        return list(self._types)

    def is_subtype(self, name: str, of: str) -> bool:
        """Whether a vertex of type `name` can be used where `of` is expected."""
        if name == of:
            return True
        vertex_type = self._types.get(name)
        return vertex_type is not None and of in vertex_type.interfaces

    def root_fields(self) -> Dict[str, Tuple[str, Tuple[str, ...]]]:
        """Root edge name to (target type, required argument names)."""
        return {
            ROOT_RECORDS: (RECORD_INTERFACE, ()),
            ROOT_RECORDS_OF_KIND: (RECORD_INTERFACE, ("kind",)),
            ROOT_PATH: (PATH_INTERFACE, ("path",)),
        }

    def to_sdl(self) -> str:
        """Render the schema as GraphQL SDL."""
        lines = [
            "schema {",
            "  query: RootSchemaQuery",
            "}",
            "",
            'directive @filter(op: String!, value: [String!]) repeatable on FIELD | INLINE_FRAGMENT',
            "directive @tag(name: String) on FIELD",
            "directive @output(name: String) on FIELD",
            "directive @optional on FIELD",
            "directive @recurse(depth: Int!) on FIELD",
            "directive @fold on FIELD",
            "directive @transform(op: String!) on FIELD",
            "",
            "type RootSchemaQuery {",
            f"  {ROOT_RECORDS}: [{RECORD_INTERFACE}!]!",
            f"  {ROOT_RECORDS_OF_KIND}(kind: String!): [{RECORD_INTERFACE}!]!",
            f"  {ROOT_PATH}(path: String!): {PATH_INTERFACE}!",
            "}",
        ]

        for vertex_type in self._types.values():
            lines.append("")
            if vertex_type.description:
                lines.append(f'"""{vertex_type.description}"""')
            keyword = "interface" if vertex_type.abstract else "type"
            header = f"{keyword} {vertex_type.name}"
            if vertex_type.interfaces:
                header += " implements " + " & ".join(vertex_type.interfaces)
            lines.append(header + " {")
            for prop in vertex_type.properties.values():
                if prop.name in vertex_type.edges:
                    continue
                lines.append(f"  {prop.name}: {prop.type}")
            for edge in vertex_type.edges.values():
                target = f"[{edge.target}!]!" if edge.many else edge.target
                if edge.field_name is not None:
                    lines.append('  "Edge, or the raw value when selected without fields"')
                lines.append(f"  {edge.name}: {target}")
            lines.append("}")

        return "\n".join(lines) + "\n"
