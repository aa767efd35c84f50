"""
Query compiler: GraphQL-syntax text to a checked intermediate representation.

The document is parsed with graphql-core and lowered to a small IR of
Selections, PropertyNodes and EdgeNodes. Everything that can be rejected
before touching data is rejected here:

    - unknown types, properties and edges     UnknownSchemaElement
    - unknown filter / transform operators    UnsupportedFilterOp / UnsupportedTransformOp
    - tags used before definition or outside their fold   UnresolvableTag
    - missing variables                       UnknownVariable
    - duplicate tag or output names           DuplicateName
    - operand types that cannot match         FilterTypeMismatch

Invariants:
    - Directives on a field apply in written order
    - Tags are visible from their definition onwards in document order;
      tags defined inside a @fold are visible only inside that fold
    - The IR is immutable and independent of the record set
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from graphql import GraphQLSyntaxError, parse
from graphql.language import (
    BooleanValueNode,
    DirectiveNode,
    EnumValueNode,
    FieldNode,
    FloatValueNode,
    FragmentSpreadNode,
    InlineFragmentNode,
    IntValueNode,
    ListValueNode,
    NullValueNode,
    OperationDefinitionNode,
    OperationType,
    SelectionSetNode,
    StringValueNode,
    ValueNode,
    VariableNode,
)

from ..errors import (
    DuplicateName,
    QuerySyntaxError,
    UnknownSchemaElement,
    UnknownVariable,
    UnresolvableTag,
)
from .operators import (
    base_type,
    check_filter,
    coerce_operand,
    compile_regex,
    transform_type,
    value_type,
)
from .schema import TYPENAME, EdgeDef, QuerySchema, VertexType

PROPERTY_DIRECTIVES = ("filter", "tag", "output", "transform")
EDGE_DIRECTIVES = ("optional", "fold", "recurse")


@dataclass(frozen=True)
class Operand:
    """A filter operand: a `$variable` (value known now) or a `%tag`."""

    kind: str
    name: str
    value: Any = None


@dataclass(frozen=True)
class FilterStep:
    op: str
    operands: Tuple[Operand, ...]


@dataclass(frozen=True)
class TransformStep:
    op: str


@dataclass(frozen=True)
class TagStep:
    name: str


@dataclass(frozen=True)
class OutputStep:
    name: str


Step = Union[FilterStep, TransformStep, TagStep, OutputStep]


@dataclass(frozen=True)
class PropertyNode:
    name: str
    field_name: Optional[str]
    steps: Tuple[Step, ...]


@dataclass(frozen=True)
class EdgeNode:
    """An edge traversal and the directives that shape it.

    Attributes:
        edge: Schema edge being traversed
        selection: What to evaluate at each neighbor
        optional: Keep the row (with nulls) when there are no neighbors
        fold: Collapse all neighbors into list outputs on one row
        recurse: Maximum depth for @recurse, depth 0 being the vertex itself
        fold_steps: Steps applied to the folded neighbor list
        output_names: Outputs defined below this edge
        tag_names: Tags defined below this edge
    """

    edge: EdgeDef
    selection: Selection
    optional: bool = False
    fold: bool = False
    recurse: Optional[int] = None
    fold_steps: Tuple[Step, ...] = ()
    output_names: Tuple[str, ...] = ()
    tag_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Selection:
    """Items evaluated in order at one vertex.

    Attributes:
        type_name: Static type of the vertex
        coerce_to: Drop vertices that are not of this type (inline fragment)
        items: Properties and edges in document order
    """

    type_name: str
    coerce_to: Optional[str]
    items: Tuple[Union[PropertyNode, EdgeNode], ...]


@dataclass(frozen=True)
class CompiledQuery:
    """A query ready to run against any record set with the same schema."""

    root: str
    arguments: Mapping[str, Any]
    selection: Selection
    outputs: Tuple[str, ...]
    variables: Mapping[str, Any]


def _literal(node: ValueNode) -> Any:
    """Convert a directive argument literal to a Python value."""
    if isinstance(node, StringValueNode):
        return node.value
    if isinstance(node, IntValueNode):
        return int(node.value)
    if isinstance(node, FloatValueNode):
        return float(node.value)
    if isinstance(node, BooleanValueNode):
        return node.value
    if isinstance(node, NullValueNode):
        return None
    if isinstance(node, EnumValueNode):
        return node.value
    if isinstance(node, ListValueNode):
        return [_literal(v) for v in node.values]
    if isinstance(node, VariableNode):
        raise QuerySyntaxError(
            f"Directive arguments cannot use GraphQL variables (${node.name.value}); "
            f'reference variables as strings, e.g. value: ["${node.name.value}"]'
        )
    raise QuerySyntaxError(f"Unsupported argument value: {type(node).__name__}")


def _directive_args(directive: DirectiveNode) -> Dict[str, Any]:
    return {arg.name.value: _literal(arg.value) for arg in directive.arguments or ()}


class _Compiler:
    def __init__(self, schema: QuerySchema, variables: Mapping[str, Any]) -> None:
        self.schema = schema
        self.variables = variables
        self.outputs: List[str] = []
        self.tags: List[str] = []

    # -- document ----------------------------------------------------------

    def compile(self, text: str) -> CompiledQuery:
        try:
            document = parse(text)
        except GraphQLSyntaxError as e:
            raise QuerySyntaxError(e.message) from None

        operations = document.definitions
        if len(operations) != 1 or not isinstance(operations[0], OperationDefinitionNode):
            raise QuerySyntaxError("A query document must hold exactly one query operation")
        operation = operations[0]
        if operation.operation != OperationType.QUERY:
            raise QuerySyntaxError(f"Only queries are supported, got {operation.operation.value}")

        roots = operation.selection_set.selections
        if len(roots) != 1 or not isinstance(roots[0], FieldNode):
            raise QuerySyntaxError("A query must select exactly one root field")
        root = roots[0]
        root_name = root.name.value

        root_fields = self.schema.root_fields()
        if root_name not in root_fields:
            raise UnknownSchemaElement(
                f"Unknown root field '{root_name}'. Available: {', '.join(root_fields)}"
            )
        if root.directives:
            raise QuerySyntaxError(f"Root field '{root_name}' does not take directives")
        if root.selection_set is None:
            raise QuerySyntaxError(f"Root field '{root_name}' needs a selection")

        target, required = root_fields[root_name]
        arguments = self._root_arguments(root, required)
        selection = self._selection(self.schema.get(target), root.selection_set, {})

        return CompiledQuery(
            root=root_name,
            arguments=arguments,
            selection=selection,
            outputs=tuple(self.outputs),
            variables=dict(self.variables),
        )

    def _root_arguments(self, root: FieldNode, required: Tuple[str, ...]) -> Dict[str, Any]:
        arguments: Dict[str, Any] = {}
        for arg in root.arguments or ():
            name = arg.name.value
            if name not in required:
                raise UnknownSchemaElement(
                    f"Root field '{root.name.value}' has no argument '{name}'"
                )
            if isinstance(arg.value, VariableNode):
                var = arg.value.name.value
                if var not in self.variables:
                    raise UnknownVariable(var)
                value = self.variables[var]
            else:
                value = _literal(arg.value)
            if not isinstance(value, str):
                raise QuerySyntaxError(f"Argument '{name}' must be a string")
            arguments[name] = value

        missing = [name for name in required if name not in arguments]
        if missing:
            raise QuerySyntaxError(
                f"Root field '{root.name.value}' is missing argument(s): {', '.join(missing)}"
            )
        return arguments

    # -- selections --------------------------------------------------------

    def _selection(
        self, vertex_type: VertexType, selection_set: SelectionSetNode, scope: Dict[str, str]
    ) -> Selection:
        selections = selection_set.selections
        if any(isinstance(s, FragmentSpreadNode) for s in selections):
            raise QuerySyntaxError("Named fragments are not supported, use inline fragments")

        fragments = [s for s in selections if isinstance(s, InlineFragmentNode)]
        if fragments:
            if len(selections) != 1:
                raise QuerySyntaxError(
                    "An inline fragment must be the only selection in its block"
                )
            fragment = fragments[0]
            if fragment.directives:
                raise QuerySyntaxError("Directives on inline fragments are not supported")
            target_name = fragment.type_condition.name.value
            target = self.schema.get(target_name)
            if target is None:
                raise UnknownSchemaElement(f"Unknown type '{target_name}'")
            if not self.schema.is_subtype(target_name, vertex_type.name):
                raise UnknownSchemaElement(
                    f"Type '{target_name}' cannot be used where '{vertex_type.name}' is expected"
                )
            inner = self._selection(target, fragment.selection_set, scope)
            return Selection(inner.type_name, inner.coerce_to or target_name, inner.items)

        items = tuple(self._field(vertex_type, node, scope) for node in selections)
        return Selection(vertex_type.name, None, items)

    def _field(
        self, vertex_type: VertexType, node: FieldNode, scope: Dict[str, str]
    ) -> Union[PropertyNode, EdgeNode]:
        name = node.name.value
        display = node.alias.value if node.alias else name
        if node.arguments:
            raise QuerySyntaxError(f"Field '{name}' does not take arguments")

        if node.selection_set is None:
            if name == TYPENAME:
                prop_type, field_name = "String!", None
            else:
                prop = vertex_type.properties.get(name)
                if prop is None:
                    raise UnknownSchemaElement(
                        f"Type '{vertex_type.name}' has no property '{name}'"
                    )
                prop_type, field_name = prop.type, prop.field_name
            steps = self._steps(node.directives or (), prop_type, display, scope, name)
            return PropertyNode(name=name, field_name=field_name, steps=steps)

        edge = vertex_type.edges.get(name)
        if edge is None:
            raise UnknownSchemaElement(f"Type '{vertex_type.name}' has no edge '{name}'")
        return self._edge(vertex_type, edge, node, display, scope)

    def _edge(
        self,
        vertex_type: VertexType,
        edge: EdgeDef,
        node: FieldNode,
        display: str,
        scope: Dict[str, str],
    ) -> EdgeNode:
        optional = fold = False
        recurse: Optional[int] = None
        fold_directives: List[DirectiveNode] = []

        for directive in node.directives or ():
            dname = directive.name.value
            if dname == "optional":
                optional = True
            elif dname == "fold":
                fold = True
            elif dname == "recurse":
                depth = _directive_args(directive).get("depth")
                if not isinstance(depth, int) or isinstance(depth, bool) or depth < 0:
                    raise QuerySyntaxError("@recurse needs a non-negative integer depth")
                if not self.schema.is_subtype(vertex_type.name, edge.target):
                    raise QuerySyntaxError(
                        f"@recurse on '{edge.name}' needs '{vertex_type.name}' to be a "
                        f"'{edge.target}'"
                    )
                recurse = depth
            elif dname in PROPERTY_DIRECTIVES:
                if not fold:
                    raise QuerySyntaxError(
                        f"@{dname} on edge '{edge.name}' is only allowed after @fold"
                    )
                fold_directives.append(directive)
            else:
                raise QuerySyntaxError(f"Unknown directive @{dname}")

        outputs_before, tags_before = len(self.outputs), len(self.tags)
        inner_scope = dict(scope) if fold else scope
        selection = self._selection(
            self.schema.get(edge.target), node.selection_set, inner_scope
        )
        output_names = tuple(self.outputs[outputs_before:])
        tag_names = tuple(self.tags[tags_before:])

        fold_steps: Tuple[Step, ...] = ()
        if fold_directives:
            if fold_directives[0].name.value != "transform":
                raise QuerySyntaxError(
                    f'Folded edge \'{edge.name}\' needs @transform(op: "count") '
                    f"before @{fold_directives[0].name.value}"
                )
            fold_steps = self._steps(
                fold_directives, f"[{edge.target}]", display, scope, edge.name
            )

        return EdgeNode(
            edge=edge,
            selection=selection,
            optional=optional,
            fold=fold,
            recurse=recurse,
            fold_steps=fold_steps,
            output_names=output_names,
            tag_names=tag_names,
        )

    # -- directives --------------------------------------------------------

    def _steps(
        self,
        directives,
        value_type_name: str,
        default_name: str,
        scope: Dict[str, str],
        field_name: str,
    ) -> Tuple[Step, ...]:
        steps: List[Step] = []
        current = value_type_name

        for directive in directives:
            dname = directive.name.value
            args = _directive_args(directive)

            if dname == "filter":
                steps.append(self._filter(args, current, scope))
            elif dname == "transform":
                op = args.get("op")
                if not isinstance(op, str):
                    raise QuerySyntaxError("@transform needs a string 'op' argument")
                current = transform_type(op, current)
                steps.append(TransformStep(op))
            elif dname == "tag":
                name = args.get("name", default_name)
                if name in self.tags:
                    raise DuplicateName("tag", name)
                self.tags.append(name)
                scope[name] = base_type(current)
                steps.append(TagStep(name))
            elif dname == "output":
                name = args.get("name", default_name)
                if name in self.outputs:
                    raise DuplicateName("output", name)
                self.outputs.append(name)
                steps.append(OutputStep(name))
            elif dname in EDGE_DIRECTIVES:
                raise QuerySyntaxError(
                    f"@{dname} applies to edges, '{field_name}' is a property"
                )
            else:
                raise QuerySyntaxError(f"Unknown directive @{dname}")

        return tuple(steps)

    def _filter(self, args: Dict[str, Any], current: str, scope: Dict[str, str]) -> FilterStep:
        op = args.get("op")
        if not isinstance(op, str):
            raise QuerySyntaxError("@filter needs a string 'op' argument")
        raw = args.get("value", [])
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, list) or not all(isinstance(v, str) for v in raw):
            raise QuerySyntaxError("@filter 'value' must be a list of \"$variable\" or \"%tag\"")

        operands: List[Operand] = []
        types: List[str] = []
        for ref in raw:
            if ref.startswith("$"):
                name = ref[1:]
                if name not in self.variables:
                    raise UnknownVariable(name)
                value = self.variables[name]
                types.append(value_type(value))
                operands.append(Operand("variable", name, value))
            elif ref.startswith("%"):
                name = ref[1:]
                if name not in scope:
                    raise UnresolvableTag(name)
                types.append(scope[name])
                operands.append(Operand("tag", name))
            else:
                raise QuerySyntaxError(
                    f"Filter operand '{ref}' must start with '$' (variable) or '%' (tag)"
                )

        check_filter(op, current, types)

        resolved = []
        for operand in operands:
            if operand.kind == "variable":
                value = coerce_operand(current, operand.value)
                if op in ("regex", "not_regex") and isinstance(value, str):
                    compile_regex(value)
                operand = Operand("variable", operand.name, value)
            resolved.append(operand)
        return FilterStep(op, tuple(resolved))


def compile_query(
    schema: QuerySchema, text: str, variables: Optional[Mapping[str, Any]] = None
) -> CompiledQuery:
    """Compile query text against a schema.

    Args:
        schema: Schema derived from the store's definitions
        text: GraphQL-syntax query document
        variables: Values for `$name` filter operands and root arguments

    Returns:
        CompiledQuery ready for execution

    Raises:
        QueryError: Any compile-time problem (see module docstring)
    """
    return _Compiler(schema, variables or {}).compile(text)
