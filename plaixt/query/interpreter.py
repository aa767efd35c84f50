"""
Query interpreter: evaluates a CompiledQuery lazily over one RecordSet.

Rows are produced depth-first. At each vertex the selection's items run in
document order; a property applies its steps (transform, filter, tag,
output), an edge multiplies the row by its neighbors, except that:

    @optional   no neighbors keeps the row, outputs below become null and
                tags below become "missing" (filters using them pass);
                neighbors that all fail their filters still drop the row
    @fold       all neighbors collapse into one row; outputs below become
                lists, the folded list can be counted, filtered and output
    @recurse(N) neighbors are the vertex itself plus everything reachable
                in 1..N steps over the edge; bounded by depth, not by a
                visited set, so cycles terminate

Invariants:
    - One execution observes one RecordSet snapshot
    - Cancellation and timeout are checked between vertex resolutions
    - Document lookups are cached for the duration of one execution
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Sequence

from ..errors import QueryCancelled
from ..paperless import PaperlessClient, PaperlessDocument
from ..records.validate import ValidatedRecord
from ..schema.types import RecordRef
from .compiler import (
    CompiledQuery,
    EdgeNode,
    FilterStep,
    OutputStep,
    PropertyNode,
    Selection,
    Step,
    TagStep,
    TransformStep,
)
from .operators import apply_filter, apply_transform
from .schema import (
    EDGE_CHILDREN,
    EDGE_DOCUMENT,
    EDGE_LINK,
    EDGE_PATH,
    ROOT_PATH,
    ROOT_RECORDS,
    ROOT_RECORDS_OF_KIND,
    TYPENAME,
    EdgeDef,
    QuerySchema,
    type_name_for_kind,
)
from .vertex import DocumentVertex, PathVertex, RecordVertex, Vertex

logger = logging.getLogger(__name__)

MISSING = object()


class _Row:
    """Outputs and tags bound so far; copied on every binding."""

    __slots__ = ("outputs", "tags")

    def __init__(
        self, outputs: Optional[Dict[str, Any]] = None, tags: Optional[Dict[str, Any]] = None
    ) -> None:
        self.outputs = outputs if outputs is not None else {}
        self.tags = tags if tags is not None else {}

    def with_output(self, name: str, value: Any) -> _Row:
        return _Row({**self.outputs, name: value}, self.tags)

    def with_tag(self, name: str, value: Any) -> _Row:
        return _Row(self.outputs, {**self.tags, name: value})


class Execution:
    """A single run of a compiled query.

    Example:
        >>> execution = Execution(compiled, schema, records, timeout=5.0)
        >>> for row in execution.rows():
        ...     print(row)
    """

    def __init__(
        self,
        compiled: CompiledQuery,
        schema: QuerySchema,
        records,
        root: Optional[Path] = None,
        paperless: Optional[PaperlessClient] = None,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.compiled = compiled
        self.schema = schema
        self.records = records
        self.root = root
        self.paperless = paperless
        self.cancel = cancel
        self.timeout = timeout
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._documents: Dict[int, Optional[PaperlessDocument]] = {}
        self.vertices_visited = 0

    def rows(self) -> Iterator[Dict[str, Any]]:
        """Yield result rows, one dict of outputs per row."""
        outputs = self.compiled.outputs
        for vertex in self._root_vertices():
            for row in self._selection(self.compiled.selection, vertex, _Row()):
                yield {name: row.outputs.get(name) for name in outputs}

    def _checkpoint(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise QueryCancelled()
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise QueryCancelled(f"Query exceeded its timeout of {self.timeout}s")
        self.vertices_visited += 1

    # -- vertices ----------------------------------------------------------

    def _record_vertex(self, record: ValidatedRecord) -> RecordVertex:
        typename = self.schema.type_for_kind(record.kind) or type_name_for_kind(record.kind)
        return RecordVertex(record, typename)

    def _resolve_path(self, text: str, base: Optional[Path]) -> Path:
        path = Path(text).expanduser()
        if path.is_absolute() or base is None:
            return path
        return base / path

    def _root_vertices(self) -> Iterator[Vertex]:
        root = self.compiled.root
        if root == ROOT_PATH:
            self._checkpoint()
            yield PathVertex(self._resolve_path(self.compiled.arguments["path"], self.root))
            return

        if root == ROOT_RECORDS_OF_KIND:
            records = self.records.records_of(self.compiled.arguments["kind"])
        elif root == ROOT_RECORDS:
            records = self.records
        else:
            records = ()
        for record in records:
            self._checkpoint()
            yield self._record_vertex(record)

    def _document(self, document_id: int) -> Optional[PaperlessDocument]:
        if document_id not in self._documents:
            if self.paperless is None:
                logger.debug(f"No document service configured, skipping document {document_id}")
                self._documents[document_id] = None
            else:
                self._documents[document_id] = self.paperless.get_document(document_id)
        return self._documents[document_id]

    def _edge_neighbors(self, vertex: Vertex, edge: EdgeDef) -> Iterator[Vertex]:
        vertex_type = self.schema.get(vertex.typename)
        if vertex_type is None or edge.name not in vertex_type.edges:
            return

        if edge.resolver == EDGE_CHILDREN:
            try:
                children = sorted(vertex.path.iterdir())
            except OSError as e:
                logger.warning(f"Cannot list directory {vertex.path}: {e}")
                return
            for child in children:
                self._checkpoint()
                yield PathVertex(child)
            return

        value = vertex.record.get(edge.field_name)
        if value is None:
            return
        self._checkpoint()

        if edge.resolver == EDGE_LINK:
            if isinstance(value, RecordRef):
                target = self.records.get(value.kind, value.id)
                if target is not None:
                    yield self._record_vertex(target)
        elif edge.resolver == EDGE_PATH:
            source = vertex.record.source
            base = Path(source).parent if source else self.root
            yield PathVertex(self._resolve_path(str(value), base))
        elif edge.resolver == EDGE_DOCUMENT:
            document = self._document(value)
            if document is not None:
                yield DocumentVertex(document)

    def _neighbors(self, vertex: Vertex, node: EdgeNode) -> Iterator[Vertex]:
        if node.recurse is None:
            yield from self._edge_neighbors(vertex, node.edge)
        else:
            yield from self._recurse(vertex, node.edge, node.recurse)

    def _recurse(self, vertex: Vertex, edge: EdgeDef, depth: int) -> Iterator[Vertex]:
        """Depth-first pre-order walk, starting vertex included.

        Uses an explicit stack so the depth is bounded only by `depth`,
        never by the interpreter's recursion limit.
        """
        self._checkpoint()
        yield vertex
        if depth == 0:
            return
        stack = [(self._edge_neighbors(vertex, edge), depth - 1)]
        while stack:
            neighbors, remaining = stack[-1]
            neighbor = next(neighbors, None)
            if neighbor is None:
                stack.pop()
                continue
            self._checkpoint()
            yield neighbor
            if remaining > 0:
                stack.append((self._edge_neighbors(neighbor, edge), remaining - 1))

    # -- evaluation --------------------------------------------------------

    def _apply_steps(self, steps: Sequence[Step], value: Any, row: _Row) -> Optional[_Row]:
        for step in steps:
            if isinstance(step, TransformStep):
                value = apply_transform(step.op, value)
            elif isinstance(step, FilterStep):
                operands = []
                for operand in step.operands:
                    operands.append(
                        row.tags[operand.name] if operand.kind == "tag" else operand.value
                    )
                if any(o is MISSING for o in operands):
                    continue
                if not apply_filter(step.op, value, operands):
                    return None
            elif isinstance(step, TagStep):
                row = row.with_tag(step.name, value)
            elif isinstance(step, OutputStep):
                row = row.with_output(step.name, value)
        return row

    def _selection(self, selection: Selection, vertex: Vertex, row: _Row) -> Iterator[_Row]:
        if selection.coerce_to is not None and not self.schema.is_subtype(
            vertex.typename, selection.coerce_to
        ):
            return
        yield from self._items(selection, 0, vertex, row)

    def _items(self, selection: Selection, index: int, vertex: Vertex, row: _Row) -> Iterator[_Row]:
        if index == len(selection.items):
            yield row
            return

        item = selection.items[index]
        if isinstance(item, PropertyNode):
            if item.name == TYPENAME:
                value = vertex.typename
            else:
                value = vertex.property(item.name, item.field_name)
            next_row = self._apply_steps(item.steps, value, row)
            if next_row is not None:
                yield from self._items(selection, index + 1, vertex, next_row)
            return

        if item.fold:
            folded = []
            for neighbor in self._neighbors(vertex, item):
                folded.extend(self._selection(item.selection, neighbor, _Row(tags=row.tags)))
            next_row = row
            for name in item.output_names:
                next_row = next_row.with_output(name, [r.outputs.get(name) for r in folded])
            next_row = self._apply_steps(item.fold_steps, folded, next_row)
            if next_row is not None:
                yield from self._items(selection, index + 1, vertex, next_row)
            return

        found = False
        for neighbor in self._neighbors(vertex, item):
            found = True
            for inner in self._selection(item.selection, neighbor, row):
                yield from self._items(selection, index + 1, vertex, inner)

        if not found and item.optional:
            next_row = row
            for name in item.output_names:
                next_row = next_row.with_output(name, None)
            for name in item.tag_names:
                next_row = next_row.with_tag(name, MISSING)
            yield from self._items(selection, index + 1, vertex, next_row)
