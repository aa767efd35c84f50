"""
Query Adapter: the public face of the query engine.

Binds a QuerySchema (from definitions) to one RecordSet snapshot and runs
queries against it.

Example:
    >>> adapter = Adapter.from_load_result(result, root="~/records")
    >>> rows = adapter.execute(
    ...     '''
    ...     {
    ...       RecordsOfKind(kind: "purchase") {
    ...         ... on p_purchase {
    ...           name @output
    ...           count @filter(op: ">=", value: ["$min"])
    ...           store { name @output(name: "store") }
    ...         }
    ...       }
    ...     }
    ...     ''',
    ...     {"min": 2},
    ... )
    >>> list(rows)
    [{'name': 'Organic apples', 'store': 'Farmer Bernard'}]
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from ..paperless import PaperlessClient
from ..schema.types import Definition
from .compiler import CompiledQuery, compile_query
from .interpreter import Execution
from .schema import QuerySchema

logger = logging.getLogger(__name__)


class Adapter:
    """Runs queries over one immutable record set.

    Attributes:
        schema: Query schema derived from the definitions
        records: RecordSet snapshot every execution observes
        root: Base for relative `Path(path:)` arguments
        paperless: Client used by document edges, if configured
        default_timeout: Timeout (seconds) applied when execute() gets none
    """

    def __init__(
        self,
        definitions: Mapping[str, Definition],
        records,
        root: Optional[str | Path] = None,
        paperless: Optional[PaperlessClient] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self.schema = QuerySchema.from_definitions(definitions)
        self.records = records
        self.root = Path(root).expanduser() if root is not None else None
        self.paperless = paperless
        self.default_timeout = default_timeout

    @classmethod
    def from_load_result(
        cls,
        result,
        root: Optional[str | Path] = None,
        paperless: Optional[PaperlessClient] = None,
        default_timeout: Optional[float] = None,
    ) -> Adapter:
        """Build an adapter over a store LoadResult."""
        return cls(
            result.definitions,
            result.records,
            root=root,
            paperless=paperless,
            default_timeout=default_timeout,
        )

    def schema_text(self) -> str:
        """The query schema as GraphQL SDL."""
        return self.schema.to_sdl()

    def compile(self, query: str, variables: Optional[Mapping[str, Any]] = None) -> CompiledQuery:
        """Compile a query without running it.

        Raises:
            QueryError: If the query is invalid for this schema
        """
        return compile_query(self.schema, query, variables)

    def execute(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Compile and lazily evaluate a query.

        Compile errors are raised immediately; evaluation errors (including
        QueryCancelled) are raised while iterating.

        Args:
            query: GraphQL-syntax query document
            variables: Values for `$name` operands
            cancel: Event that aborts evaluation once set
            timeout: Seconds after which evaluation aborts

        Returns:
            Iterator of result rows, each a dict of output name to value
        """
        compiled = self.compile(query, variables)
        if timeout is None:
            timeout = self.default_timeout
        logger.debug(f"Executing query on {compiled.root} with outputs {list(compiled.outputs)}")
        execution = Execution(
            compiled,
            self.schema,
            self.records,
            root=self.root,
            paperless=self.paperless,
            cancel=cancel,
            timeout=timeout,
        )
        return execution.rows()

    def run(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Execute a query and collect all rows."""
        return list(self.execute(query, variables, cancel=cancel, timeout=timeout))
