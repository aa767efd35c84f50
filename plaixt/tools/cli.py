"""
Command-line interface for plaixt.

Commands:
- dump: Print accepted records (canonical text or JSON)
- check: Load the store and report every problem
- schema: Print the query schema as GraphQL SDL
- query: Run a query file and print the rows as JSON
- serve: Start the HTTP API

Usage:
    plaixt --root ~/records check
    plaixt --root ~/records dump --kind purchase
    plaixt query apples.graphql --var min=2 --var 'store="FarmerBernard"'
    plaixt serve --port 8765

Invariants:
    - Exit code 0 means success and, for check, a clean store
    - Problems and query errors go to stderr, results to stdout
    - JSON output is deterministic (sorted keys)

How to change safely:
    - Add new commands, don't change existing output formats
    - Keep `check` exit codes stable, CI jobs depend on them
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config import ConfigError, Settings
from ..errors import DefinitionStoreUnavailable, QueryError
from ..main import serve, setup_logging
from ..paperless import PaperlessClient
from ..query import Adapter
from ..records import format_records
from ..store import LoadResult, Store

logger = logging.getLogger(__name__)


class PlaixtCLI:
    """CLI commands over one loaded store.

    Example:
        >>> cli = PlaixtCLI(settings)
        >>> print(cli.schema())
        >>> ok, report = cli.check()
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store = Store.from_settings(settings)
        self._result: Optional[LoadResult] = None

    @property
    def result(self) -> LoadResult:
        if self._result is None:
            self._result = self.store.load()
        return self._result

    def adapter(self, paperless: Optional[PaperlessClient] = None) -> Adapter:
        return Adapter.from_load_result(
            self.result,
            root=self.store.root,
            paperless=paperless,
            default_timeout=self.settings.query_timeout_seconds,
        )

    def dump(self, kind: Optional[str] = None, output_format: str = "text") -> str:
        """Render accepted records.

        Args:
            kind: Only records of this kind
            output_format: "text" for canonical record syntax, "json" for dicts

        Returns:
            Rendered records
        """
        records = self.result.records.records_of(kind) if kind else list(self.result.records)
        if output_format == "json":
            return _to_json([r.to_dict() for r in records])
        return format_records(r.to_raw() for r in records)

    def check(self) -> tuple[bool, List[str]]:
        """Load the store and describe every collected problem.

        Returns:
            Tuple of (is_clean, list_of_problem_lines)
        """
        return self.result.ok, [f"[{e.code}] {e}" for e in self.result.errors]

    def schema(self) -> str:
        return self.adapter().schema_text()

    def query(
        self,
        text: str,
        variables: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Run a query and collect its rows.

        Raises:
            QueryError: If the query is invalid or cancelled
        """
        paperless = PaperlessClient.from_settings(self.settings)
        try:
            return self.adapter(paperless).run(text, variables, timeout=timeout)
        finally:
            if paperless is not None:
                paperless.close()


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, sort_keys=True, default=str)


def parse_variables(pairs: Sequence[str]) -> Dict[str, Any]:
    """Parse `name=value` pairs; values are JSON, falling back to plain strings.

    Raises:
        ValueError: If a pair has no '='
    """
    variables: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise ValueError(f"Expected name=value, got '{pair}'")
        try:
            variables[name] = json.loads(raw)
        except json.JSONDecodeError:
            variables[name] = raw
    return variables


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plaixt", description="Plain-text structured record store")
    parser.add_argument("--config", "-c", help="YAML configuration file (default: ./plaixt.yaml)")
    parser.add_argument("--root", "-r", help="Store root folder")
    parser.add_argument("--workers", "-j", type=int, help="Threads used to parse record files")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # dump command
    dump_parser = subparsers.add_parser("dump", help="Print accepted records")
    dump_parser.add_argument("--kind", "-k", help="Only records of this kind")
    dump_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    # check command
    check_parser = subparsers.add_parser("check", help="Report every problem in the store")
    check_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    # schema command
    subparsers.add_parser("schema", help="Print the query schema as GraphQL SDL")

    # query command
    query_parser = subparsers.add_parser("query", help="Run a query file ('-' for stdin)")
    query_parser.add_argument("file", help="Query file")
    query_parser.add_argument(
        "--var", "-v", action="append", default=[], help="Variable as name=json (repeatable)"
    )
    query_parser.add_argument("--timeout", type=float, help="Evaluation timeout in seconds")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", help="Bind host")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.load(
            args.config,
            root_folder=args.root,
            workers=args.workers,
            log_level=args.log_level,
            host=getattr(args, "host", None),
            port=getattr(args, "port", None),
        )
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings)

    if args.command == "serve":
        try:
            serve(settings)
        except KeyboardInterrupt:
            pass
        return

    cli = PlaixtCLI(settings)
    try:
        cli.result
    except DefinitionStoreUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "dump":
        print(cli.dump(args.kind, args.format), end="")

    elif args.command == "check":
        ok, problems = cli.check()
        if args.format == "json":
            print(_to_json({"summary": cli.result.summary(), "problems": cli.result.problems()}))
        elif ok:
            print(f"Store is clean: {len(cli.result.records)} record(s)")
        else:
            print(f"Store check found {len(problems)} problem(s):")
            for problem in problems:
                print(f"  - {problem}")
        sys.exit(0 if ok else 1)

    elif args.command == "schema":
        print(cli.schema())

    elif args.command == "query":
        try:
            variables = parse_variables(args.var)
            text = sys.stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
        except (ValueError, OSError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)

        try:
            rows = cli.query(text, variables, timeout=args.timeout)
        except QueryError as e:
            print(f"Query failed [{e.code}]: {e}", file=sys.stderr)
            sys.exit(1)
        print(_to_json(rows))


if __name__ == "__main__":
    main()
