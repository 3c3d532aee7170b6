"""Command-line tool for asking questions and inspecting the graph."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

from dotenv import load_dotenv

from vulngraph.config.settings import get_logging_settings
from vulngraph.graph import graph_store
from vulngraph.graph.inspection import describe_result_columns, summarize_graph
from vulngraph.services.qa import service as qa_service
from vulngraph.services.qa.safety import find_forbidden_tokens


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _cmd_ask(args: argparse.Namespace) -> int:
    _print_json(qa_service.ask_question(args.question))
    return 0


def _cmd_schema(_args: argparse.Namespace) -> int:
    _print_json(summarize_graph(graph_store.get_executor()))
    return 0


def _cmd_shape(args: argparse.Namespace) -> int:
    """先做安全檢查再執行查詢，輸出整理後的結果與各欄位的值種類。"""
    forbidden = find_forbidden_tokens(args.query)
    if forbidden:
        print(f"[vulngraph] refusing to run query with forbidden tokens: {', '.join(forbidden)}", file=sys.stderr)
        return 2
    rows = graph_store.get_executor().run_query(args.query)
    _print_json(
        {
            "columns": describe_result_columns(rows),
            "view": qa_service.shape_rows(rows),
        }
    )
    return 0


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="vulngraph-cli", description="Vulnerability graph QA tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Answer a natural-language question")
    ask.add_argument("question", help="Question to ask")
    ask.set_defaults(handler=_cmd_ask)

    schema = subparsers.add_parser("schema", help="Summarize labels, relationship types and distributions")
    schema.set_defaults(handler=_cmd_schema)

    shape = subparsers.add_parser("shape", help="Run a read-only query and print the shaped result")
    shape.add_argument("query", help="Cypher query to run")
    shape.set_defaults(handler=_cmd_shape)

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=get_logging_settings().level, stream=sys.stderr)
    args = parse_args(argv)
    try:
        return args.handler(args)
    finally:
        graph_store.close_executor()


if __name__ == "__main__":
    sys.exit(main())
