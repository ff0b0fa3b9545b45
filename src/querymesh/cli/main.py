#!/usr/bin/env python3
"""
querymesh CLI - Main entry point.

Usage:
    querymesh conflicts plan.json --catalog catalog.yaml   # Check for ambiguous tables
    querymesh plan plan.json -q "How many deposits?"       # Print the distributed plan
    querymesh run plan.json -q "Deposits and bets"         # Build and execute

A plan file is JSON or YAML holding a flat plan:
    {"steps": [{"service": "wallet", "sqlQuery": "SELECT ..."}],
     "requiredServices": ["wallet"], "query": "optional question"}
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .. import __version__
from ..config import QueryMeshConfig, load_config
from ..core.catalog import load_catalog
from ..core.errors import QueryMeshError
from ..core.plan_types import QueryPlan
from ..mesh import QueryMesh

logger = logging.getLogger(__name__)


def _read_plan_file(path: str) -> dict[str, Any]:
    plan_path = Path(path)
    text = plan_path.read_text(encoding="utf-8")
    if plan_path.suffix == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping with 'steps'")
    return data


def _load_inputs(args: argparse.Namespace) -> tuple[QueryMeshConfig, QueryPlan, str]:
    config = load_config(args.config) or QueryMeshConfig()
    if args.catalog:
        config.catalog = args.catalog

    data = _read_plan_file(args.plan)
    file_query = data.pop("query", "") or ""
    query = getattr(args, "query", None) or file_query
    return config, QueryPlan.model_validate(data), query


def _build_mesh(config: QueryMeshConfig) -> QueryMesh:
    catalog = load_catalog(config.catalog) if config.catalog else None
    return QueryMesh(config, catalog=catalog)


def _print_model(model) -> None:
    print(model.model_dump_json(by_alias=True, indent=2))


def cmd_conflicts(args: argparse.Namespace) -> int:
    """Check a flat plan for tables present in several services."""
    config, plan, _ = _load_inputs(args)
    if not config.catalog:
        print("Error: a schema catalog is required (--catalog or 'catalog' in config)", file=sys.stderr)
        return 1

    mesh = _build_mesh(config)
    result = mesh.conflicts(plan)
    _print_model(result)
    if result.suggested_resolution:
        print(result.suggested_resolution, file=sys.stderr)
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    """Build and print the distributed plan."""
    config, plan, query = _load_inputs(args)
    mesh = _build_mesh(config)
    _print_model(mesh.build(plan, query))
    return 0


async def _run(config: QueryMeshConfig, plan: QueryPlan, query: str):
    async with _build_mesh(config) as mesh:
        return await mesh.run(plan, query)


def cmd_run(args: argparse.Namespace) -> int:
    """Build and execute the distributed plan."""
    config, plan, query = _load_inputs(args)
    config.validate()
    result = asyncio.run(_run(config, plan, query))
    _print_model(result)
    return 0 if result.succeeded else 1


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="querymesh",
        description="querymesh - distributed SQL execution across services"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", default="querymesh.yaml", help="Config file (default: querymesh.yaml)")
    parser.add_argument("--catalog", help="Schema catalog file (JSON or YAML)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # conflicts
    conflicts_parser = subparsers.add_parser("conflicts", help="Detect tables owned by several services")
    conflicts_parser.add_argument("plan", help="Flat plan file")

    # plan
    plan_parser = subparsers.add_parser("plan", help="Print the distributed plan")
    plan_parser.add_argument("plan", help="Flat plan file")
    plan_parser.add_argument("--query", "-q", help="Original question (overrides plan file)")

    # run
    run_parser = subparsers.add_parser("run", help="Build and execute the plan")
    run_parser.add_argument("plan", help="Flat plan file")
    run_parser.add_argument("--query", "-q", help="Original question (overrides plan file)")

    return parser


def app(args: Optional[List[str]] = None) -> int:
    """Main CLI application."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not parsed.command:
        parser.print_help()
        return 0

    commands = {
        "conflicts": cmd_conflicts,
        "plan": cmd_plan,
        "run": cmd_run,
    }

    handler = commands.get(parsed.command)
    if not handler:
        parser.print_help()
        return 1

    try:
        return handler(parsed)
    except (QueryMeshError, PydanticValidationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Entry point for CLI."""
    sys.exit(app())


if __name__ == "__main__":
    main()
