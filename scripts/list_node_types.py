#!/usr/bin/env python3
"""Inspect the node types known to the default registry.

Usage:
    # Registered node type identifiers:
    python scripts/list_node_types.py

    # Full schemas bucketed by group:
    python scripts/list_node_types.py --schemas

    # Schemas whose name, display name or description match:
    python scripts/list_node_types.py --search http

    # Validate every registered executor (exit code 1 if any is invalid):
    python scripts/list_node_types.py --validate

Output is JSON on stdout. Settings are read from the environment and .env
(see nodeflow/config.py).
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def collect(args: argparse.Namespace) -> tuple[dict, int]:
    """Build the JSON payload for the requested view and the exit code."""
    # Import here so logging/settings pick up env vars set before main()
    from nodeflow.service.runtime import build_default_registry

    registry = build_default_registry()

    if args.validate:
        report = registry.validate_all()
        return {"valid": report.valid, "invalid": report.invalid}, 0 if report.ok else 1

    if args.search is not None:
        matches = registry.search(args.search)
        return {"query": args.search, "results": [s.to_dict() for s in matches]}, 0

    if args.schemas:
        grouped = registry.get_all_schemas()
        return {
            group: [schema.to_dict() for schema in schemas]
            for group, schemas in grouped.items()
        }, 0

    return {"types": registry.list_types()}, 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="List and validate registered node types",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    view = parser.add_mutually_exclusive_group()
    view.add_argument(
        "--schemas",
        action="store_true",
        help="Print full schemas grouped by node group",
    )
    view.add_argument(
        "--search",
        metavar="QUERY",
        help="Case-insensitive search over name, display name and description",
    )
    view.add_argument(
        "--validate",
        action="store_true",
        help="Run validate_all and exit non-zero when an executor is invalid",
    )
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (default 2)")

    args = parser.parse_args(argv)

    try:
        payload, code = collect(args)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(payload, indent=args.indent, default=str))
    return code


if __name__ == "__main__":
    sys.exit(main())
