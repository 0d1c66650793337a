#!/usr/bin/env python3
"""
Run one retrieval against the configured providers and print the results.
Useful for checking thresholds and credentials without starting the API.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import httpx

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge_search.core import config
from knowledge_search.core.augment import QUOTE_CONTEXTS
from knowledge_search.core.context import new_context
from knowledge_search.core.errors import RetrievalError
from knowledge_search.core.search_service import create_search_service


async def run_search(args) -> dict:
    timeout = httpx.Timeout(config.REQUEST_TIMEOUT_SEC, connect=config.HTTP_CONNECT_TIMEOUT_SEC)
    async with httpx.AsyncClient(timeout=timeout) as http_client:
        service = create_search_service(http_client)
        ctx = new_context(authorization=args.token)

        if args.kind == "quotes":
            return await service.find_quotes(args.query, args.context, args.count, ctx)
        if args.kind == "images":
            return await service.find_images(args.query, args.chart_type, args.count, ctx)
        if args.kind == "sources":
            return await service.find_sources(args.query, args.mode, ctx)
        return await service.search_knowledge(args.query, args.count, ctx)


def main():
    parser = argparse.ArgumentParser(
        description="Run the retrieval pipeline from the command line",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s quotes "customer retention" --context board
  %(prog)s images "revenue growth" --chart-type bar_chart --count 5
  %(prog)s sources "What drives churn?" --mode deep --json
        """
    )
    parser.add_argument("kind", choices=["knowledge", "quotes", "images", "sources"], help="Search to run")
    parser.add_argument("query", help="Query text (the question for sources)")
    parser.add_argument("--count", type=int, default=None, help="Maximum results")
    parser.add_argument("--context", choices=QUOTE_CONTEXTS, default="any", help="Quote usage context")
    parser.add_argument("--chart-type", default="any", help="Chart type filter for images")
    parser.add_argument("--mode", choices=sorted(config.SOURCE_MODES), default="standard", help="Source retrieval mode")
    parser.add_argument("--token", default=None, help="Bearer credential forwarded to the record store")
    parser.add_argument("--json", action="store_true", help="Print the raw response payload")
    args = parser.parse_args()

    try:
        payload = asyncio.run(run_search(args))
    except RetrievalError as e:
        print(f"ERROR ({e.status_code}): {e.message}")
        return 1

    if args.json:
        print(json.dumps(payload, indent=2, default=str))
        return 0

    for i, result in enumerate(payload["results"], start=1):
        label = result.get("quote_text") or result.get("title") or result["id"]
        print(f"{i:2d}. [{result['relevance']:3d}%] ({result['provenance']}) {label[:100]}")

    stats = payload["stats"]
    print(f"\nFound {stats['total_found']} | matched {stats['matched']} | hydration {stats['hydration']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
