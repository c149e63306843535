"""
Main entry point for GuestLens.

Runs one acquisition from the command line and prints the result as JSON:

    python -m src.main search --query '"Jane Doe" "Acme"'
    python -m src.main deep-search --query 'acme hotel' --total 30
    python -m src.main guest --name 'Jane Doe' --company Acme --country NL
    python -m src.main page --url https://example.com
    python -m src.main headline --url https://www.linkedin.com/in/janedoe
"""

import argparse
import asyncio
import json
from typing import Any

from src.search.google_search_provider import GoogleSearchProvider
from src.utils.config import get_project_root, get_settings
from src.utils.logging import configure_logging, get_logger
from src.utils.secure_logging import mask_proxy_url


def initialize() -> None:
    """Initialize logging."""
    settings = get_settings()
    (get_project_root() / settings.general.logs_dir).mkdir(parents=True, exist_ok=True)
    configure_logging(log_level=settings.general.log_level, json_format=True)

    logger = get_logger(__name__)
    logger.info(
        "GuestLens initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
        proxies=len(settings.proxy.pool),
        fallback_proxy=mask_proxy_url(settings.proxy.fallback_url),
        solver_configured=bool(settings.solver.api_key),
    )


async def run_command(args: argparse.Namespace, provider: GoogleSearchProvider) -> Any:
    """Dispatch one CLI command to the provider.

    Returns:
        JSON-serializable result.
    """
    if args.command == "search":
        results = await provider.search(args.query, args.max_results, timeout=args.timeout)
        return [record.to_dict() for record in results]

    if args.command == "deep-search":
        results = await provider.deep_search(args.query, args.total, timeout=args.timeout)
        return [record.to_dict() for record in results]

    if args.command == "guest":
        summary = await provider.search_guest(args.name, args.company, args.country, args.max_results)
        return summary.model_dump()

    if args.command == "page":
        return {"url": args.url, "content": await provider.fetch_page_content(args.url)}

    if args.command == "headline":
        return {"url": args.url, "headline": await provider.scrape_linkedin_headline(args.url)}

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GuestLens - resilient web acquisition for guest enrichment"
    )
    parser.add_argument(
        "command",
        choices=["search", "deep-search", "guest", "page", "headline"],
        help="Command to run",
    )
    parser.add_argument("--query", "-q", type=str, help="Search query (search, deep-search)")
    parser.add_argument("--max-results", type=int, default=10, help="Results for one page")
    parser.add_argument("--total", type=int, default=100, help="Results wanted (deep-search)")
    parser.add_argument("--timeout", type=float, default=None, help="Overall deadline in seconds")
    parser.add_argument("--name", type=str, help="Guest full name (guest)")
    parser.add_argument("--company", type=str, default=None, help="Guest company (guest)")
    parser.add_argument("--country", type=str, default=None, help="Guest country (guest)")
    parser.add_argument("--url", type=str, help="Page URL (page, headline)")
    return parser


def main() -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command in ("search", "deep-search") and not args.query:
        parser.error(f"--query is required for {args.command}")
    if args.command == "guest" and not args.name:
        parser.error("--name is required for guest")
    if args.command in ("page", "headline") and not args.url:
        parser.error(f"--url is required for {args.command}")

    async def async_main() -> Any:
        initialize()
        provider = GoogleSearchProvider()
        try:
            return await run_command(args, provider)
        finally:
            await provider.close()

    result = asyncio.run(async_main())
    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
