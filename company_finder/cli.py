#!/usr/bin/env python3
"""Command‑line interface for Company Finder.

The CLI talks to a running Company Finder API the same way the search screen
does: through the retrying HTTP client, the query cache and the debounced
search controller.  Filters, the current page, recent searches and the
query cache persist between runs in a local state database.

Commands:
- serve: Run the HTTP API
- search: Search the registry
- show: Show one company
- export: Download matching companies as CSV
- recent: View or edit recent searches
- cache: Manage the persisted query cache
- interactive: Live search from the terminal
- validate: Validate configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional

from company_finder.client.api_client import CompanyFinderClient
from company_finder.client.queries import COMPANIES_QUERY_KEY, CompanyQueries, register_codecs
from company_finder.client.search_controller import SearchController
from company_finder.core.config import Config, get_config
from company_finder.core.data_models import ALL, Company, SearchFilters, SearchResponse
from company_finder.core.errors import ApiError, ClientRequestError
from company_finder.core.http_client import AsyncHTTPClient
from company_finder.core.logging_setup import configure_comprehensive_logging
from company_finder.core.query_cache import QueryCachePersister, QueryClient
from company_finder.core.state import ClientState
from company_finder.storage.database import LocalStore

# Global audit and performance loggers
audit_logger = None
performance_logger = None

logger = logging.getLogger(__name__)

CLI_CLIENT = "cli_user"


def _add_filter_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("query", nargs="?", default="", help="Name to search for")
    parser.add_argument("--industry", default=ALL, help="Industry filter (default: all)")
    parser.add_argument("--state", default=ALL, help="State filter, e.g. NSW (default: all)")
    parser.add_argument("--status", default=ALL, help="Status filter (default: all)")


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Company Finder CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  company-finder serve --port 8000
  company-finder search acme --state NSW
  company-finder search --industry Retail --page 2 --json
  company-finder show 42
  company-finder export acme --output exports/
  company-finder recent list
  company-finder cache stats
  company-finder validate --strict
        """,
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=None,
        help="Directory for log files (default: logging.directory from config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: logging.level from config)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Use JSON structured logging format",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML or TOML config file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Serve
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: api.host)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: api.port)")

    # Search
    search_parser = subparsers.add_parser("search", help="Search the registry")
    _add_filter_args(search_parser)
    search_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Show
    show_parser = subparsers.add_parser("show", help="Show one company")
    show_parser.add_argument("company_id", help="Company ID")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Export
    export_parser = subparsers.add_parser("export", help="Download matching companies as CSV")
    _add_filter_args(export_parser)
    export_parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=Path("."),
        help="Output file or directory (default: ./companies.csv)",
    )

    # Recent searches
    recent_parser = subparsers.add_parser("recent", help="View or edit recent searches")
    recent_subparsers = recent_parser.add_subparsers(dest="recent_action", required=True)
    recent_list_parser = recent_subparsers.add_parser("list", help="List recent searches")
    recent_list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    recent_subparsers.add_parser("clear", help="Forget all recent searches")
    recent_remove_parser = recent_subparsers.add_parser("remove", help="Forget one search")
    recent_remove_parser.add_argument("search", help="The search to forget")

    # Cache command
    cache_parser = subparsers.add_parser("cache", help="Manage the persisted query cache")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_action", required=True)
    cache_subparsers.add_parser("clear", help="Clear all cache entries")
    cache_stats_parser = cache_subparsers.add_parser("stats", help="Show cache statistics")
    cache_stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Interactive
    subparsers.add_parser("interactive", help="Live search from the terminal")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate configuration")
    validate_parser.add_argument(
        "--strict", action="store_true", help="Exit with error if validation fails"
    )

    return parser.parse_args(argv)


def build_store(config: Config) -> LocalStore:
    return LocalStore(config.get("storage.path", ".company_finder/state.db"))


def build_state(config: Config, store: LocalStore) -> ClientState:
    state = ClientState(
        store=store,
        page_size=config.get_int("search.page_size", 12),
        recent_limit=config.get_int("search.recent_limit", 5),
    )
    state.restore()
    return state


def build_query_client(config: Config, store: LocalStore) -> QueryClient:
    persister = None
    if config.get_bool("cache.persist", True):
        persister = QueryCachePersister(
            store,
            key=config.get("cache.persist_key", "COMPANY_FINDER_QUERY_CACHE"),
            buster=str(config.get("cache.buster", "v1")),
            max_age=config.get_float("cache.persist_max_age_seconds", 86400),
            throttle=config.get_float("cache.throttle_seconds", 1.0),
        )
    query_client = QueryClient(
        stale_time=config.get_float("cache.stale_time_seconds", 300),
        gc_time=config.get_float("cache.gc_time_seconds", 600),
        retry=config.get_int("cache.retry", 3),
        persister=persister,
    )
    register_codecs(query_client)
    return query_client


@asynccontextmanager
async def open_api_client(config: Config) -> AsyncIterator[CompanyFinderClient]:
    """Yield an API client bound to ``api.base_url``."""
    async with AsyncHTTPClient(
        timeout=config.get_float("http.timeout_seconds", 10.0),
        max_attempts=config.get_int("http.max_attempts", 3),
        base_delay=config.get_float("http.base_delay_seconds", 0.3),
    ) as http:
        yield CompanyFinderClient(http, base_url=config.get("api.base_url", ""))


def _filters_from_args(args: argparse.Namespace) -> SearchFilters:
    return SearchFilters(
        query=args.query or "",
        industry=args.industry,
        state=args.state,
        status=args.status,
    )


def print_company_line(company: Company) -> None:
    print(
        f"{company.id:>8} | {(company.display_name or '')[:40]:<40} | "
        f"{(company.status or '-'):<12} | {(company.state or '-'):<5} | {company.abn or '-'}"
    )


def print_results(response: SearchResponse, page: int, page_size: int) -> None:
    if not response.companies:
        print("No companies found.")
        return
    total_pages = -(-response.total // page_size) if response.total else page
    print(f"{'ID':>8} | {'Name':<40} | {'Status':<12} | {'State':<5} | ABN")
    print("-" * 90)
    for company in response.companies:
        print_company_line(company)
    more = " (more available)" if response.has_more else ""
    print(f"\nPage {page} of {total_pages}, {response.total:,} companies{more}")


def print_company(company: Company) -> None:
    print(company.display_name)
    print("=" * 40)
    for name, value in company.to_dict().items():
        if value is not None and name != "id":
            print(f"{name.replace('_', ' ').title():<22} {value}")
    print(f"{'Id':<22} {company.id}")


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    global audit_logger, performance_logger

    config = get_config(args.config)

    # Configure comprehensive logging
    log_level_name = args.log_level or str(config.get("logging.level", "INFO")).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_dir = args.log_dir or Path(config.get("logging.directory", "logs"))
    audit_logger, performance_logger = configure_comprehensive_logging(
        log_dir=log_dir,
        level=log_level,
        use_json=args.json_logs or config.get_bool("logging.json_format", False),
        console_output=False,
    )
    logger.info(f"Company Finder CLI started with command: {args.command}")

    if args.command == "validate":
        return await handle_validate(args, config)
    elif args.command == "recent":
        return await handle_recent(args, config)
    elif args.command == "cache":
        return await handle_cache(args, config)
    elif args.command == "search":
        return await handle_search(args, config)
    elif args.command == "show":
        return await handle_show(args, config)
    elif args.command == "export":
        return await handle_export(args, config)
    elif args.command == "interactive":
        return await handle_interactive(args, config)

    print(f"Unknown command: {args.command}", file=sys.stderr)
    return 2


async def handle_search(args: argparse.Namespace, config: Config) -> int:
    """Handle the search command."""
    if args.page < 1:
        print("Page must be 1 or greater", file=sys.stderr)
        return 2

    store = build_store(config)
    state = build_state(config, store)
    query_client = build_query_client(config, store)
    query_client.restore()

    filters = _filters_from_args(args)
    state.set_filters(filters)
    state.set_page(args.page)

    try:
        async with open_api_client(config) as api:
            queries = CompanyQueries(api, query_client)
            response = await queries.companies(filters, page=state.page, limit=state.page_size)
    except ApiError as e:
        print(f"Search failed: {e}", file=sys.stderr)
        return 1
    finally:
        query_client.close()

    state.apply_results(response)
    if filters.query:
        state.recent.add(filters.query)
    if audit_logger:
        audit_logger.log_search(
            client=CLI_CLIENT,
            filters=filters.constraints(),
            results_count=len(response),
            total=response.total,
        )

    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
    else:
        print_results(response, state.page, state.page_size)
    return 0


async def handle_show(args: argparse.Namespace, config: Config) -> int:
    """Handle the show command."""
    store = build_store(config)
    query_client = build_query_client(config, store)
    query_client.restore()

    try:
        async with open_api_client(config) as api:
            company = await CompanyQueries(api, query_client).company_details(args.company_id)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    except ClientRequestError as e:
        if e.is_not_found:
            print(f"Company not found: {args.company_id}", file=sys.stderr)
            return 1
        print(f"Lookup failed: {e}", file=sys.stderr)
        return 1
    except ApiError as e:
        print(f"Lookup failed: {e}", file=sys.stderr)
        return 1
    finally:
        query_client.close()

    if audit_logger:
        audit_logger.log_lookup(CLI_CLIENT, company.id, found=True)

    if args.json:
        print(json.dumps(company.to_dict(), indent=2))
    else:
        print_company(company)
    return 0


async def handle_export(args: argparse.Namespace, config: Config) -> int:
    """Handle the export command."""
    filters = _filters_from_args(args)
    try:
        async with open_api_client(config) as api:
            path = await api.download_csv(filters, args.output)
    except ApiError as e:
        print(f"Export failed: {e}", file=sys.stderr)
        return 1

    if audit_logger:
        audit_logger.log_export(
            client=CLI_CLIENT,
            export_format="csv",
            filters=filters.constraints(),
            record_count=max(len(path.read_text(encoding="utf-8").splitlines()) - 1, 0),
        )
    print(f"Exported to {path}")
    return 0


async def handle_recent(args: argparse.Namespace, config: Config) -> int:
    """Handle the recent command."""
    state = build_state(config, build_store(config))
    recent = state.recent

    if args.recent_action == "list":
        if getattr(args, "json", False):
            print(json.dumps(recent.items, indent=2))
        elif not recent.items:
            print("No recent searches.")
        else:
            for position, search in enumerate(recent.items, start=1):
                print(f"{position}. {search}")
    elif args.recent_action == "clear":
        recent.clear()
        print("Cleared recent searches.")
    elif args.recent_action == "remove":
        if not recent.remove(args.search):
            print(f"Not in recent searches: {args.search}", file=sys.stderr)
            return 1
        print(f"Removed '{args.search}' from recent searches.")

    return 0


async def handle_cache(args: argparse.Namespace, config: Config) -> int:
    """Handle the cache command."""
    store = build_store(config)
    query_client = build_query_client(config, store)

    if args.cache_action == "clear":
        query_client.restore()
        cleared = len(query_client)
        query_client.clear()
        if query_client.persister is None:
            store.remove_item(config.get("cache.persist_key", "COMPANY_FINDER_QUERY_CACHE"))
        print(f"Cleared {cleared} cache entries.")
    elif args.cache_action == "stats":
        restored = query_client.restore()
        lists = sum(
            1 for entry in query_client.dehydrate() if entry["key"][0] == COMPANIES_QUERY_KEY
        )
        cache_stats = {
            "entries": restored,
            "company_lists": lists,
            "company_details": restored - lists,
            "storage": store.get_statistics(),
        }
        if getattr(args, "json", False):
            print(json.dumps(cache_stats, indent=2))
        else:
            print("Cache Statistics")
            print("=" * 30)
            print(f"Entries:          {cache_stats['entries']:,}")
            print(f"Company lists:    {cache_stats['company_lists']:,}")
            print(f"Company details:  {cache_stats['company_details']:,}")

    return 0


async def handle_interactive(args: argparse.Namespace, config: Config) -> int:
    """Live search: every line is a keystroke burst fed to the search controller.

    Lines starting with ``:`` are commands (``:industry X``, ``:state X``,
    ``:status X``, ``:page N``, ``:next``, ``:prev``, ``:recent``, ``:quit``).
    """
    store = build_store(config)
    state = build_state(config, store)
    loop = asyncio.get_running_loop()

    def on_results(response: SearchResponse, filters: SearchFilters) -> None:
        print()
        print_results(response, state.page, state.page_size)

    def on_error(error: BaseException) -> None:
        print(f"\nSearch failed: {error}")

    async with open_api_client(config) as api:
        controller = SearchController(
            api,
            state,
            debounce=config.get_float("search.debounce_seconds", 1.0),
            ttl=config.get_float("search.cache_ttl_seconds", 300),
            on_results=on_results,
            on_error=on_error,
        )
        controller.start()
        print("Type to search; ':quit' to exit, ':recent' for history.")
        try:
            while True:
                line = await loop.run_in_executor(None, input, "> ")
                line = line.strip()
                if line in (":quit", ":q"):
                    break
                if line == ":recent":
                    for position, search in enumerate(state.recent.items, start=1):
                        print(f"{position}. {search}")
                    continue
                if line in (":next", ":prev"):
                    page = state.page + (1 if line == ":next" else -1)
                    if page >= 1:
                        await controller.search_now(state.filters.query, state.filters, page=page)
                    continue
                if line.startswith(":page "):
                    try:
                        page = int(line.split(None, 1)[1])
                    except ValueError:
                        print("Usage: :page N")
                        continue
                    if page >= 1:
                        await controller.search_now(state.filters.query, state.filters, page=page)
                    continue
                if line.startswith((":industry ", ":state ", ":status ")):
                    name, value = line[1:].split(None, 1)
                    filters = state.filters.with_changes(**{name: value})
                    controller.submit(filters.query, filters)
                    continue
                controller.submit(line, state.filters)
        except EOFError:
            pass
        finally:
            await controller.flush()
            await controller.close()

    return 0


async def handle_validate(args: argparse.Namespace, config: Config) -> int:
    """Handle the validate command."""
    result = config.validate()

    print(result)

    if args.strict and not result.is_valid:
        return 1

    return 0


def run_server(args: argparse.Namespace) -> int:
    """Run the API under uvicorn."""
    import uvicorn

    from company_finder.api.main import create_app

    config = get_config(args.config)
    host = args.host or config.get("api.host", "127.0.0.1")
    port = args.port or config.get_int("api.port", 8000)
    log_level = (args.log_level or str(config.get("logging.level", "INFO"))).lower()
    uvicorn.run(create_app(config), host=host, port=port, log_level=log_level)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        if args.command == "serve":
            sys.exit(run_server(args))
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nAborted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
