import argparse, asyncio, logging, sys
from seocrawler.config import CrawlLimits, HttpConfig, IMAGE_SIZE_POLICIES, USER_AGENTS, get_db_path, get_user_agent
from seocrawler.crawl import crawl
from seocrawler.db import CrawlStore
from seocrawler.errors import CrawlerError
from seocrawler.server import run_server

async def _run(start: str, db_path: str, limits: CrawlLimits, http_config: HttpConfig):
    async with CrawlStore(db_path) as store:
        return await crawl(start, store, limits=limits, http_config=http_config)

if __name__ == "__main__":
    p = argparse.ArgumentParser(
        description="Same-origin SEO crawler storing pages, anchors and images per crawl run in SQLite",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s https://example.com
  %(prog)s https://example.com --js --max-requests 50
  %(prog)s https://example.com --user-agent chrome --concurrency 2 --delay 0.5
  %(prog)s https://example.com --image-sizes parallel
  %(prog)s --serve --db data/example_com_crawl.db --port 3000
        """
    )

    p.add_argument("start", nargs="?", help="Seed URL to crawl")

    # Crawling behavior
    p.add_argument("--js", action="store_true",
                   help="Render HTML pages with Playwright instead of plain HTTP")
    p.add_argument("--max-requests", type=int, default=None,
                   help="Maximum distinct URLs fetched per crawl run (default: 10)")
    p.add_argument("--max-retries", type=int, default=None,
                   help="Retries per URL after a network error or timeout (default: 3)")
    p.add_argument("--image-sizes", choices=IMAGE_SIZE_POLICIES, default=None,
                   help="Probe image byte sizes: off, one after another, or concurrently (default: off)")

    # User agent options
    p.add_argument("--user-agent", choices=list(USER_AGENTS) + ["random"],
                   default="default", help="User agent type to use (default: default)")
    p.add_argument("--custom-ua", type=str,
                   help="Custom user agent string (overrides --user-agent)")

    # HTTP configuration
    p.add_argument("--timeout", type=float, default=None,
                   help="Request timeout in seconds (default: 20)")
    p.add_argument("--concurrency", type=int, default=None,
                   help="Concurrent fetches, capped at 8 (default: 4)")
    p.add_argument("--delay", type=float, default=None,
                   help="Delay after each fetch per worker in seconds (default: 0.1)")

    # Storage and server
    p.add_argument("--db", type=str, default=None,
                   help="SQLite database path (default: data/<site>_crawl.db)")
    p.add_argument("--serve", action="store_true",
                   help="Serve crawl results over HTTP instead of crawling")
    p.add_argument("--host", type=str, default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=3000, help="Server port (default: 3000)")

    # Output and logging
    p.add_argument("--verbose", "-v", action="store_true",
                   help="Enable verbose output")
    p.add_argument("--quiet", "-q", action="store_true",
                   help="Suppress non-error output")

    args = p.parse_args()

    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    defaults = HttpConfig()
    http_config = HttpConfig(
        user_agent=args.custom_ua if args.custom_ua else get_user_agent(args.user_agent),
        timeout=args.timeout if args.timeout is not None else defaults.timeout,
        max_concurrency=args.concurrency if args.concurrency is not None else defaults.max_concurrency,
        delay_between_requests=args.delay if args.delay is not None else defaults.delay_between_requests,
        image_size_probes=args.image_sizes if args.image_sizes is not None else defaults.image_size_probes,
        use_js=args.js or defaults.use_js,
    )
    limits = CrawlLimits(
        max_requests=args.max_requests if args.max_requests is not None else CrawlLimits().max_requests,
        max_retries=args.max_retries if args.max_retries is not None else CrawlLimits().max_retries,
    )

    if args.serve:
        if not args.db and not args.start:
            p.error("--serve needs --db (or a start URL to derive it from)")
        run_server(args.db or get_db_path(args.start), host=args.host, port=args.port,
                   http_config=http_config, limits=limits)
        sys.exit(0)

    if not args.start:
        p.error("a start URL is required unless --serve is given")

    db_path = args.db or get_db_path(args.start)

    if args.verbose:
        print(f"Starting crawl with configuration:")
        print(f"  Start URL: {args.start}")
        print(f"  Database: {db_path}")
        print(f"  User Agent: {http_config.user_agent}")
        print(f"  Max Requests: {limits.max_requests}")
        print(f"  Max Retries: {limits.max_retries}")
        print(f"  JavaScript Rendering: {http_config.use_js}")
        print(f"  Timeout: {http_config.timeout}s")
        print(f"  Concurrency: {http_config.max_concurrency}")
        print(f"  Delay: {http_config.delay_between_requests}s")
        print(f"  Image sizes: {http_config.image_size_probes}")
        print()

    try:
        stats = asyncio.run(_run(args.start, db_path, limits, http_config))
    except (CrawlerError, ValueError) as e:
        print(f"Crawl failed: {e}", file=sys.stderr)
        sys.exit(1)

    if not args.quiet:
        print(f"Crawl {stats.crawl_run_id} finished: {stats.pages} pages, {stats.links} links, "
              f"{stats.retries} retries, {len(stats.failed)} failed URLs")
        for url in stats.failed:
            print(f"  failed: {url}")
