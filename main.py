"""
Product Mirror – main entry point.

Usage
-----
# Crawl every reachable screen of a product
python main.py crawl <product_id>

# Compare the two latest captures of every screen
python main.py detect-changes <product_id>

# HTTP server for interactive recording sessions
python main.py serve [--host 0.0.0.0] [--port 3001]
"""
from __future__ import annotations

import argparse
import asyncio
import pathlib
import sys

from dotenv import load_dotenv
from loguru import logger

load_dotenv(override=True)

from config.settings import settings  # noqa: E402 – must be after load_dotenv
from models.errors import MirrorError  # noqa: E402
from models.mirror import Product  # noqa: E402


def _configure_logging() -> None:
    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.log_level,
        colorize=False,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if settings.log_file:
        pathlib.Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="7 days")


async def _wait_for_manual_login(product: Product) -> None:
    """Hand the headed browser to a human until they press Enter."""
    logger.warning("Auto-login failed.")
    print("=" * 60)
    print(f"Please log in to {product.name} manually in the browser window,")
    print("then press Enter here to start crawling...")
    print("=" * 60)
    await asyncio.to_thread(input)


async def _run_crawl(product_id: str) -> None:
    from crawler.runner import CrawlRunner
    from storage.base import build_store

    store = build_store()
    try:
        await CrawlRunner(store, manual_login=_wait_for_manual_login).run(product_id)
    finally:
        await store.aclose()


async def _run_detect_changes(product_id: str) -> None:
    from analysis.visual_diff import VisualDiffDetector
    from storage.base import build_store

    store = build_store()
    try:
        await VisualDiffDetector(store).detect_for_product(product_id)
    finally:
        await store.aclose()


def main() -> None:
    _configure_logging()

    parser = argparse.ArgumentParser(description="Product Mirror crawler and recorder")
    sub = parser.add_subparsers(dest="command", required=True)

    crawl = sub.add_parser("crawl", help="Crawl a product and record its screen graph.")
    crawl.add_argument("product_id", type=str)

    detect = sub.add_parser("detect-changes", help="Diff the latest captures of a product's screens.")
    detect.add_argument("product_id", type=str)

    serve = sub.add_parser("serve", help="Start the recording HTTP server.")
    serve.add_argument("--host", type=str, default=settings.server_host)
    serve.add_argument("--port", type=int, default=settings.server_port)

    args = parser.parse_args()

    try:
        if args.command == "crawl":
            asyncio.run(_run_crawl(args.product_id))
        elif args.command == "detect-changes":
            asyncio.run(_run_detect_changes(args.product_id))
        else:
            from server import run_server

            run_server(args.host, args.port)
    except MirrorError as exc:
        logger.error(str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
