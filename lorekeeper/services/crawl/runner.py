from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

from lorekeeper.config import load_crawler_config, load_storage_config
from lorekeeper.errors import ConfigurationError, PersistenceError
from lorekeeper.services.graph.admin import bootstrap_schema

from .host import HarvestHost

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _add_crawl_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--wiki", action="append", dest="wikis", help="Site base address (repeatable); overrides LOREKEEPER_WIKIS")
    p.add_argument("--category", action="append", dest="categories", help="Seed category (repeatable)")
    p.add_argument("--delay-ms", type=int, help="Politeness delay after every page request")
    p.add_argument("--data-dir", help="Directory for discovery artifacts")
    p.add_argument("--min-sites", type=int, help="Also write categories present on at least this many sites")
    p.add_argument("--discovery", action="store_true", help="Merge discovered categories into the crawl list")
    p.add_argument("--cleanup-duplicates", action="store_true", help="Remove older same-title pages after each category")


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if getattr(args, "wikis", None):
        out["wikis"] = tuple(args.wikis)
    if getattr(args, "categories", None):
        out["seed_categories"] = tuple(args.categories)
    if getattr(args, "delay_ms", None) is not None:
        out["delay_ms_between_calls"] = args.delay_ms
    if getattr(args, "data_dir", None):
        out["data_directory"] = args.data_dir
    if getattr(args, "min_sites", None) is not None:
        out["min_sites_for_global"] = args.min_sites
    if getattr(args, "discovery", False):
        out["enable_category_discovery"] = True
    if getattr(args, "cleanup_duplicates", False):
        out["cleanup_duplicates"] = True
    return out


def _run_host(host: HarvestHost, *, discover: bool, crawl: bool) -> Dict[str, Any]:
    host.start(discover=discover, crawl=crawl)
    try:
        while not host.wait(0.5):
            pass
    except KeyboardInterrupt:
        logger.warning("interrupt received, cancelling at next page boundary")
        host.cancel()
    return host.status()


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Harvest pages and categories from MediaWiki sites")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("bootstrap", help="Create the store schema (applies the configured reset mode)")

    crawl = sub.add_parser("crawl", help="Crawl seed categories into the store")
    _add_crawl_options(crawl)

    discover = sub.add_parser("discover", help="Enumerate categories and write the summary artifacts")
    _add_crawl_options(discover)

    both = sub.add_parser("run", help="Discovery (when enabled) followed by the crawl")
    _add_crawl_options(both)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        storage_config = load_storage_config()
        if args.cmd == "bootstrap":
            summary = bootstrap_schema(storage_config)
            print(json.dumps(summary, ensure_ascii=False))
            return 0

        crawler_config = load_crawler_config()
        overrides = _overrides(args)
        if overrides:
            crawler_config = crawler_config.model_copy(update=overrides)
        # conflicting reset flags fail here, before the worker starts
        if storage_config.reset_mode and args.cmd != "discover":
            logger.warning("store reset mode=%s will be applied", storage_config.reset_mode)
    except ConfigurationError as exc:
        logger.error("configuration error: %s", exc)
        return 2
    except PersistenceError as exc:
        logger.error("store error: %s", exc)
        return 1

    host = HarvestHost(crawler_config, storage_config)
    if args.cmd == "crawl":
        status = _run_host(host, discover=False, crawl=True)
    elif args.cmd == "discover":
        status = _run_host(host, discover=True, crawl=False)
    else:
        status = _run_host(host, discover=crawler_config.enable_category_discovery, crawl=crawler_config.enable_crawler)

    print(json.dumps(status, ensure_ascii=False, indent=2))
    if status.get("error_type") == "ConfigurationError":
        return 2
    return 1 if status.get("state") == "failed" else 0


if __name__ == "__main__":
    raise SystemExit(main())
