"""Category discovery and cross-site category summaries.

For every configured site the full category list is paged through
``list=allcategories`` and written to ``categories-<host>.json``. Once all sites
are done, the sets are folded into:

- ``categories-global.json``: categories present on every site (intersection)
- ``categories-union.json``: categories present on any site
- ``categories-coverage.json``: category -> {count, sites}
- ``categories-global-atleast-<K>.json``: present on at least K sites (only
  when ``min_sites_for_global`` is set)

Lists are sorted case-insensitively so identical inputs render byte-identical
documents, and each document is only rewritten when its text changes.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from lorekeeper.config import CrawlerConfig
from lorekeeper.errors import WikiApiError

from .base import CategorySet, category_sort_key, normalize_category
from .cursor import ContinuationCursor
from .pipeline import ensure_dir, render_json, write_if_changed

logger = logging.getLogger(__name__)

Coverage = Dict[str, Dict[str, Any]]


def safe_host_name(site: str) -> str:
    s = site
    for scheme in ("https://", "http://"):
        if s.lower().startswith(scheme):
            s = s[len(scheme):]
            break
    # ":" from a port is not a portable file-name character
    return s.replace("/", "_").replace(":", "_")


def intersect_all(sets: Sequence[CategorySet]) -> CategorySet:
    if not sets:
        return CategorySet()
    result = CategorySet(sets[0])
    for s in sets[1:]:
        result = result.intersection(s)
    return result


def union_all(sets: Sequence[CategorySet]) -> CategorySet:
    result = CategorySet()
    for s in sets:
        result.update(s)
    return result


def build_coverage(site_sets: Sequence[Tuple[str, CategorySet]]) -> Coverage:
    """Fold every site's set into ``{category: {"count": n, "sites": [...]}}``.

    Sites are listed in the order given; keys come out sorted case-insensitively.
    """
    tally: Dict[str, Dict[str, Any]] = {}
    names = CategorySet()
    for site, cats in site_sets:
        for cat in cats:
            names.add(cat)
            key = CategorySet.key(cat)
            entry = tally.get(key)
            if entry is None:
                tally[key] = {"count": 1, "sites": [site]}
            else:
                entry["count"] += 1
                entry["sites"].append(site)
    return {name: tally[CategorySet.key(name)] for name in names.sorted()}


def at_least(coverage: Coverage, k: Optional[int]) -> List[str]:
    """Categories covered by at least ``k`` sites; empty when k is unset or not positive."""
    if not k or k <= 0:
        return []
    return sorted((name for name, entry in coverage.items() if entry["count"] >= k), key=category_sort_key)


@dataclass
class DiscoveryResult:
    site_categories: Dict[str, List[str]] = field(default_factory=dict)
    failed_sites: List[str] = field(default_factory=list)
    intersection: List[str] = field(default_factory=list)
    union: List[str] = field(default_factory=list)
    coverage: Coverage = field(default_factory=dict)
    at_least_k: Optional[List[str]] = None
    written: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sites": {site: len(cats) for site, cats in self.site_categories.items()},
            "failed_sites": list(self.failed_sites),
            "intersection": len(self.intersection),
            "union": len(self.union),
            "coverage": len(self.coverage),
            "at_least_k": None if self.at_least_k is None else len(self.at_least_k),
            "written": list(self.written),
            "unchanged": list(self.unchanged),
            "cancelled": self.cancelled,
        }


class CategoryDiscoveryEngine:
    """Enumerates site categories and writes the category artifacts."""

    def __init__(
        self,
        config: CrawlerConfig,
        *,
        client,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.config = config
        self.client = client
        self._sleep = sleep or time.sleep
        self._cache: Dict[str, CategorySet] = {}
        self._failed: Set[str] = set()

    @property
    def data_dir(self) -> str:
        return self.config.resolved_data_directory()

    def discover_site(self, site: str, cancel: Optional[threading.Event] = None) -> Optional[CategorySet]:
        """Page through every category of one site.

        Returns None if a list call failed or the walk was cancelled; a partial
        set is never returned.
        """
        cats = CategorySet()
        cursor = ContinuationCursor(
            lambda token: self.client.all_categories(site, token),
            label=f"allcategories@{site}",
            after_call=lambda: self._sleep(self.config.page_delay_seconds),
        )
        try:
            for batch in cursor:
                for raw in batch.items:
                    name = normalize_category(raw)
                    if name:
                        cats.add(name)
                if cancel is not None and cancel.is_set() and batch.next_token:
                    logger.info("discovery cancelled site=%s calls=%s", site, cursor.calls)
                    return None
        except WikiApiError as exc:
            logger.warning("category discovery failed site=%s calls=%s error=%s", site, cursor.calls, exc)
            self._failed.add(site)
            return None
        self._failed.discard(site)
        self._cache[site] = cats
        logger.info("categories discovered site=%s count=%s calls=%s", site, len(cats), cursor.calls)
        return cats

    def site_categories(self, site: str, cancel: Optional[threading.Event] = None) -> Optional[CategorySet]:
        """Categories from this process's latest discovery of ``site``, discovering if needed.

        Returns None without another request for a site whose discovery
        already failed.
        """
        if site in self._failed:
            return None
        cached = self._cache.get(site)
        if cached is not None:
            return cached
        return self.discover_site(site, cancel)

    def _write(self, result: DiscoveryResult, filename: str, obj: Any) -> None:
        path = os.path.join(self.data_dir, filename)
        if write_if_changed(path, render_json(obj)):
            result.written.append(path)
        else:
            result.unchanged.append(path)

    def run(self, cancel: Optional[threading.Event] = None) -> DiscoveryResult:
        result = DiscoveryResult()
        ensure_dir(self.data_dir)
        site_sets: List[Tuple[str, CategorySet]] = []

        for site in self.config.wikis:
            if cancel is not None and cancel.is_set():
                result.cancelled = True
                break
            logger.info("discovering categories site=%s", site)
            cats = self.discover_site(site, cancel)
            if cats is None:
                if cancel is not None and cancel.is_set():
                    result.cancelled = True
                    break
                result.failed_sites.append(site)
                continue
            ordered = cats.sorted()
            result.site_categories[site] = ordered
            self._write(result, f"categories-{safe_host_name(site)}.json", ordered)
            site_sets.append((site, cats))

        if result.cancelled:
            logger.info("discovery cancelled, global summaries skipped sites_done=%s", len(site_sets))
            return result
        if not site_sets:
            logger.info("category discovery complete, no site succeeded")
            return result

        sets = [s for _, s in site_sets]
        result.intersection = intersect_all(sets).sorted()
        result.union = union_all(sets).sorted()
        result.coverage = build_coverage(site_sets)

        self._write(result, "categories-global.json", result.intersection)
        self._write(result, "categories-union.json", result.union)

        k = self.config.min_sites_for_global
        if k is not None and k > 0:
            result.at_least_k = at_least(result.coverage, k)
            self._write(result, f"categories-global-atleast-{k}.json", result.at_least_k)

        self._write(result, "categories-coverage.json", result.coverage)

        logger.info(
            "global summaries intersection=%s union=%s coverage=%s written=%s unchanged=%s",
            len(result.intersection),
            len(result.union),
            len(result.coverage),
            len(result.written),
            len(result.unchanged),
        )
        return result
