"""Sequential crawl of category members into the page store.

Sites, categories and pages are processed strictly one after another. For each
site the category list is built from the seeds (plus discovered categories when
discovery is on); each category's members are paged through and, unless
already seen this run or unchanged since the stored revision, fetched and
upserted. A failing page, list call or store write is logged and skipped; it
never aborts the category or the site.

Cancellation is checked between sites, between categories and between pages,
never while a request is in flight.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Set

from lorekeeper.config import CrawlerConfig
from lorekeeper.errors import PersistenceError, WikiApiError

from .base import CategorySet, FetchedPage, MemberRef, PageBody, PageRecord, normalize_category, now_iso
from .change_detector import lookup_remote_revision, should_skip
from .cursor import ContinuationCursor

logger = logging.getLogger(__name__)


@dataclass
class SiteStats:
    site: str
    categories: int = 0
    category_failures: int = 0
    pagination_calls: int = 0
    members_seen: int = 0
    duplicates_in_run: int = 0
    skipped_unchanged: int = 0
    fetched: int = 0
    fetch_failures: int = 0
    saved: int = 0
    save_failures: int = 0
    duplicates_removed: int = 0


@dataclass
class CrawlSummary:
    sites: List[SiteStats] = field(default_factory=list)
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"cancelled": self.cancelled, "sites": [asdict(s) for s in self.sites]}


class _Cancelled(Exception):
    """Unwinds the crawl loops once the cancel event is observed."""


class CrawlOrchestrator:
    """Drives the crawl over every configured site.

    ``client`` must provide ``category_members``, ``fetch_page`` and
    ``latest_revision`` (see ``WikiClient``); ``store`` must provide
    ``get_page_record``, ``upsert_page_record``, ``upsert_page_body`` and
    ``remove_duplicate_pages`` (see ``GraphPageStore``).
    """

    def __init__(
        self,
        config: CrawlerConfig,
        *,
        client,
        store,
        discovery=None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        self.config = config
        self.client = client
        self.store = store
        self.discovery = discovery
        self._sleep = sleep or time.sleep
        self._clock = clock or now_iso

    def run(self, cancel: Optional[threading.Event] = None) -> CrawlSummary:
        cancel = cancel or threading.Event()
        summary = CrawlSummary()
        try:
            for site in self.config.wikis:
                self._checkpoint(cancel)
                stats = SiteStats(site=site)
                summary.sites.append(stats)
                self.crawl_site(site, stats, cancel)
        except _Cancelled:
            summary.cancelled = True
            logger.info("crawl cancelled")
        logger.info("crawl done sites=%s cancelled=%s", len(summary.sites), summary.cancelled)
        return summary

    def resolve_categories(self, site: str, cancel: Optional[threading.Event] = None) -> List[str]:
        """Seeds first, then discovered categories; case-insensitive, first occurrence wins."""
        cats = CategorySet()
        for raw in self.config.seeds_for(site):
            name = normalize_category(raw)
            if name:
                cats.add(name)
        if self.config.enable_category_discovery and self.discovery is not None:
            discovered = self.discovery.site_categories(site, cancel)
            if discovered is None:
                logger.warning("discovered categories unavailable, using seeds only site=%s", site)
            else:
                for name in discovered.sorted():
                    cats.add(name)
        return list(cats)

    def crawl_site(self, site: str, stats: SiteStats, cancel: threading.Event) -> SiteStats:
        logger.info("crawling site=%s", site)
        categories = self.resolve_categories(site, cancel)
        if not categories:
            logger.info("no categories to crawl, skipping site=%s", site)
            return stats

        seen: Set[str] = set()
        for category in categories:
            self._checkpoint(cancel)
            stats.categories += 1
            self._crawl_category(site, category, seen, stats, cancel)
            if self.config.cleanup_duplicates:
                self._cleanup(site, stats)

        logger.info(
            "site done site=%s categories=%s fetched=%s saved=%s skipped=%s fetch_failures=%s save_failures=%s",
            site,
            stats.categories,
            stats.fetched,
            stats.saved,
            stats.skipped_unchanged,
            stats.fetch_failures,
            stats.save_failures,
        )
        return stats

    # --- Internals ---
    @staticmethod
    def _checkpoint(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise _Cancelled()

    def _crawl_category(self, site: str, category: str, seen: Set[str], stats: SiteStats, cancel: threading.Event) -> None:
        logger.info("crawling category site=%s category=%r", site, category)
        cursor = ContinuationCursor(
            lambda token: self.client.category_members(site, category, token),
            label=f"{category}@{site}",
            after_call=lambda: self._sleep(self.config.pagination_delay_seconds),
        )
        try:
            for batch in cursor:
                self._checkpoint(cancel)
                for member in batch.items:
                    self._checkpoint(cancel)
                    self._process_member(site, member, seen, stats)
                # before the cursor asks for the next token
                self._checkpoint(cancel)
        except WikiApiError as exc:
            stats.category_failures += 1
            logger.warning(
                "category listing failed, rest of category abandoned site=%s category=%r resume_token=%s error=%s",
                site,
                category,
                cursor.resume_token,
                exc,
            )
        finally:
            stats.pagination_calls += cursor.calls

    def _process_member(self, site: str, member: MemberRef, seen: Set[str], stats: SiteStats) -> None:
        key = member.dedupe_key()
        if key in seen:
            stats.duplicates_in_run += 1
            logger.debug("already handled this run site=%s title=%r", site, member.title)
            return
        seen.add(key)
        stats.members_seen += 1

        if member.page_id is not None and self._unchanged(site, member):
            stats.skipped_unchanged += 1
            return

        page = self._fetch(site, member, stats)
        if page is None:
            return
        seen.add(f"id:{page.page_id}")
        self._persist(site, page, stats)

    def _unchanged(self, site: str, member: MemberRef) -> bool:
        try:
            local = self.store.get_page_record(site, member.page_id)
        except PersistenceError as exc:
            logger.error("stored revision lookup failed, will fetch site=%s page_id=%s error=%s", site, member.page_id, exc)
            return False
        if local is None:
            return False
        remote = lookup_remote_revision(self.client.latest_revision, site, member.title)
        self._sleep(self.config.page_delay_seconds)
        if should_skip(local, remote):
            logger.info("skip unchanged site=%s page_id=%s title=%r revision=%s", site, member.page_id, member.title, remote)
            return True
        return False

    def _fetch(self, site: str, member: MemberRef, stats: SiteStats) -> Optional[FetchedPage]:
        try:
            page = self.client.fetch_page(site, page_id=member.page_id, title=member.title)
        except WikiApiError as exc:
            stats.fetch_failures += 1
            logger.warning("page fetch failed site=%s page_id=%s title=%r error=%s", site, member.page_id, member.title, exc)
            return None
        finally:
            self._sleep(self.config.page_delay_seconds)
        stats.fetched += 1
        logger.info("fetched site=%s page_id=%s title=%r revision=%s", site, page.page_id, page.title, page.revision_id)
        return page

    def _persist(self, site: str, page: FetchedPage, stats: SiteStats) -> None:
        now = self._clock()
        record = PageRecord(
            site=site,
            page_id=page.page_id,
            title=page.title or f"page-{page.page_id}",
            revision_id=page.revision_id,
            last_fetched_at=now,
        )
        body = PageBody(site=site, page_id=page.page_id, body=page.body, fetched_at=now)
        try:
            self.store.upsert_page_record(record)
            self.store.upsert_page_body(body)
        except PersistenceError as exc:
            stats.save_failures += 1
            logger.error("save failed site=%s page_id=%s title=%r error=%s", site, page.page_id, record.title, exc)
            return
        stats.saved += 1
        logger.info("saved site=%s page_id=%s title=%r", site, page.page_id, record.title)

    def _cleanup(self, site: str, stats: SiteStats) -> None:
        try:
            removed = self.store.remove_duplicate_pages(site)
        except PersistenceError as exc:
            logger.error("duplicate cleanup failed site=%s error=%s", site, exc)
            return
        stats.duplicates_removed += removed
        if removed:
            logger.info("duplicate pages removed site=%s removed=%s", site, removed)
