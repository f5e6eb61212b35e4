from typing import Dict, List, Optional, Tuple

import pytest

from lorekeeper.config import CrawlerConfig
from lorekeeper.errors import PersistenceError, WikiApiError
from lorekeeper.services.crawl.base import Batch, FetchedPage, MemberRef, PageBody, PageRecord


class FakeWikiClient:
    """Scripted stand-in for WikiClient.

    members: {(site, category): {token: (member list, next_token)}} where each
    member is a (page_id, title) tuple.
    pages: {(site, page_id): FetchedPage or Exception}
    revisions: {(site, title): revision or Exception}
    categories: {site: {token: (names, next_token)}}
    """

    def __init__(self, *, members=None, pages=None, revisions=None, categories=None):
        self.members = members or {}
        self.pages = pages or {}
        self.revisions = revisions or {}
        self.categories = categories or {}
        self.calls: List[Tuple] = []

    def category_members(self, site, category, token=None):
        self.calls.append(("members", site, category, token))
        script = self.members.get((site, category), {None: ([], None)})
        step = script[token]
        if isinstance(step, Exception):
            raise step
        items, next_token = step
        return Batch(items=[MemberRef(page_id=pid, title=title) for pid, title in items], next_token=next_token)

    def all_categories(self, site, token=None):
        self.calls.append(("allcategories", site, token))
        step = self.categories[site][token]
        if isinstance(step, Exception):
            raise step
        names, next_token = step
        return Batch(items=list(names), next_token=next_token)

    def fetch_page(self, site, *, page_id=None, title=None):
        self.calls.append(("fetch", site, page_id))
        page = self.pages.get((site, page_id))
        if page is None:
            raise WikiApiError(f"HTTP 404 for {page_id}", status_code=404)
        if isinstance(page, Exception):
            raise page
        return page

    def latest_revision(self, site, title):
        self.calls.append(("revision", site, title))
        rev = self.revisions.get((site, title))
        if isinstance(rev, Exception):
            raise rev
        return rev

    def count(self, kind: str) -> int:
        return sum(1 for c in self.calls if c[0] == kind)


class InMemoryPageStore:
    """Dict-backed store with the same keys and conflict rules as GraphPageStore."""

    def __init__(self):
        self.records: Dict[Tuple[str, int], PageRecord] = {}
        self.bodies: Dict[Tuple[str, int, str], PageBody] = {}
        self.fail_on: set = set()
        self.writes: List[Tuple[str, int]] = []
        self.cleanup_calls = 0

    def get_page_record(self, site, page_id) -> Optional[PageRecord]:
        return self.records.get((site, page_id))

    def get_saved_revision(self, site, page_id):
        rec = self.records.get((site, page_id))
        return rec.revision_id if rec else None

    def upsert_page_record(self, record: PageRecord) -> None:
        if record.page_id in self.fail_on:
            raise PersistenceError("database unavailable")
        self.writes.append(("record", record.page_id))
        self.records[(record.site, record.page_id)] = record

    def upsert_page_body(self, body: PageBody) -> None:
        if (body.site, body.page_id) not in self.records:
            raise PersistenceError("no page for body")
        self.writes.append(("body", body.page_id))
        self.bodies[(body.site, body.page_id, body.format)] = body

    def remove_duplicate_pages(self, site) -> int:
        self.cleanup_calls += 1
        newest: Dict[Tuple[str, str], PageRecord] = {}
        for (s, _), rec in self.records.items():
            if s != site:
                continue
            key = (rec.title, "" if rec.revision_id is None else str(rec.revision_id))
            cur = newest.get(key)
            if cur is None or (rec.last_fetched_at, rec.page_id) > (cur.last_fetched_at, cur.page_id):
                newest[key] = rec
        keep = {(site, r.page_id) for r in newest.values()}
        stale = [k for k in self.records if k[0] == site and k not in keep]
        for k in stale:
            del self.records[k]
            for bk in [b for b in self.bodies if b[:2] == k]:
                del self.bodies[bk]
        return len(stale)


def make_page(page_id: int, title: str, revision=None, body: str = None) -> FetchedPage:
    return FetchedPage(page_id=page_id, title=title, body=body or f"<p>{title}</p>", revision_id=revision)


@pytest.fixture
def fake_client_cls():
    return FakeWikiClient


@pytest.fixture
def store():
    return InMemoryPageStore()


@pytest.fixture
def page_factory():
    return make_page


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def config_factory(tmp_path):
    def _make(**kwargs):
        base = {
            "wikis": ("https://wiki.example.org",),
            "seed_categories": (),
            "delay_ms_between_calls": 250,
            "pagination_delay_ms": 300,
            "data_directory": str(tmp_path / "data"),
        }
        base.update(kwargs)
        return CrawlerConfig(**base)

    return _make
