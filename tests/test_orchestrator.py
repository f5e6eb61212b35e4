import threading

from lorekeeper.errors import WikiApiError
from lorekeeper.services.crawl.base import CategorySet, PageRecord
from lorekeeper.services.crawl.orchestrator import CrawlOrchestrator

SITE = "https://wiki.example.org"


def _orchestrator(config, client, store, sleeps, **kwargs):
    return CrawlOrchestrator(
        config,
        client=client,
        store=store,
        sleep=sleeps.append,
        clock=lambda: "2024-11-01T12:00:00Z",
        **kwargs,
    )


def test_two_members_across_two_continuation_pages(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "Alpha")], "t1"), "t1": ([(2, "Beta")], None)}},
        pages={(SITE, 1): page_factory(1, "Alpha", 11), (SITE, 2): page_factory(2, "Beta", 22)},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run()

    assert client.count("members") == 2
    assert client.count("fetch") == 2
    assert sorted(store.records) == [(SITE, 1), (SITE, 2)]
    assert store.records[(SITE, 2)].revision_id == 22
    assert store.bodies[(SITE, 1, "html")].body == "<p>Alpha</p>"
    stats = summary.sites[0]
    assert stats.pagination_calls == 2
    assert stats.saved == 2
    assert summary.cancelled is False


def test_page_in_two_seed_categories_is_fetched_once(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={
            (SITE, "Category:A"): {None: ([(1, "Shared"), (2, "OnlyA")], None)},
            (SITE, "Category:B"): {None: ([(1, "Shared"), (3, "OnlyB")], None)},
        },
        pages={
            (SITE, 1): page_factory(1, "Shared", 5),
            (SITE, 2): page_factory(2, "OnlyA", 6),
            (SITE, 3): page_factory(3, "OnlyB", 7),
        },
    )
    cfg = config_factory(seed_categories=("Category:A", "Category:B"))
    summary = _orchestrator(cfg, client, store, sleeps).run()

    fetched_ids = [c[2] for c in client.calls if c[0] == "fetch"]
    assert fetched_ids == [1, 2, 3]
    assert store.writes.count(("record", 1)) == 1
    assert summary.sites[0].duplicates_in_run == 1


def test_unchanged_revision_is_skipped_without_fetch_or_write(config_factory, fake_client_cls, store, page_factory, sleeps, caplog):
    store.records[(SITE, 1)] = PageRecord(SITE, 1, "Alpha", 11, "2024-10-01T00:00:00Z")
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "Alpha")], None)}},
        pages={(SITE, 1): page_factory(1, "Alpha", 11)},
        revisions={(SITE, "Alpha"): 11},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    with caplog.at_level("INFO"):
        summary = _orchestrator(cfg, client, store, sleeps).run()

    assert client.count("fetch") == 0
    assert store.writes == []
    assert summary.sites[0].skipped_unchanged == 1
    assert sum(1 for r in caplog.records if "skip unchanged" in r.getMessage()) == 1


def test_changed_or_unknown_revision_is_refetched(config_factory, fake_client_cls, store, page_factory, sleeps):
    store.records[(SITE, 1)] = PageRecord(SITE, 1, "Alpha", 11, "2024-10-01T00:00:00Z")
    store.records[(SITE, 2)] = PageRecord(SITE, 2, "Beta", 20, "2024-10-01T00:00:00Z")
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "Alpha"), (2, "Beta")], None)}},
        pages={(SITE, 1): page_factory(1, "Alpha", 12), (SITE, 2): page_factory(2, "Beta", 20)},
        revisions={(SITE, "Alpha"): 12, (SITE, "Beta"): WikiApiError("timeout")},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    _orchestrator(cfg, client, store, sleeps).run()

    assert client.count("fetch") == 2
    assert store.records[(SITE, 1)].revision_id == 12
    assert store.records[(SITE, 1)].last_fetched_at == "2024-11-01T12:00:00Z"


def test_new_page_does_not_look_up_remote_revision(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "Alpha")], None)}},
        pages={(SITE, 1): page_factory(1, "Alpha", 11)},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    _orchestrator(cfg, client, store, sleeps).run()
    assert client.count("revision") == 0
    assert client.count("fetch") == 1


def test_failed_fetch_does_not_abort_category(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "One"), (2, "Two"), (3, "Three")], None)}},
        pages={
            (SITE, 1): page_factory(1, "One"),
            (SITE, 2): WikiApiError("HTTP 500", status_code=500),
            (SITE, 3): page_factory(3, "Three"),
        },
    )
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run()

    assert sorted(store.records) == [(SITE, 1), (SITE, 3)]
    assert summary.sites[0].fetch_failures == 1
    assert summary.sites[0].saved == 2


def test_store_failure_is_logged_and_crawl_continues(config_factory, fake_client_cls, store, page_factory, sleeps, caplog):
    store.fail_on.add(1)
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "One"), (2, "Two")], None)}},
        pages={(SITE, 1): page_factory(1, "One"), (SITE, 2): page_factory(2, "Two")},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    with caplog.at_level("ERROR"):
        summary = _orchestrator(cfg, client, store, sleeps).run()

    assert list(store.records) == [(SITE, 2)]
    assert summary.sites[0].save_failures == 1
    assert "save failed" in caplog.text


def test_failed_listing_moves_on_to_next_category(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={
            (SITE, "Category:Broken"): {None: ([(1, "One")], "t1"), "t1": WikiApiError("malformed JSON")},
            (SITE, "Category:Fine"): {None: ([(2, "Two")], None)},
        },
        pages={(SITE, 1): page_factory(1, "One"), (SITE, 2): page_factory(2, "Two")},
    )
    cfg = config_factory(seed_categories=("Category:Broken", "Category:Fine"))
    summary = _orchestrator(cfg, client, store, sleeps).run()

    assert sorted(store.records) == [(SITE, 1), (SITE, 2)]
    assert summary.sites[0].category_failures == 1
    assert summary.sites[0].pagination_calls == 2


def test_empty_seed_list_is_a_noop(config_factory, fake_client_cls, store, sleeps, caplog):
    client = fake_client_cls()
    cfg = config_factory(seed_categories=("", "   "))
    with caplog.at_level("INFO"):
        summary = _orchestrator(cfg, client, store, sleeps).run()
    assert client.calls == []
    assert summary.sites[0].categories == 0
    assert "no categories to crawl" in caplog.text


def test_category_list_dedupes_case_insensitively_and_prefixes(config_factory, fake_client_cls, store, sleeps):
    cfg = config_factory(
        seed_categories=("Category:Heroes", "category:heroes", "Villains"),
        site_seed_categories={SITE: ("Category:Villains", "Places")},
    )
    orch = _orchestrator(cfg, fake_client_cls(), store, sleeps)
    assert orch.resolve_categories(SITE) == ["Category:Heroes", "Category:Villains", "Category:Places"]


def test_discovered_categories_follow_seeds(config_factory, fake_client_cls, store, sleeps):
    class _Discovery:
        def site_categories(self, site, cancel=None):
            return CategorySet(["Category:Zeta", "Category:heroes", "Category:Alpha"])

    cfg = config_factory(seed_categories=("Category:Heroes",), enable_category_discovery=True)
    orch = _orchestrator(cfg, fake_client_cls(), store, sleeps, discovery=_Discovery())
    assert orch.resolve_categories(SITE) == ["Category:Heroes", "Category:Alpha", "Category:Zeta"]


def test_discovery_ignored_when_disabled(config_factory, fake_client_cls, store, sleeps):
    class _Discovery:
        def site_categories(self, site, cancel=None):
            raise AssertionError("should not be asked")

    cfg = config_factory(seed_categories=("Category:A",), enable_category_discovery=False)
    orch = _orchestrator(cfg, fake_client_cls(), store, sleeps, discovery=_Discovery())
    assert orch.resolve_categories(SITE) == ["Category:A"]


def test_member_without_title_gets_synthesized_name(config_factory, fake_client_cls, store, page_factory, sleeps):
    page = page_factory(9, "")
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(9, "page-9")], None)}},
        pages={(SITE, 9): page},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    _orchestrator(cfg, client, store, sleeps).run()
    assert store.records[(SITE, 9)].title == "page-9"


def test_delays_after_each_list_call_and_page_fetch(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "A")], "t1"), "t1": ([(2, "B")], None)}},
        pages={(SITE, 1): page_factory(1, "A"), (SITE, 2): page_factory(2, "B")},
    )
    cfg = config_factory(seed_categories=("Category:X",), delay_ms_between_calls=250, pagination_delay_ms=300)
    _orchestrator(cfg, client, store, sleeps).run()
    assert sleeps == [0.3, 0.25, 0.3, 0.25]


def test_cancel_before_run_does_nothing(config_factory, fake_client_cls, store, sleeps):
    client = fake_client_cls(members={(SITE, "Category:X"): {None: ([(1, "A")], None)}})
    cancel = threading.Event()
    cancel.set()
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run(cancel)
    assert summary.cancelled is True
    assert client.calls == []


def test_cancel_is_observed_at_page_boundary(config_factory, fake_client_cls, store, page_factory, sleeps):
    cancel = threading.Event()

    class _CancellingClient(fake_client_cls):
        def fetch_page(self, site, *, page_id=None, title=None):
            page = super().fetch_page(site, page_id=page_id, title=title)
            cancel.set()
            return page

    client = _CancellingClient(
        members={(SITE, "Category:X"): {None: ([(1, "A"), (2, "B")], None)}},
        pages={(SITE, 1): page_factory(1, "A"), (SITE, 2): page_factory(2, "B")},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run(cancel)

    # the in-flight page completes and is stored; the next one is never started
    assert list(store.records) == [(SITE, 1)]
    assert client.count("fetch") == 1
    assert summary.cancelled is True


def test_cancel_stops_before_next_continuation_request(config_factory, fake_client_cls, store, page_factory, sleeps):
    cancel = threading.Event()

    class _CancellingClient(fake_client_cls):
        def fetch_page(self, site, *, page_id=None, title=None):
            page = super().fetch_page(site, page_id=page_id, title=title)
            cancel.set()
            return page

    client = _CancellingClient(
        members={(SITE, "Category:X"): {None: ([(1, "A")], "t1"), "t1": ([(2, "B")], None)}},
        pages={(SITE, 1): page_factory(1, "A"), (SITE, 2): page_factory(2, "B")},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run(cancel)

    assert client.count("members") == 1
    assert list(store.records) == [(SITE, 1)]
    assert summary.cancelled is True
    assert summary.sites[0].pagination_calls == 1


def test_cancel_during_empty_batch_listing(config_factory, fake_client_cls, store, sleeps):
    cancel = threading.Event()

    class _CancellingClient(fake_client_cls):
        def category_members(self, site, category, token=None):
            batch = super().category_members(site, category, token)
            cancel.set()
            return batch

    client = _CancellingClient(members={(SITE, "Category:X"): {None: ([], "t1"), "t1": ([], None)}})
    cfg = config_factory(seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run(cancel)

    assert client.count("members") == 1
    assert summary.cancelled is True


def test_running_twice_leaves_same_store_state(config_factory, fake_client_cls, store, page_factory, sleeps):
    client = fake_client_cls(
        members={(SITE, "Category:X"): {None: ([(1, "A"), (2, "B")], None)}},
        pages={(SITE, 1): page_factory(1, "A"), (SITE, 2): page_factory(2, "B")},
    )
    cfg = config_factory(seed_categories=("Category:X",))
    orch = _orchestrator(cfg, client, store, sleeps)
    orch.run()
    first = (dict(store.records), dict(store.bodies))
    orch.run()
    assert (dict(store.records), dict(store.bodies)) == first


def test_duplicate_cleanup_runs_after_each_category_when_enabled(config_factory, fake_client_cls, store, page_factory, sleeps):
    store.records[(SITE, 7)] = PageRecord(SITE, 7, "Alpha", None, "2020-01-01T00:00:00Z")
    store.records[(SITE, 8)] = PageRecord(SITE, 8, "ALPHA", None, "2020-01-01T00:00:00Z")
    client = fake_client_cls(
        members={
            (SITE, "Category:X"): {None: ([(1, "Alpha")], None)},
            (SITE, "Category:Y"): {None: ([], None)},
        },
        pages={(SITE, 1): page_factory(1, "Alpha")},
    )
    cfg = config_factory(seed_categories=("Category:X", "Category:Y"), cleanup_duplicates=True)
    summary = _orchestrator(cfg, client, store, sleeps).run()

    assert store.cleanup_calls == 2
    # same exact title: the older copy goes; a title differing only in case is another page
    assert sorted(store.records) == [(SITE, 1), (SITE, 8)]
    assert summary.sites[0].duplicates_removed == 1


def test_sites_are_crawled_in_order_with_separate_seen_sets(config_factory, fake_client_cls, store, page_factory, sleeps):
    other = "https://other.example.org"
    client = fake_client_cls(
        members={
            (SITE, "Category:X"): {None: ([(1, "A")], None)},
            (other, "Category:X"): {None: ([(1, "A")], None)},
        },
        pages={(SITE, 1): page_factory(1, "A"), (other, 1): page_factory(1, "A")},
    )
    cfg = config_factory(wikis=(SITE, other), seed_categories=("Category:X",))
    summary = _orchestrator(cfg, client, store, sleeps).run()
    assert [c[1] for c in client.calls if c[0] == "fetch"] == [SITE, other]
    assert [s.site for s in summary.sites] == [SITE, other]
