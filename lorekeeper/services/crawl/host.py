"""Background harvest host.

Runs one harvest (schema bootstrap, category discovery, crawl) on a worker
thread. ``start()`` and ``cancel()`` are the lifecycle hooks used by the API
lifespan and the CLI; cancellation is cooperative and takes effect at the next
category or page boundary.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from lorekeeper.config import CrawlerConfig, StorageConfig, load_crawler_config, load_storage_config
from lorekeeper.errors import ConfigurationError
from lorekeeper.services.graph.admin import bootstrap_schema
from lorekeeper.services.graph.pages import GraphPageStore

from .base import now_iso
from .client import WikiClient
from .discovery import CategoryDiscoveryEngine
from .orchestrator import CrawlOrchestrator

logger = logging.getLogger(__name__)


class HarvestHost:
    def __init__(
        self,
        crawler_config: Optional[CrawlerConfig] = None,
        storage_config: Optional[StorageConfig] = None,
        *,
        client=None,
        store=None,
        bootstrap: Optional[Callable[[StorageConfig], Any]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.crawler_config = crawler_config or load_crawler_config()
        self.storage_config = storage_config or load_storage_config()
        self._client = client
        self._store = store
        self._bootstrap = bootstrap
        self._sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._status: Dict[str, Any] = {
            "state": "idle",
            "started_at": None,
            "finished_at": None,
            "error": None,
            "error_type": None,
            "discovery": None,
            "crawl": None,
        }

    # --- Lifecycle hooks ---
    def start(self, *, discover: Optional[bool] = None, crawl: Optional[bool] = None) -> bool:
        """Start a harvest on a background thread; False if one is already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._cancel = threading.Event()
            self._thread = threading.Thread(
                target=self._run_guarded,
                kwargs={"discover": discover, "crawl": crawl},
                name="lorekeeper-harvest",
                daemon=True,
            )
            self._status.update(state="running", started_at=now_iso(), finished_at=None, error=None, error_type=None)
            self._thread.start()
            return True

    def cancel(self, timeout: Optional[float] = None) -> None:
        """Signal cancellation and wait for the worker to reach a boundary and stop."""
        thread = self._thread
        if thread is None or not thread.is_alive():
            return
        self._set_status(state="cancelling")
        self._cancel.set()
        thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker finishes; True if it is no longer running."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._status)

    # --- Work ---
    def run_once(
        self,
        cancel: Optional[threading.Event] = None,
        *,
        discover: Optional[bool] = None,
        crawl: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Run one harvest in the calling thread.

        ``discover``/``crawl`` default to the configured enable flags. The
        storage reset mode is validated before anything else, and the schema is
        bootstrapped before the first crawl request.
        """
        cancel = cancel or threading.Event()
        cfg = self.crawler_config
        discover = cfg.enable_category_discovery if discover is None else discover
        crawl = cfg.enable_crawler if crawl is None else crawl
        result: Dict[str, Any] = {"bootstrap": None, "discovery": None, "crawl": None}

        # raises ConfigurationError before any network or store work
        reset_mode = self.storage_config.reset_mode
        logger.info("harvest starting discover=%s crawl=%s reset=%s", discover, crawl, reset_mode or "none")

        client = self._client or WikiClient.from_config(cfg)
        try:
            engine = CategoryDiscoveryEngine(cfg, client=client, sleep=self._sleep)
            if crawl:
                result["bootstrap"] = self._run_bootstrap()
            if discover and not cancel.is_set():
                result["discovery"] = engine.run(cancel).to_dict()
                self._set_status(discovery=result["discovery"])
            if crawl and not cancel.is_set():
                orchestrator = CrawlOrchestrator(
                    cfg,
                    client=client,
                    store=self.get_store(),
                    discovery=engine,
                    sleep=self._sleep,
                )
                result["crawl"] = orchestrator.run(cancel).to_dict()
                self._set_status(crawl=result["crawl"])
            elif not crawl:
                logger.info("crawler disabled by configuration")
        finally:
            if self._client is None:
                client.close()
        return result

    def _run_bootstrap(self):
        if self._bootstrap is not None:
            return self._bootstrap(self.storage_config)
        return bootstrap_schema(self.storage_config)

    def get_store(self):
        if self._store is None:
            self._store = GraphPageStore()
        return self._store

    def _run_guarded(self, **kwargs: Any) -> None:
        try:
            self.run_once(self._cancel, **kwargs)
        except ConfigurationError as exc:
            logger.error("configuration error, harvest not started: %s", exc)
            self._set_status(state="failed", error=str(exc), error_type="ConfigurationError", finished_at=now_iso())
            return
        except Exception as exc:
            logger.exception("harvest failed")
            self._set_status(state="failed", error=str(exc), error_type=type(exc).__name__, finished_at=now_iso())
            return
        state = "cancelled" if self._cancel.is_set() else "finished"
        self._set_status(state=state, finished_at=now_iso())

    def _set_status(self, **updates: Any) -> None:
        with self._lock:
            self._status.update(updates)


_host: Optional[HarvestHost] = None


def get_host() -> HarvestHost:
    """Return the process-wide host, creating it from the environment on first use."""
    global _host
    if _host is None:
        _host = HarvestHost()
    return _host


def shutdown_host(timeout: Optional[float] = 30.0) -> None:
    global _host
    if _host is not None:
        _host.cancel(timeout)
        _host = None
