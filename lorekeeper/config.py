"""Runtime configuration.

Settings are read once from environment variables (optionally seeded from a
``.env`` file at the project root) into immutable pydantic models, which are then
passed explicitly to the orchestrator, the discovery engine and the store.

Crawler settings:

- LOREKEEPER_WIKIS: comma separated site base addresses
- LOREKEEPER_SEED_CATEGORIES: comma separated seed categories for every site
- LOREKEEPER_SITE_SEEDS: JSON object mapping a site to extra seed categories
- LOREKEEPER_DELAY_MS (default 250), LOREKEEPER_PAGINATION_DELAY_MS (default 300)
- LOREKEEPER_ENABLE_DISCOVERY, LOREKEEPER_ENABLE_CRAWLER, LOREKEEPER_CLEANUP_DUPLICATES
- LOREKEEPER_DATA_DIR (default ./data), LOREKEEPER_MIN_SITES_FOR_GLOBAL
- LOREKEEPER_USER_AGENT, LOREKEEPER_HTTP_TIMEOUT, LOREKEEPER_HTTP_RETRIES
- LOREKEEPER_AUTOSTART

Storage settings:

- NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD
- LOREKEEPER_DROP_ON_START, LOREKEEPER_TRUNCATE_ON_START
"""

from __future__ import annotations

import json
import os
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from lorekeeper.errors import ConfigurationError

DEFAULT_USER_AGENT = "LoreKeeperCrawler/0.1 (+https://github.com/lorekeeper/lorekeeper)"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class CrawlerConfig(BaseModel):
    """What to crawl and how politely."""

    model_config = ConfigDict(frozen=True)

    wikis: Tuple[str, ...] = ()
    seed_categories: Tuple[str, ...] = ()
    site_seed_categories: Dict[str, Tuple[str, ...]] = Field(default_factory=dict)
    delay_ms_between_calls: int = Field(250, ge=0)
    pagination_delay_ms: int = Field(300, ge=0)
    enable_category_discovery: bool = False
    enable_crawler: bool = True
    cleanup_duplicates: bool = False
    data_directory: str = "data"
    min_sites_for_global: Optional[int] = None
    user_agent: str = DEFAULT_USER_AGENT
    http_timeout: float = Field(60.0, gt=0)
    http_retries: int = Field(3, ge=0)
    autostart: bool = False

    @property
    def page_delay_seconds(self) -> float:
        return self.delay_ms_between_calls / 1000.0

    @property
    def pagination_delay_seconds(self) -> float:
        return self.pagination_delay_ms / 1000.0

    def seeds_for(self, site: str) -> List[str]:
        """Global seeds followed by the seeds configured for this site only."""
        return list(self.seed_categories) + list(self.site_seed_categories.get(site, ()))

    def resolved_data_directory(self) -> str:
        return os.path.abspath(self.data_directory)


class StorageConfig(BaseModel):
    """Neo4j connection settings plus the optional destructive reset mode."""

    model_config = ConfigDict(frozen=True)

    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: Optional[str] = None
    drop_on_start: bool = False
    truncate_on_start: bool = False

    @property
    def reset_mode(self) -> Optional[str]:
        """Return "drop", "truncate" or None; both set at once is a startup error."""
        if self.drop_on_start and self.truncate_on_start:
            raise ConfigurationError(
                "Storage: LOREKEEPER_DROP_ON_START and LOREKEEPER_TRUNCATE_ON_START cannot both be true."
            )
        if self.drop_on_start:
            return "drop"
        if self.truncate_on_start:
            return "truncate"
        return None


def load_env_file(path: Optional[str] = None) -> None:
    """Load variables from a .env file into os.environ.

    Only sets variables that aren't already present in the process environment.
    """
    if path is None:
        root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        path = os.path.join(root_dir, ".env")
    if not os.path.isfile(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            s = line.strip()
            if not s or s.startswith("#") or "=" not in s:
                continue
            key, val = s.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")
            if key and not os.environ.get(key):
                os.environ[key] = val


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    s = raw.strip().lower()
    if s in _TRUE_VALUES:
        return True
    if s in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean flag, got {raw!r}")


def _int(env: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _csv(env: Mapping[str, str], name: str) -> Tuple[str, ...]:
    raw = env.get(name) or ""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


def _site_seeds(env: Mapping[str, str]) -> Dict[str, Tuple[str, ...]]:
    raw = (env.get("LOREKEEPER_SITE_SEEDS") or "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"LOREKEEPER_SITE_SEEDS is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("LOREKEEPER_SITE_SEEDS must be a JSON object of site -> [categories]")
    out: Dict[str, Tuple[str, ...]] = {}
    for site, cats in data.items():
        if isinstance(cats, str):
            cats = [cats]
        if not isinstance(cats, list):
            raise ConfigurationError(f"LOREKEEPER_SITE_SEEDS[{site!r}] must be a list")
        out[str(site)] = tuple(str(c) for c in cats if c is not None)
    return out


def load_crawler_config(env: Optional[Mapping[str, str]] = None) -> CrawlerConfig:
    """Build a CrawlerConfig from the environment (or the given mapping)."""
    if env is None:
        load_env_file()
        env = os.environ
    min_sites = _int(env, "LOREKEEPER_MIN_SITES_FOR_GLOBAL", None)
    try:
        return CrawlerConfig(
            wikis=_csv(env, "LOREKEEPER_WIKIS"),
            seed_categories=_csv(env, "LOREKEEPER_SEED_CATEGORIES"),
            site_seed_categories=_site_seeds(env),
            delay_ms_between_calls=_int(env, "LOREKEEPER_DELAY_MS", 250),
            pagination_delay_ms=_int(env, "LOREKEEPER_PAGINATION_DELAY_MS", 300),
            enable_category_discovery=_flag(env, "LOREKEEPER_ENABLE_DISCOVERY", False),
            enable_crawler=_flag(env, "LOREKEEPER_ENABLE_CRAWLER", True),
            cleanup_duplicates=_flag(env, "LOREKEEPER_CLEANUP_DUPLICATES", False),
            data_directory=(env.get("LOREKEEPER_DATA_DIR") or "data").strip(),
            min_sites_for_global=min_sites,
            user_agent=(env.get("LOREKEEPER_USER_AGENT") or DEFAULT_USER_AGENT).strip(),
            http_timeout=_float(env, "LOREKEEPER_HTTP_TIMEOUT", 60.0),
            http_retries=_int(env, "LOREKEEPER_HTTP_RETRIES", 3),
            autostart=_flag(env, "LOREKEEPER_AUTOSTART", False),
        )
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError subclass
        raise ConfigurationError(f"Invalid crawler configuration: {exc}") from exc


def load_storage_config(env: Optional[Mapping[str, str]] = None) -> StorageConfig:
    """Build a StorageConfig from the environment (or the given mapping)."""
    if env is None:
        load_env_file()
        env = os.environ
    return StorageConfig(
        neo4j_uri=env.get("NEO4J_URI") or "bolt://localhost:7687",
        neo4j_user=env.get("NEO4J_USER") or "neo4j",
        neo4j_password=env.get("NEO4J_PASSWORD") or None,
        drop_on_start=_flag(env, "LOREKEEPER_DROP_ON_START", False),
        truncate_on_start=_flag(env, "LOREKEEPER_TRUNCATE_ON_START", False),
    )
