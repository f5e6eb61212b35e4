import logging
from typing import Any, Callable, Dict, List, Optional

from lorekeeper.config import StorageConfig
from lorekeeper.db import neo4j_connector
from lorekeeper.errors import PersistenceError

logger = logging.getLogger(__name__)

CONSTRAINTS = (
    (
        "page_key",
        "CREATE CONSTRAINT page_key IF NOT EXISTS FOR (p:Page) REQUIRE (p.site, p.page_id) IS UNIQUE",
    ),
    (
        "page_body_key",
        "CREATE CONSTRAINT page_body_key IF NOT EXISTS "
        "FOR (b:PageBody) REQUIRE (b.site, b.page_id, b.format) IS UNIQUE",
    ),
)


def _runner(run_cypher_fn: Optional[Callable]) -> Callable[..., List[Dict[str, Any]]]:
    return run_cypher_fn or neo4j_connector.run_cypher


def clear_page_data(run_cypher_fn: Optional[Callable] = None) -> Dict[str, int]:
    """Delete every Page and PageBody node.

    Returns counts observed before deletion.
    """
    run = _runner(run_cypher_fn)
    pb = run("MATCH (p:Page) RETURN count(p) AS cnt")
    bb = run("MATCH (b:PageBody) RETURN count(b) AS cnt")
    pages_before = (pb[0].get("cnt") if pb else 0) or 0
    bodies_before = (bb[0].get("cnt") if bb else 0) or 0

    # bodies go with their page; the second pass catches orphans
    run("MATCH (p:Page) OPTIONAL MATCH (p)-[:HAS_BODY]->(b:PageBody) DETACH DELETE p, b")
    run("MATCH (b:PageBody) DETACH DELETE b")

    return {"deleted_pages": pages_before, "deleted_bodies": bodies_before}


def bootstrap_schema(config: StorageConfig, *, run_cypher_fn: Optional[Callable] = None) -> Dict[str, Any]:
    """One-time store initialization, run before any crawl work.

    - "drop": remove page data and constraints, then recreate the schema
    - "truncate": ensure the schema, then remove page data
    - no reset: ensure the schema only

    Raises ConfigurationError (via ``config.reset_mode``) before touching the
    store when both reset modes are configured.
    """
    mode = config.reset_mode
    run = _runner(run_cypher_fn)
    summary: Dict[str, Any] = {"reset": mode, "deleted_pages": 0, "deleted_bodies": 0}

    try:
        if mode == "drop":
            summary.update(clear_page_data(run))
            for name, _ in CONSTRAINTS:
                run(f"DROP CONSTRAINT {name} IF EXISTS")
            logger.warning("store reset=drop pages=%s bodies=%s", summary["deleted_pages"], summary["deleted_bodies"])

        for _, statement in CONSTRAINTS:
            run(statement)

        if mode == "truncate":
            summary.update(clear_page_data(run))
            logger.warning("store reset=truncate pages=%s bodies=%s", summary["deleted_pages"], summary["deleted_bodies"])
    except PersistenceError:
        raise
    except Exception as exc:
        raise PersistenceError(f"schema bootstrap failed: {exc}") from exc

    logger.info("store schema ready reset=%s", mode or "none")
    return summary
