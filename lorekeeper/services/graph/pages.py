"""Page storage in Neo4j.

Layout: ``(:Page {site, page_id})-[:HAS_BODY]->(:PageBody {site, page_id, format})``.
Uniqueness constraints on both keys are created by ``admin.bootstrap_schema``.
Every method is a single Cypher statement, i.e. a single atomic transaction.
"""

from typing import Any, Callable, Dict, List, Optional

from lorekeeper.db import neo4j_connector
from lorekeeper.errors import PersistenceError
from lorekeeper.services.crawl.base import PageBody, PageRecord, Revision

CypherRunner = Callable[[str, Optional[dict]], List[Dict[str, Any]]]


class GraphPageStore:
    """Idempotent keyed upserts and point lookups for pages and bodies."""

    def __init__(self, run_cypher_fn: Optional[CypherRunner] = None) -> None:
        self._run_fn = run_cypher_fn

    def _run(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        run = self._run_fn or neo4j_connector.run_cypher
        try:
            return run(query, params)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"store call failed: {exc}") from exc

    def upsert_page_record(self, record: PageRecord) -> None:
        """Insert or update by (site, page_id); the key itself is never rewritten."""
        query = (
            "MERGE (p:Page {site: $site, page_id: $page_id}) "
            "SET p.title = $title, "
            "    p.revision_id = $revision_id, "
            "    p.last_fetched_at = $last_fetched_at "
            "RETURN p.page_id AS page_id"
        )
        self._run(query, record.to_dict())

    def upsert_page_body(self, body: PageBody) -> None:
        """Insert or update by (site, page_id, format); the Page must already exist."""
        query = (
            "MATCH (p:Page {site: $site, page_id: $page_id}) "
            "MERGE (b:PageBody {site: $site, page_id: $page_id, format: $format}) "
            "SET b.body = $body, b.fetched_at = $fetched_at "
            "MERGE (p)-[:HAS_BODY]->(b) "
            "RETURN b.format AS format"
        )
        res = self._run(query, body.to_dict())
        if not res:
            raise PersistenceError(
                f"no Page ({body.site}, {body.page_id}) for body format {body.format!r}; upsert the record first"
            )

    def get_page_record(self, site: str, page_id: int) -> Optional[PageRecord]:
        query = (
            "MATCH (p:Page {site: $site, page_id: $page_id}) "
            "RETURN p.site AS site, p.page_id AS page_id, p.title AS title, "
            "       p.revision_id AS revision_id, p.last_fetched_at AS last_fetched_at"
        )
        res = self._run(query, {"site": site, "page_id": page_id})
        if not res:
            return None
        row = res[0]
        return PageRecord(
            site=row.get("site") or site,
            page_id=row.get("page_id", page_id),
            title=row.get("title") or f"page-{page_id}",
            revision_id=row.get("revision_id"),
            last_fetched_at=row.get("last_fetched_at") or "",
        )

    def get_saved_revision(self, site: str, page_id: int) -> Optional[Revision]:
        record = self.get_page_record(site, page_id)
        return record.revision_id if record else None

    def get_page_body(self, site: str, page_id: int, format: str = "html") -> Optional[PageBody]:
        query = (
            "MATCH (:Page {site: $site, page_id: $page_id})-[:HAS_BODY]->(b:PageBody {format: $format}) "
            "RETURN b.body AS body, b.fetched_at AS fetched_at"
        )
        res = self._run(query, {"site": site, "page_id": page_id, "format": format})
        if not res:
            return None
        row = res[0]
        return PageBody(site=site, page_id=page_id, body=row.get("body") or "", fetched_at=row.get("fetched_at") or "", format=format)

    def remove_duplicate_pages(self, site: str) -> int:
        """Delete older Pages sharing a title with a newer one, bodies included.

        Pages are grouped by exact title and, when stored, revision id; wiki
        titles differ by case so no folding is applied. The most recently
        fetched page of a group (ties broken by the higher page id) survives.
        Returns the number of Pages removed; a second call right after returns 0.
        """
        query = (
            "MATCH (p:Page {site: $site}) "
            "WITH p.title AS title_key, coalesce(toString(p.revision_id), '') AS rev_key, p "
            "ORDER BY p.last_fetched_at DESC, p.page_id DESC "
            "WITH title_key, rev_key, collect(p) AS pages "
            "WHERE size(pages) > 1 "
            "UNWIND pages[1..] AS stale "
            "OPTIONAL MATCH (stale)-[:HAS_BODY]->(b:PageBody) "
            "WITH stale, collect(b) AS bodies "
            "FOREACH (x IN bodies | DETACH DELETE x) "
            "DETACH DELETE stale "
            "RETURN count(*) AS removed"
        )
        res = self._run(query, {"site": site})
        return int((res[0].get("removed") if res else 0) or 0)
