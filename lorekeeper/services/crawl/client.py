"""MediaWiki ``api.php`` client.

Every response is decoded here into the plain shapes from ``base`` (``Batch``,
``MemberRef``, ``FetchedPage``); callers never see raw JSON. Any non-200 status,
transport error, malformed payload or missing field raises ``WikiApiError``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from lorekeeper.config import DEFAULT_USER_AGENT, CrawlerConfig
from lorekeeper.errors import WikiApiError

from .base import Batch, FetchedPage, MemberRef, Revision, normalize_category

logger = logging.getLogger(__name__)


def api_url(site: str) -> str:
    return f"{site.rstrip('/')}/api.php"


def _legacy_text(value: Any) -> Optional[str]:
    # formatversion=2 gives plain strings; older servers wrap them as {"*": "..."}
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("*"), str):
        return value["*"]
    return None


class WikiClient:
    name = "mediawiki"

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        headers: Optional[Dict[str, str]] = None,
        retries: int = 3,
        member_limit: int = 100,
        category_limit: int = 500,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.timeout = float(timeout)
        self.headers = headers or {"User-Agent": DEFAULT_USER_AGENT}
        self.member_limit = member_limit
        self.category_limit = category_limit
        self._transport = transport or httpx.HTTPTransport(retries=retries)
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_config(cls, config: CrawlerConfig, **kwargs: Any) -> "WikiClient":
        return cls(
            timeout=config.http_timeout,
            headers={"User-Agent": config.user_agent},
            retries=config.http_retries,
            **kwargs,
        )

    def __enter__(self) -> "WikiClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # --- Public API ---
    def category_members(self, site: str, category: str, token: Optional[str] = None) -> Batch:
        """One page of ``list=categorymembers``; items are ``MemberRef``."""
        params = {
            "action": "query",
            "list": "categorymembers",
            "cmtitle": category,
            "cmlimit": str(self.member_limit),
        }
        if token:
            params["cmcontinue"] = token
        payload = self._get_json(site, params)
        rows = self._query_list(payload, "categorymembers")
        items: List[MemberRef] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            page_id = row.get("pageid")
            if not isinstance(page_id, int) or isinstance(page_id, bool):
                page_id = None
            title = (row.get("title") or "").strip() if isinstance(row.get("title"), str) else ""
            if page_id is None and not title:
                logger.warning("member without pageid or title site=%s category=%s", site, category)
                continue
            if not title:
                title = f"page-{page_id}"
            items.append(MemberRef(page_id=page_id, title=title))
        return Batch(items=items, next_token=self._continue_token(payload, "cmcontinue"))

    def all_categories(self, site: str, token: Optional[str] = None) -> Batch:
        """One page of ``list=allcategories``; items are raw category names (unprefixed)."""
        params = {
            "action": "query",
            "list": "allcategories",
            "aclimit": str(self.category_limit),
        }
        if token:
            params["accontinue"] = token
        payload = self._get_json(site, params)
        rows = self._query_list(payload, "allcategories")
        names: List[str] = []
        for row in rows:
            if isinstance(row, dict):
                name = row.get("category")
                if not isinstance(name, str):
                    name = row.get("*")
            else:
                name = row
            if isinstance(name, str) and name.strip():
                names.append(name)
        return Batch(items=names, next_token=self._continue_token(payload, "accontinue"))

    def fetch_page(self, site: str, *, page_id: Optional[int] = None, title: Optional[str] = None) -> FetchedPage:
        """Rendered HTML, revision id and categories of one page via ``action=parse``."""
        params = {"action": "parse", "prop": "text|categories|revid"}
        if page_id is not None:
            params["pageid"] = str(page_id)
        elif title:
            params["page"] = title
        else:
            raise WikiApiError("fetch_page needs a page id or a title")
        payload = self._get_json(site, params)
        parse = payload.get("parse")
        if not isinstance(parse, dict):
            raise WikiApiError(f"parse response without 'parse' object for {title or page_id}", url=api_url(site))

        body = _legacy_text(parse.get("text"))
        if body is None:
            raise WikiApiError(f"parse response without text for {title or page_id}", url=api_url(site))

        pid = parse.get("pageid", page_id)
        if not isinstance(pid, int) or isinstance(pid, bool):
            pid = page_id
        if pid is None:
            raise WikiApiError(f"parse response without pageid for {title}", url=api_url(site))

        revid = parse.get("revid")
        revision: Optional[Revision] = revid if isinstance(revid, (int, str)) and not isinstance(revid, bool) else None

        categories: List[str] = []
        for cat in parse.get("categories") or []:
            raw = cat.get("category") if isinstance(cat, dict) else None
            if raw is None and isinstance(cat, dict):
                raw = cat.get("*")
            name = normalize_category(raw) if isinstance(raw, str) else None
            if name:
                categories.append(name)

        resolved_title = parse.get("title") if isinstance(parse.get("title"), str) else None
        return FetchedPage(
            page_id=pid,
            title=resolved_title or title or f"page-{pid}",
            body=body,
            revision_id=revision,
            categories=categories,
        )

    def latest_revision(self, site: str, title: str) -> Optional[Revision]:
        """Current revision id of a page by title, None if the page does not exist."""
        params = {"action": "query", "prop": "revisions", "rvprop": "ids", "titles": title}
        payload = self._get_json(site, params)
        query = payload.get("query")
        if not isinstance(query, dict):
            raise WikiApiError(f"revision response without 'query' for {title}", url=api_url(site))
        pages = query.get("pages") or []
        if isinstance(pages, dict):
            pages = list(pages.values())
        for page in pages:
            if not isinstance(page, dict) or page.get("missing"):
                continue
            revisions = page.get("revisions") or []
            if revisions and isinstance(revisions[0], dict):
                revid = revisions[0].get("revid")
                if isinstance(revid, (int, str)) and not isinstance(revid, bool):
                    return revid
        return None

    # --- Internals ---
    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers=self.headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _get_json(self, site: str, params: Dict[str, str]) -> Dict[str, Any]:
        url = api_url(site)
        query = {"format": "json", "formatversion": "2", **params}
        try:
            resp = self._http().get(url, params=query)
        except httpx.HTTPError as exc:
            raise WikiApiError(f"request failed: {exc}", url=url) from exc
        if resp.status_code != 200:
            raise WikiApiError(f"HTTP {resp.status_code}", url=str(resp.url), status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise WikiApiError(f"malformed JSON: {exc}", url=str(resp.url), status_code=resp.status_code) from exc
        if not isinstance(payload, dict):
            raise WikiApiError("unexpected JSON document (not an object)", url=str(resp.url))
        err = payload.get("error")
        if isinstance(err, dict):
            raise WikiApiError(f"API error {err.get('code')}: {err.get('info')}", url=str(resp.url))
        return payload

    @staticmethod
    def _query_list(payload: Dict[str, Any], key: str) -> List[Any]:
        query = payload.get("query")
        if query is None:
            # an exhausted listing may omit 'query' entirely
            if "batchcomplete" in payload or "continue" in payload:
                return []
            raise WikiApiError(f"list response without 'query' ({key})")
        if not isinstance(query, dict):
            raise WikiApiError(f"list response with malformed 'query' ({key})")
        rows = query.get(key, [])
        if not isinstance(rows, list):
            raise WikiApiError(f"list response with malformed '{key}'")
        return rows

    @staticmethod
    def _continue_token(payload: Dict[str, Any], field: str) -> Optional[str]:
        cont = payload.get("continue")
        if not isinstance(cont, dict):
            return None
        token = cont.get(field)
        if token is None:
            return None
        token = str(token)
        return token or None
