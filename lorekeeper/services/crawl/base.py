from __future__ import annotations

import time
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

CATEGORY_PREFIX = "Category:"

Revision = Union[int, str]


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def normalize_category(raw: Optional[str]) -> Optional[str]:
    """Return ``Category:<name>`` for a raw or already-prefixed name, None for blanks."""
    if raw is None:
        return None
    name = str(raw).strip()
    if not name:
        return None
    if name.casefold().startswith(CATEGORY_PREFIX.casefold()):
        rest = name[len(CATEGORY_PREFIX):].strip()
        return CATEGORY_PREFIX + rest if rest else None
    return CATEGORY_PREFIX + name


def category_sort_key(name: str):
    # casefold first; the raw spelling breaks ties so ordering is total
    return (name.casefold(), name)


class CategorySet:
    """Insertion-ordered set of category names compared case-insensitively.

    The first spelling added for a name is the one kept.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._items: Dict[str, str] = {}
        self.update(names)

    @staticmethod
    def key(name: str) -> str:
        return name.casefold()

    def add(self, name: str) -> bool:
        k = self.key(name)
        if k in self._items:
            return False
        self._items[k] = name
        return True

    def update(self, names: Iterable[str]) -> None:
        for n in names:
            self.add(n)

    def get(self, name: str) -> Optional[str]:
        return self._items.get(self.key(name))

    def intersection(self, other: "CategorySet") -> "CategorySet":
        return CategorySet(n for k, n in self._items.items() if k in other._items)

    def union(self, other: "CategorySet") -> "CategorySet":
        out = CategorySet(self)
        out.update(other)
        return out

    def sorted(self) -> List[str]:
        return sorted(self._items.values(), key=category_sort_key)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.key(name) in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CategorySet):
            return NotImplemented
        return self._items.keys() == other._items.keys()

    def __repr__(self) -> str:
        return f"CategorySet({self.sorted()!r})"


@dataclass
class MemberRef:
    """One entry of a category member listing."""

    page_id: Optional[int]
    title: str

    def dedupe_key(self) -> str:
        if self.page_id is not None:
            return f"id:{self.page_id}"
        return f"title:{self.title.casefold()}"


@dataclass
class Batch:
    """One page of a paginated list call and the token for the next one."""

    items: List[Any]
    next_token: Optional[str] = None


@dataclass
class FetchedPage:
    page_id: int
    title: str
    body: str
    revision_id: Optional[Revision] = None
    categories: List[str] = field(default_factory=list)


@dataclass
class PageRecord:
    site: str
    page_id: int
    title: str
    revision_id: Optional[Revision]
    last_fetched_at: str  # ISO8601

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PageBody:
    site: str
    page_id: int
    body: str
    fetched_at: str  # ISO8601
    format: str = "html"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
