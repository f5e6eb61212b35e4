from __future__ import annotations

import logging
from typing import Callable, Optional

from lorekeeper.errors import WikiApiError

from .base import PageRecord, Revision

logger = logging.getLogger(__name__)


def should_skip(local: Optional[PageRecord], remote_revision: Optional[Revision]) -> bool:
    """True only when the stored revision is known to equal the remote one.

    Comparison is exact: same type and same value, so ``"42"`` never matches
    ``42``. A missing local record, a local record without a revision, or an
    unknown remote revision all mean the page must be fetched.
    """
    if local is None or remote_revision is None or local.revision_id is None:
        return False
    return type(local.revision_id) is type(remote_revision) and local.revision_id == remote_revision


def lookup_remote_revision(
    lookup: Callable[[str, str], Optional[Revision]],
    site: str,
    title: str,
) -> Optional[Revision]:
    """Call ``lookup(site, title)``; a failed lookup counts as an unknown revision."""
    try:
        return lookup(site, title)
    except WikiApiError as exc:
        logger.warning("revision lookup failed, will fetch site=%s title=%r error=%s", site, title, exc)
        return None
