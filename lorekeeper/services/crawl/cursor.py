from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional

from .base import Batch

logger = logging.getLogger(__name__)

FetchBatch = Callable[[Optional[str]], Batch]


class ContinuationCursor:
    """Walks a continuation-token listing one batch at a time.

    ``fetch(token)`` performs a single list call. The walk starts from
    ``start_token`` (None for the beginning) and stops when a batch comes back
    without a token. All walk state is the token itself, so a walk interrupted
    after any batch can be resumed by passing ``resume_token`` as ``start_token``
    to a new cursor. Batches with no items but a token are followed like any
    other. Errors raised by ``fetch`` propagate to the caller unchanged.

    ``after_call`` runs after every list call, before the batch is handed out;
    the crawler uses it for the inter-request delay.
    """

    def __init__(
        self,
        fetch: FetchBatch,
        *,
        label: str = "",
        start_token: Optional[str] = None,
        after_call: Optional[Callable[[], None]] = None,
    ) -> None:
        self._fetch = fetch
        self.label = label
        self.start_token = start_token
        self._after_call = after_call
        self.calls = 0
        self.resume_token: Optional[str] = start_token
        self.exhausted = False

    def __iter__(self) -> Iterator[Batch]:
        token = self.start_token
        while True:
            batch = self._fetch(token)
            self.calls += 1
            if self._after_call is not None:
                self._after_call()
            next_token = batch.next_token or None
            if next_token is not None and next_token == token:
                logger.warning("continuation token repeated, stopping listing=%s token=%s", self.label, token)
                next_token = None
            yield batch
            # batch consumed; resuming from here must not replay it
            self.resume_token = next_token
            if next_token is None:
                self.exhausted = True
                return
            token = next_token
