"""Page-granular, restartable traversal of a source.

``SourceCursor.pages()`` lazily pulls pages from the source provider,
starting at ``synchronization.current_page``.  It is the single producer of
work for a run: workers receive pages from it and never move the cursor
themselves.  ``advance()`` persists the next page to resume from once a
page has been fully processed.

The module also holds the helpers used to pull objects, origin ids and
next-page links out of arbitrary JSON list responses.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sync_reconciler.sync.models import Synchronization
from sync_reconciler.sync.paths import get_path, has_path

if TYPE_CHECKING:
    from sync_reconciler.sync.providers import ObjectProvider
    from sync_reconciler.sync.synchronizations import SynchronizationStore

logger = logging.getLogger(__name__)

DEFAULT_RESULT_KEYS = ("results", "items", "result", "data", "_embedded")
DEFAULT_ID_POSITIONS = ("id", "_id", "uuid", "@id")
NEXT_LINK_PATHS = ("next", "_links.next.href", "links.next", "@odata.nextLink")


@dataclass(frozen=True)
class SourceObject:
    origin_id: str
    payload: Any


@dataclass(frozen=True)
class SourcePage:
    """One page of source objects.

    Attributes:
        number: 1-based page number.
        objects: ``(origin_id, payload)`` pairs in source order.
        has_more: ``False`` when the provider declared this the last page.
        unidentified: Payloads for which no origin id could be found.
    """

    number: int
    objects: list[SourceObject] = field(default_factory=list)
    has_more: bool = False
    unidentified: list[Any] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.objects) + len(self.unidentified)


# ------------------------------------------------------------------
# Response extraction
# ------------------------------------------------------------------


def extract_objects(body: Any, results_position: str | None = None) -> list[Any]:
    """Pull the list of objects out of a list response.

    With *results_position* the list is read from that dotted path
    (``"_root"`` means the body itself).  Otherwise a bare list body is used
    as-is and the usual envelope keys are tried in turn.
    """
    if results_position:
        found = body if results_position == "_root" else get_path(body, results_position)
        return _as_list(found)
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in DEFAULT_RESULT_KEYS:
            if key in body:
                return _as_list(body[key])
    return []


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        # HAL style: {"_embedded": {"items": [...]}}
        lists = [item for item in value.values() if isinstance(item, list)]
        if len(lists) == 1:
            return lists[0]
        return list(value.values())
    return [value]


def extract_next_link(body: Any) -> str | None:
    """Return the next-page link advertised by a list response, if any."""
    if not isinstance(body, dict):
        return None
    for path in NEXT_LINK_PATHS:
        link = get_path(body, path)
        if isinstance(link, str) and link:
            return link
    return None


def extract_origin_id(payload: Any, id_position: str | None = None) -> str | None:
    """Return the source-native identifier of *payload* as a string."""
    positions = (id_position,) if id_position else DEFAULT_ID_POSITIONS
    for position in positions:
        if has_path(payload, position):
            value = get_path(payload, position)
            if value is not None and value != "":
                return str(value)
    return None


# ------------------------------------------------------------------
# Cursor
# ------------------------------------------------------------------


class SourceCursor:
    """Restartable page producer for one synchronization.

    Args:
        provider: Source object provider.
        store: Synchronization store used by ``advance()``; when ``None``
            progress is only kept on the returned copies.
    """

    def __init__(
        self,
        provider: ObjectProvider,
        store: SynchronizationStore | None = None,
    ) -> None:
        self.provider = provider
        self.store = store

    def pages(self, synchronization: Synchronization) -> Iterator[SourcePage]:
        """Yield pages from ``current_page`` until the source is exhausted.

        The sequence ends on an empty page or a page with ``has_more``
        set to ``False``.
        """
        id_position = synchronization.source.config.get("id_position")
        number = synchronization.current_page
        while True:
            logger.debug("Fetching page %d of %s", number, synchronization.id)
            payloads, has_more = self.provider.list(synchronization, number)
            if not payloads:
                return

            objects: list[SourceObject] = []
            unidentified: list[Any] = []
            for payload in payloads:
                origin_id = extract_origin_id(payload, id_position)
                if origin_id is None:
                    logger.warning(
                        "Object without origin id on page %d of %s",
                        number,
                        synchronization.id,
                    )
                    unidentified.append(payload)
                    continue
                objects.append(SourceObject(origin_id, payload))

            yield SourcePage(
                number=number,
                objects=objects,
                has_more=has_more,
                unidentified=unidentified,
            )
            if not has_more:
                return
            number += 1

    def advance(
        self, synchronization: Synchronization, page: int
    ) -> Synchronization:
        """Record *page* as the page to resume from and persist it."""
        updated = synchronization.model_copy(update={"current_page": max(page, 1)})
        if self.store is not None:
            self.store.save(updated)
        return updated
