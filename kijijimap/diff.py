"""Identity lookups for separating new ads from ones already stored."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Set, TypeVar, Union

from .db import DocumentStore, get_path
from .models import ListingSummary, RawAd

TItem = TypeVar("TItem")
KeyFunc = Callable[[TItem], str]


def load_known_ids(database: DocumentStore, collection: str, key: str) -> Set[str]:
    """Return the identity of every document in ``collection``.

    Only the ``key`` field is projected. Store failures propagate as
    ``StoreUnavailable``.
    """
    documents = database.find(collection, projection=[key])
    known: Set[str] = set()
    for document in documents:
        value = get_path(document, key)
        if value is not None:
            known.add(str(value))
    return known


def _unseen_items(
    items: Iterable[TItem],
    known_ids: Set[str],
    key_fn: KeyFunc,
) -> List[TItem]:
    seen: Set[str] = set()
    unseen = []
    for item in items:
        item_id = key_fn(item)
        if item_id in known_ids or item_id in seen:
            continue
        seen.add(item_id)
        unseen.append(item)
    return unseen


def candidate_id(item: Union[ListingSummary, RawAd]) -> str:
    if isinstance(item, RawAd):
        return item.id
    return item.listing_id


def filter_candidates(
    candidates: Iterable[TItem],
    known_ids: Set[str],
) -> List[TItem]:
    """Keep candidates whose id is not stored yet, in source order."""
    return _unseen_items(candidates, known_ids, key_fn=candidate_id)


def filter_documents(
    documents: Iterable[Dict[str, Any]],
    known_ids: Set[str],
    key: str,
) -> List[Dict[str, Any]]:
    """Keep documents whose ``key`` is not in ``known_ids``, first occurrence wins."""
    return _unseen_items(documents, known_ids, key_fn=lambda doc: str(get_path(doc, key)))
