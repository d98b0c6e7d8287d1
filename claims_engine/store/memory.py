import copy
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import ConcurrentModificationError, DocumentNotFoundError
from .base import (
    DocumentStore,
    Filters,
    Record,
    SnapshotCallback,
    Unsubscribe,
    deliver,
    matches_filters,
    sort_records,
)

logger = logging.getLogger(__name__)


@dataclass
class _Subscription:
    collection: str
    callback: SnapshotCallback
    filters: Optional[Filters]
    order_by: Optional[str]
    descending: bool
    active: bool = True


class InMemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._collections: Dict[str, Dict[str, Record]] = {}
        self._subscriptions: List[_Subscription] = []

    def _collection(self, name: str) -> Dict[str, Record]:
        return self._collections.setdefault(name, {})

    def _select(self, collection: str, filters, order_by, descending) -> List[Record]:
        records = [
            copy.deepcopy(record)
            for record in self._collection(collection).values()
            if matches_filters(record, filters)
        ]
        return sort_records(records, order_by, descending)

    async def list(self, collection, filters=None, order_by=None, descending=False) -> List[Record]:
        return self._select(collection, filters, order_by, descending)

    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        record = self._collection(collection).get(doc_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, collection: str, data: Record) -> Record:
        doc_id = uuid.uuid4().hex
        record = copy.deepcopy(data)
        record['id'] = doc_id
        record.setdefault('version', 1)
        self._collection(collection)[doc_id] = record
        logger.debug(f"Created {collection}/{doc_id}")
        await self._notify(collection)
        return copy.deepcopy(record)

    async def update(self, collection, doc_id, data, expected_version=None) -> Record:
        documents = self._collection(collection)
        current = documents.get(doc_id)
        if current is None:
            raise DocumentNotFoundError(collection, doc_id)

        if expected_version is not None and current.get('version') != expected_version:
            raise ConcurrentModificationError(collection, doc_id, expected_version, current.get('version'))

        merged = copy.deepcopy(current)
        merged.update(copy.deepcopy(data))
        merged['id'] = doc_id
        merged['version'] = int(current.get('version') or 0) + 1
        documents[doc_id] = merged
        await self._notify(collection)
        return copy.deepcopy(merged)

    async def delete(self, collection: str, doc_id: str) -> None:
        documents = self._collection(collection)
        if doc_id not in documents:
            raise DocumentNotFoundError(collection, doc_id)
        del documents[doc_id]
        logger.debug(f"Deleted {collection}/{doc_id}")
        await self._notify(collection)

    async def subscribe(self, collection, callback, filters=None, order_by=None, descending=False) -> Unsubscribe:
        subscription = _Subscription(collection, callback, filters, order_by, descending)
        self._subscriptions.append(subscription)
        await deliver(callback, self._select(collection, filters, order_by, descending))

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)

        return unsubscribe

    async def _notify(self, collection: str) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active or subscription.collection != collection:
                continue
            snapshot = self._select(
                collection, subscription.filters, subscription.order_by, subscription.descending
            )
            await deliver(subscription.callback, snapshot)
