import asyncio
import json
import logging
import uuid
from typing import List, Optional, Set

from redis.exceptions import RedisError, WatchError

from ..errors import ConcurrentModificationError, DocumentNotFoundError, StoreError
from .base import (
    DocumentStore,
    Record,
    Unsubscribe,
    deliver,
    matches_filters,
    sort_records,
)
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

MAX_BLIND_UPDATE_ATTEMPTS = 3


class RedisDocumentStore(DocumentStore):
    """Documents as JSON strings, one key each, with a per-collection id set.

    Writes publish on ``{prefix}:{collection}:events`` so subscribers can
    re-read the collection.
    """

    def __init__(self, redis_client=None, key_prefix: str = "claims"):
        self.redis = redis_client or get_redis_client()
        self.key_prefix = key_prefix
        self._listeners: Set[asyncio.Task] = set()

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return f"{self.key_prefix}:{collection}:doc:{doc_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}:ids"

    def _channel(self, collection: str) -> str:
        return f"{self.key_prefix}:{collection}:events"

    @staticmethod
    def _event(op: str, doc_id: str) -> str:
        return json.dumps({"op": op, "id": doc_id})

    async def list(self, collection, filters=None, order_by=None, descending=False) -> List[Record]:
        try:
            ids = await self.redis.smembers(self._index_key(collection))
            if not ids:
                return []
            raw_items = await self.redis.mget([self._doc_key(collection, i) for i in ids])
        except RedisError as exc:
            raise StoreError(f"Failed to list {collection}: {exc}", exc) from exc

        records = []
        for raw_item in raw_items:
            if raw_item is None:
                continue
            try:
                record = json.loads(raw_item)
            except json.JSONDecodeError:
                logger.warning(f"Skipping undecodable document in {collection}")
                continue
            if matches_filters(record, filters):
                records.append(record)
        return sort_records(records, order_by, descending)

    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        try:
            raw = await self.redis.get(self._doc_key(collection, doc_id))
        except RedisError as exc:
            raise StoreError(f"Failed to read {collection}/{doc_id}: {exc}", exc) from exc
        return json.loads(raw) if raw else None

    async def create(self, collection: str, data: Record) -> Record:
        doc_id = uuid.uuid4().hex
        record = dict(data)
        record['id'] = doc_id
        record.setdefault('version', 1)

        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._doc_key(collection, doc_id), json.dumps(record, default=str))
                pipe.sadd(self._index_key(collection), doc_id)
                pipe.publish(self._channel(collection), self._event("create", doc_id))
                await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"Failed to create document in {collection}: {exc}", exc) from exc

        logger.debug(f"Created {collection}/{doc_id}")
        return record

    async def update(self, collection, doc_id, data, expected_version=None) -> Record:
        key = self._doc_key(collection, doc_id)
        attempts = 0

        while True:
            attempts += 1
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        raise DocumentNotFoundError(collection, doc_id)

                    current = json.loads(raw)
                    if expected_version is not None and current.get('version') != expected_version:
                        raise ConcurrentModificationError(
                            collection, doc_id, expected_version, current.get('version')
                        )

                    merged = dict(current)
                    merged.update(data)
                    merged['id'] = doc_id
                    merged['version'] = int(current.get('version') or 0) + 1

                    pipe.multi()
                    pipe.set(key, json.dumps(merged, default=str))
                    pipe.publish(self._channel(collection), self._event("update", doc_id))
                    await pipe.execute()
                    return merged
            except WatchError as exc:
                if expected_version is not None or attempts >= MAX_BLIND_UPDATE_ATTEMPTS:
                    raise ConcurrentModificationError(collection, doc_id, expected_version, None) from exc
                logger.debug(f"Retrying update of {collection}/{doc_id} after concurrent write")
            except RedisError as exc:
                raise StoreError(f"Failed to update {collection}/{doc_id}: {exc}", exc) from exc

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._doc_key(collection, doc_id))
                pipe.srem(self._index_key(collection), doc_id)
                pipe.publish(self._channel(collection), self._event("delete", doc_id))
                removed, _, _ = await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"Failed to delete {collection}/{doc_id}: {exc}", exc) from exc

        if not removed:
            raise DocumentNotFoundError(collection, doc_id)
        logger.debug(f"Deleted {collection}/{doc_id}")

    async def subscribe(self, collection, callback, filters=None, order_by=None, descending=False) -> Unsubscribe:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.subscribe(self._channel(collection))
        except RedisError as exc:
            raise StoreError(f"Failed to subscribe to {collection}: {exc}", exc) from exc

        await deliver(callback, await self.list(collection, filters, order_by, descending))

        task = asyncio.create_task(
            self._listen(pubsub, collection, callback, filters, order_by, descending)
        )
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)

        def unsubscribe() -> None:
            # Cancelling a finished task is a no-op, so repeated calls are harmless.
            task.cancel()

        return unsubscribe

    async def _listen(self, pubsub, collection, callback, filters, order_by, descending) -> None:
        try:
            async for message in pubsub.listen():
                if message.get('type') != 'message':
                    continue
                try:
                    records = await self.list(collection, filters, order_by, descending)
                except StoreError as exc:
                    logger.error(f"Failed to refresh {collection} subscription: {exc}")
                    continue
                await deliver(callback, records)
        finally:
            try:
                await pubsub.unsubscribe(self._channel(collection))
                await pubsub.aclose()
            except RedisError as exc:
                logger.warning(f"Failed to close {collection} subscription cleanly: {exc}")

    async def close(self) -> None:
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        await self.redis.aclose()

    async def health_check(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except RedisError as exc:
            logger.error(f"Redis health check failed: {exc}")
            return False
