import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Filters = Dict[str, Any]
SnapshotCallback = Callable[[List[Record]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]

CLAIMS = "claims"
CLAIM_RULES = "claimRules"
FRAUD_ALERTS = "fraudAlerts"
WORKFLOWS = "workflows"
APPROVAL_CHAINS = "approvalChains"


def matches_filters(record: Record, filters: Optional[Filters]) -> bool:
    if not filters:
        return True
    return all(record.get(key) == value for key, value in filters.items())


def sort_records(records: List[Record], order_by: Optional[str], descending: bool = False) -> List[Record]:
    if not order_by:
        return records
    # Records missing the field sort first ascending, last descending.
    return sorted(
        records,
        key=lambda r: (r.get(order_by) is not None, r.get(order_by)),
        reverse=descending,
    )


async def deliver(callback: SnapshotCallback, records: List[Record]) -> None:
    try:
        result = callback(records)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.error(f"Subscriber callback failed: {exc}", exc_info=True)


class DocumentStore(ABC):
    """Collection/document persistence consumed by the services.

    Every record carries an ``id`` and a ``version``; ``update`` increments the
    version and, given ``expected_version``, only applies if the stored version
    still matches.
    """

    @abstractmethod
    async def list(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        raise NotImplementedError

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        raise NotImplementedError

    @abstractmethod
    async def create(self, collection: str, data: Record) -> Record:
        raise NotImplementedError

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        data: Record,
        expected_version: Optional[int] = None,
    ) -> Record:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        callback: SnapshotCallback,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Unsubscribe:
        raise NotImplementedError

    async def close(self) -> None:
        return None
