import inspect
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config.settings import ClaimsEngineConfig, get_config
from ..errors import StoreError
from ..monitoring.logging_config import AuditLogger
from ..monitoring.metrics import MetricsCollector
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseService:
    """Shared wiring for the document-store backed services."""

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ClaimsEngineConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.config = config or get_config()
        self.metrics = metrics
        self.audit = audit or AuditLogger()
        self.clock = clock or utc_now

    def now(self) -> datetime:
        return self.clock()

    def _read_failed(self, operation: str, exc: StoreError) -> None:
        logger.error(f"{type(self).__name__}.{operation} failed: {exc}", exc_info=True)
        if self.metrics is not None:
            self.metrics.record_store_error(operation)

    @staticmethod
    def _typed_callback(callback, parse):
        """Wrap a subscriber so it receives model objects instead of raw records."""

        async def on_snapshot(records):
            result = callback(parse(records))
            if inspect.isawaitable(result):
                await result

        return on_snapshot
