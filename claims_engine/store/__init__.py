import logging

from ..config.settings import ClaimsEngineConfig, StoreBackend, get_config
from .base import (
    APPROVAL_CHAINS,
    CLAIM_RULES,
    CLAIMS,
    FRAUD_ALERTS,
    WORKFLOWS,
    DocumentStore,
)
from .memory import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def create_store(config: ClaimsEngineConfig = None) -> DocumentStore:
    config = config or get_config()

    if config.store.backend == StoreBackend.REDIS:
        from .redis_client import get_redis_client
        from .redis_store import RedisDocumentStore

        logger.info(f"Using Redis document store at {config.redis.host}:{config.redis.port}")
        return RedisDocumentStore(get_redis_client(config.redis), key_prefix=config.store.key_prefix)

    logger.info("Using in-memory document store")
    return InMemoryDocumentStore()


__all__ = [
    "APPROVAL_CHAINS",
    "CLAIM_RULES",
    "CLAIMS",
    "FRAUD_ALERTS",
    "WORKFLOWS",
    "DocumentStore",
    "InMemoryDocumentStore",
    "create_store",
]
