from .settings import (
    ClaimsEngineConfig,
    DecisioningConfig,
    Environment,
    MonitoringConfig,
    RedisConfig,
    StoreBackend,
    StoreConfig,
    get_config,
    reload_config,
)

__all__ = [
    "ClaimsEngineConfig",
    "DecisioningConfig",
    "Environment",
    "MonitoringConfig",
    "RedisConfig",
    "StoreBackend",
    "StoreConfig",
    "get_config",
    "reload_config",
]
