import os
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum
import logging

logger = logging.getLogger(__name__)


class Environment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class StoreBackend(Enum):
    MEMORY = "memory"
    REDIS = "redis"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class StoreConfig:
    backend: StoreBackend = field(
        default_factory=lambda: StoreBackend(os.getenv("STORE_BACKEND", "memory").lower())
    )
    key_prefix: str = field(default_factory=lambda: os.getenv("STORE_KEY_PREFIX", "claims"))


@dataclass
class RedisConfig:
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "redis"))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD"))
    socket_timeout: int = 5
    socket_connect_timeout: int = 5
    max_connections: int = 50

    def get_connection_params(self) -> Dict[str, Any]:
        params = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "max_connections": self.max_connections
        }
        if self.password:
            params["password"] = self.password
        return params


@dataclass
class DecisioningConfig:
    default_workflow_id: Optional[str] = field(
        default_factory=lambda: os.getenv("DEFAULT_WORKFLOW_ID") or None
    )
    enable_fraud_scoring: bool = field(
        default_factory=lambda: _env_flag("ENABLE_FRAUD_SCORING", "true")
    )
    # Risk score from which a fraud alert is persisted.
    fraud_alert_threshold: float = field(
        default_factory=lambda: float(os.getenv("FRAUD_ALERT_THRESHOLD", "40"))
    )
    history_limit: int = field(
        default_factory=lambda: int(os.getenv("FRAUD_HISTORY_LIMIT", "500"))
    )


@dataclass
class MonitoringConfig:
    enable_prometheus: bool = field(
        default_factory=lambda: _env_flag("MONITORING_PROMETHEUS", "true")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = field(
        default_factory=lambda: os.getenv("LOG_FORMAT", "structured")  # structured or standard
    )
    log_file: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE") or None)


@dataclass
class ClaimsEngineConfig:
    environment: Environment = field(
        default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development"))
    )

    store: StoreConfig = field(default_factory=StoreConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    decisioning: DecisioningConfig = field(default_factory=DecisioningConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def validate(self) -> bool:
        try:
            threshold = self.decisioning.fraud_alert_threshold
            assert 0 <= threshold <= 100, "Fraud alert threshold must be between 0 and 100"
            assert self.decisioning.history_limit > 0, "Fraud history limit must be positive"
            assert self.monitoring.log_format in ("structured", "standard"), \
                "Log format must be 'structured' or 'standard'"

            if self.environment == Environment.PRODUCTION and self.store.backend == StoreBackend.REDIS:
                assert self.redis.password is not None, "Redis password required in production"

            logger.info("Configuration validation passed")
            return True

        except AssertionError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment.value,
            "store": {
                "backend": self.store.backend.value,
                "key_prefix": self.store.key_prefix
            },
            "redis": {
                "host": self.redis.host,
                "port": self.redis.port,
                "db": self.redis.db
            },
            "decisioning": {
                "default_workflow_id": self.decisioning.default_workflow_id,
                "enable_fraud_scoring": self.decisioning.enable_fraud_scoring,
                "fraud_alert_threshold": self.decisioning.fraud_alert_threshold,
                "history_limit": self.decisioning.history_limit
            },
            "monitoring": {
                "prometheus": self.monitoring.enable_prometheus,
                "log_level": self.monitoring.log_level,
                "log_format": self.monitoring.log_format
            }
        }


# Global configuration instance
_config_instance: Optional[ClaimsEngineConfig] = None


def get_config() -> ClaimsEngineConfig:
    global _config_instance
    if _config_instance is None:
        _config_instance = ClaimsEngineConfig()
        _config_instance.validate()
    return _config_instance


def reload_config() -> ClaimsEngineConfig:
    global _config_instance
    _config_instance = ClaimsEngineConfig()
    _config_instance.validate()
    logger.info("Configuration reloaded")
    return _config_instance
