from .logging_config import AuditLogger, StructuredFormatter, setup_logging
from .metrics import MetricsCollector, PerformanceMonitor, get_metrics_collector

__all__ = [
    "AuditLogger",
    "MetricsCollector",
    "PerformanceMonitor",
    "StructuredFormatter",
    "get_metrics_collector",
    "setup_logging",
]
