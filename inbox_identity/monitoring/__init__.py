"""
Monitoring Module

Provides Prometheus metrics for duplicate discovery and merges.
"""

from inbox_identity.monitoring.metrics import Metrics, get_metrics

__all__ = [
    "Metrics",
    "get_metrics",
]
