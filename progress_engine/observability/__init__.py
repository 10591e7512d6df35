"""
Observability module for the progress engine.

This module provides:
- Metrics collection with Prometheus
- HTTP request metrics middleware
"""

__all__ = ["metrics", "metrics_middleware"]
