"""Resilience patterns for storage calls

Retry with exponential backoff for transient storage failures.
"""

from progress_engine.resilience.retry import retry_with_backoff

__all__ = [
    "retry_with_backoff",
]
