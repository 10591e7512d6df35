"""
Service Layer Package

Business logic services between the presentation layer (REST API) and the
storage layer.

- ProgressService: actions, streaks, achievements, claims, leaderboard
"""

from progress_engine.services.container import ServiceContainer, get_container, init_container

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
]
