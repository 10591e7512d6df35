"""
Service Container - Dependency Injection Container

Simple DI container for managing service instances and their dependencies.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from progress_engine.config import STORAGE_BACKEND
from progress_engine.db.store import ProgressStore

logger = logging.getLogger(__name__)


def create_store(backend: str = STORAGE_BACKEND) -> ProgressStore:
    """
    Build the storage backend named by STORAGE_BACKEND.

    Args:
        backend: 'postgres' or 'memory'
    """
    if backend == "memory":
        from progress_engine.db.memory_store import InMemoryProgressStore
        return InMemoryProgressStore()

    from progress_engine.db.postgres_store import PostgresProgressStore
    return PostgresProgressStore()


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    The storage backend is injected.
    """

    store: ProgressStore

    _progress_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def progress_service(self):
        """Get ProgressService instance (lazy-loaded)"""
        if self._progress_service is None:
            from progress_engine.services.progress_service import ProgressService
            self._progress_service = ProgressService(self.store)
            logger.debug("ProgressService instantiated")
        return self._progress_service


# Global container instance (initialized by the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() at startup before using services."
        )
    return _container


def init_container(store: ProgressStore) -> ServiceContainer:
    """
    Initialize the global service container.

    Args:
        store: Opened storage backend

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(store=store)

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (used on shutdown)"""
    global _container
    _container = None
