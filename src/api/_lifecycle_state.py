"""
Lifecycle service state management for API integration.

Provides singleton access to the JobLifecycleService instance.
Initialized during FastAPI lifespan.

Usage:
    from ._lifecycle_state import get_lifecycle_service, init_lifecycle_service

    # In lifespan:
    init_lifecycle_service(settings)

    # In routers:
    service = get_lifecycle_service()
"""

from typing import Optional

from src.infra.config import LifecycleSettings
from src.lifecycle.service import JobLifecycleService


# Global lifecycle service instance
_lifecycle_service: Optional[JobLifecycleService] = None


def init_lifecycle_service(settings: Optional[LifecycleSettings] = None) -> JobLifecycleService:
    """
    Initialize the lifecycle service singleton.

    Args:
        settings: LifecycleSettings (read from environment if omitted)

    Returns:
        Initialized JobLifecycleService
    """
    global _lifecycle_service

    if _lifecycle_service is not None:
        return _lifecycle_service

    _lifecycle_service = JobLifecycleService.create(settings)
    return _lifecycle_service


def set_lifecycle_service(service: Optional[JobLifecycleService]) -> None:
    """Replace the singleton (tests install a service with an in-memory store)."""
    global _lifecycle_service
    _lifecycle_service = service


def get_lifecycle_service() -> JobLifecycleService:
    """
    Get the lifecycle service singleton.

    Raises:
        RuntimeError: If lifecycle service not initialized
    """
    if _lifecycle_service is None:
        raise RuntimeError(
            "Lifecycle service not initialized. "
            "Ensure init_lifecycle_service() is called during startup."
        )

    return _lifecycle_service


def shutdown_lifecycle_service(timeout: float = 5.0) -> None:
    """
    Shutdown the lifecycle service.

    Waits briefly for in-flight notifications before dropping the instance.
    """
    global _lifecycle_service

    if _lifecycle_service is not None:
        _lifecycle_service.dispatcher.flush(timeout)
        _lifecycle_service = None
