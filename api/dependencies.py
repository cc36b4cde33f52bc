"""FastAPI dependencies shared by the notification routes."""

from functools import lru_cache

from notifications.runtime import NotificationRuntime, build_runtime


@lru_cache
def get_runtime() -> NotificationRuntime:
    """
    Get the process-wide notification runtime.

    Built lazily on first request; tests replace it through
    app.dependency_overrides[get_runtime].
    """
    return build_runtime()
