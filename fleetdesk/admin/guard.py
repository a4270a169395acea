# fleetdesk/admin/guard.py
"""
Neutral-value error policy for top-level CRUD operations.

Dashboard reads and simple writes never raise: any failure is logged and
the caller gets an empty list, ``None`` or ``False`` instead.  Missing or
malformed caller input still raises ValidationGapError.  Workflow
operations (status moves, broadcasts) are not guarded and raise typed
errors.
"""
from __future__ import annotations

import functools
from typing import Any, Callable

from fleetdesk.core.errors import ValidationGapError
from fleetdesk.infra.logging_config import get_logger
from fleetdesk.infra.metrics import FleetMetrics, inc_counter

logger = get_logger(__name__)


def neutral_on_error(default_factory: Callable[[], Any]):
    """Decorate an async method so any exception yields ``default_factory()``."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ValidationGapError:
                raise
            except Exception as exc:
                logger.error(f"{func.__qualname__} failed: {exc}", exc_info=True)
                inc_counter("admin_operation_errors_total", operation=func.__name__)
                return default_factory()
        return wrapper

    return decorator


def empty_list() -> list:
    return []


def nothing() -> None:
    return None


def failed() -> bool:
    return False


async def delete_blob_quietly(blobs, url_or_path: str) -> bool:
    """Best-effort blob removal; never fails the owning delete."""
    try:
        return bool(await blobs.delete(url_or_path))
    except Exception:
        logger.warning(f"Blob delete failed (ignored): {url_or_path}", exc_info=True)
        FleetMetrics.blob_delete_failed()
        return False
