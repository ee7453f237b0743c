from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import BackgroundTasks

logger = logging.getLogger("pm_relay")


async def _guarded(label: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> None:
    try:
        await func(*args, **kwargs)
    except Exception:
        logger.warning("detached_task_failed task=%s", label, exc_info=True)


def run_detached(
    background: BackgroundTasks,
    label: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    **kwargs: Any,
) -> None:
    """Schedule work after the response; its failures are logged and dropped."""
    background.add_task(_guarded, label, func, *args, **kwargs)
