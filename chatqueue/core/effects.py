import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def best_effort(action: str, awaitable: Awaitable[T], /, **context: Any) -> T | None:
    """Await a non-critical side effect, logging instead of raising on failure.

    Used for customer notices, upstream bot-session changes and operator
    broadcasts that must never undo a state change that already committed.
    Returns ``None`` when the effect failed.
    """
    try:
        return await awaitable
    except Exception:
        details = ", ".join(f"{key}={value}" for key, value in sorted(context.items()))
        logger.warning(
            "Non-critical effect '%s' failed%s",
            action,
            f" ({details})" if details else "",
            exc_info=True,
        )
        return None
