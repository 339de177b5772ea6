"""
SOLAR CRM - Retry avec backoff exponentiel + jitter

Utilisé autour des commits de lots et des requêtes d'agrégation.
Les erreurs permanentes ne sont jamais retentées.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from config import COMMIT_RETRY_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY

logger = logging.getLogger("retry")

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """base * 2^attempt plafonné, + jitter jusqu'à 50%"""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, delay / 2)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    context: str = "operation",
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    permanent: Tuple[Type[BaseException], ...] = (),
) -> T:
    """
    Exécute operation() jusqu'à `attempts` fois (COMMIT_RETRY_ATTEMPTS par défaut).
    La dernière erreur est relancée telle quelle.
    """
    attempts = max(1, COMMIT_RETRY_ATTEMPTS if attempts is None else attempts)
    base_delay = RETRY_BASE_DELAY if base_delay is None else base_delay
    max_delay = RETRY_MAX_DELAY if max_delay is None else max_delay

    for attempt in range(attempts):
        try:
            return await operation()
        except permanent:
            logger.error(f"[RETRY] {context}: permanent error, not retried")
            raise
        except Exception as e:
            if attempt == attempts - 1:
                logger.error(f"[RETRY] {context}: failed after {attempts} attempts: {e}")
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"[RETRY] {context}: attempt {attempt + 1}/{attempts} failed, "
                f"retry in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")
