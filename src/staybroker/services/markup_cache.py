"""Read-through cache of the active markup rule set."""

import os
import threading
import time
from typing import Callable

from ..models.markup import PricingMarkupRule
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


class ActiveRuleCache:
    """Holds the ordered active rule list between reloads.

    The list is reloaded when the TTL elapses or after invalidate(). A load
    that started before an invalidate() is never stored, so a mutation can
    not be masked by an in-flight reload.
    """

    def __init__(
        self,
        loader: Callable[[], list[PricingMarkupRule]],
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is None:
            ttl_seconds = float(
                os.getenv("MARKUP_RULE_CACHE_TTL_SECONDS", str(DEFAULT_TTL_SECONDS))
            )
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._rules: list[PricingMarkupRule] | None = None
        self._loaded_at = 0.0
        self._generation = 0

    def get(self) -> list[PricingMarkupRule]:
        with self._lock:
            if self._rules is not None and self._clock() - self._loaded_at < self._ttl:
                return list(self._rules)
            generation = self._generation

        rules = self._loader()
        logger.debug("Loaded %d active markup rules", len(rules))

        with self._lock:
            if generation == self._generation:
                self._rules = rules
                self._loaded_at = self._clock()
        return list(rules)

    def invalidate(self) -> None:
        with self._lock:
            self._rules = None
            self._generation += 1
        logger.info("Active markup rule cache invalidated")
