"""Fixed-window rate limiter over the key-value store.

Each ``<prefix>:<identifier>`` key holds ``{count, windowStart, resetAt}``.
A window is replaced once ``windowMs`` has elapsed since it started, so a
burst straddling the boundary can admit up to ``2 * max`` requests. The
read-modify-write is not atomic; concurrent requests may slightly exceed
``max``. Store failures fail open.
"""

import json
import math
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.kv_store import KeyValueStore
from core.logging import get_logger, log_rate_limit_decision

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "rate"
MIN_STORE_TTL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int
    max: int
    key_prefix: Optional[str] = None


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: int
    retry_after: Optional[int] = None


RATE_LIMIT_PRESETS: Dict[str, RateLimitConfig] = {
    # Standard API rate limiting
    "standard": RateLimitConfig(window_ms=60 * 1000, max=60),
    # Expensive or administrative operations
    "strict": RateLimitConfig(window_ms=60 * 1000, max=10),
    "search": RateLimitConfig(window_ms=60 * 1000, max=30),
    "export": RateLimitConfig(window_ms=3600 * 1000, max=10),
}


class RateLimiter:
    """Fixed-window request counter keyed by caller identity and endpoint."""

    def __init__(self, store: KeyValueStore, clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.clock = clock or store.clock

    @staticmethod
    def key_for(identifier: str, key_prefix: Optional[str] = None) -> str:
        return f"{key_prefix or DEFAULT_KEY_PREFIX}:{identifier}"

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Admit or reject one request and update the window."""
        key = self.key_for(identifier, config.key_prefix)
        now = self._now_ms()

        try:
            data = await self.store.get_json(key)

            if not data or now - data["windowStart"] >= config.window_ms:
                window = {
                    "count": 1,
                    "windowStart": now,
                    "resetAt": now + config.window_ms,
                }
                await self.store.put(
                    key,
                    json.dumps(window),
                    expiration_ttl=max(MIN_STORE_TTL_SECONDS, math.ceil(config.window_ms / 1000)),
                )
                log_rate_limit_decision(logger, key, True, config.max - 1, new_window=True)
                return RateLimitResult(
                    allowed=True,
                    remaining=config.max - 1,
                    reset_at=window["resetAt"],
                )

            if data["count"] >= config.max:
                retry_after = math.ceil((data["resetAt"] - now) / 1000)
                log_rate_limit_decision(logger, key, False, 0, retry_after=retry_after)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=data["resetAt"],
                    retry_after=retry_after if retry_after > 0 else 1,
                )

            data["count"] += 1
            await self.store.put(
                key,
                json.dumps(data),
                expiration_ttl=max(MIN_STORE_TTL_SECONDS, math.ceil((data["resetAt"] - now) / 1000)),
            )
            log_rate_limit_decision(logger, key, True, config.max - data["count"])
            return RateLimitResult(
                allowed=True,
                remaining=config.max - data["count"],
                reset_at=data["resetAt"],
            )

        except Exception as e:
            logger.error("Rate limit check failed, allowing request", key=key, error=str(e))
            return RateLimitResult(
                allowed=True,
                remaining=config.max,
                reset_at=now + config.window_ms,
            )

    async def reset(self, identifier: str, key_prefix: Optional[str] = None) -> bool:
        """Delete the window for an identifier (administrative override)."""
        key = self.key_for(identifier, key_prefix)
        deleted = await self.store.delete(key)
        logger.info("Rate limit reset", rate_key=key, deleted=deleted)
        return deleted
