"""Rate limiting middleware for selected API routes."""

import re
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import get_logger
from services.rate_limiter import RATE_LIMIT_PRESETS, RateLimitConfig

logger = get_logger(__name__)

UNKNOWN_CLIENT = "unknown"


def get_client_identifier(request: Request) -> str:
    """Caller IP from proxy headers; ``unknown`` when neither is present."""
    ip = request.headers.get("CF-Connecting-IP")
    if ip:
        return ip
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or UNKNOWN_CLIENT
    return UNKNOWN_CLIENT


@dataclass(frozen=True)
class RateLimitOptions:
    """Limiter config plus how to derive the caller identifier."""
    config: RateLimitConfig
    key_generator: Callable[[Request], str] = get_client_identifier


def endpoint_rate_limit(endpoint: str, preset: RateLimitConfig) -> RateLimitOptions:
    """Per-endpoint limits: prefix ``endpoint:<endpoint>``, identifier ``<ip>:<endpoint>``."""
    return RateLimitOptions(
        config=replace(preset, key_prefix=f"endpoint:{endpoint}"),
        key_generator=lambda request: f"{get_client_identifier(request)}:{endpoint}",
    )


def _compile_pattern(pattern: str) -> "re.Pattern[str]":
    # Inner "*" matches one path segment; a trailing "/*" matches the rest of the path
    if pattern.endswith("/*"):
        body, tail = pattern[:-2], r"(?:/.*)?"
    else:
        body, tail = pattern, ""
    return re.compile("^" + re.escape(body).replace(r"\*", "[^/]+") + tail + "$")


class RateLimitRule:
    """Path pattern bound to a set of rate limit options."""

    def __init__(self, pattern: str, options: RateLimitOptions):
        self.pattern = pattern
        self.options = options
        self._regex = _compile_pattern(pattern)

    def matches(self, path: str) -> bool:
        return bool(self._regex.match(path))


DEFAULT_RULES = (
    RateLimitRule("/api/v1/database/tables/*/data",
                  endpoint_rate_limit("database-data", RATE_LIMIT_PRESETS["standard"])),
    RateLimitRule("/api/v1/database/tables/*/data/*",
                  endpoint_rate_limit("database-data", RATE_LIMIT_PRESETS["standard"])),
    RateLimitRule("/api/v1/database/tables/*/column/*/values",
                  endpoint_rate_limit("database-values", RATE_LIMIT_PRESETS["search"])),
    RateLimitRule("/api/v1/admin/*",
                  RateLimitOptions(config=replace(RATE_LIMIT_PRESETS["strict"], key_prefix="admin"))),
    RateLimitRule("/api/v1/insights/process",
                  endpoint_rate_limit("insights-process", RATE_LIMIT_PRESETS["strict"])),
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the first matching rule; unmatched paths pass through untouched."""

    def __init__(self, app, rules: Sequence[RateLimitRule] = DEFAULT_RULES):
        super().__init__(app)
        self.rules = tuple(rules)

    def _match(self, path: str) -> Optional[RateLimitRule]:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not container.settings().rate_limit_enabled:
            return await call_next(request)

        rule = self._match(request.url.path)
        if rule is None:
            return await call_next(request)

        config = rule.options.config
        identifier = rule.options.key_generator(request)
        result = await container.rate_limiter().check(identifier, config)

        headers = {
            "X-RateLimit-Limit": str(config.max),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(result.reset_at),
        }

        if not result.allowed:
            logger.info("Request rejected by rate limit",
                        path=request.url.path, identifier=identifier, rule=rule.pattern)
            headers["Retry-After"] = str(result.retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "Too many requests",
                    "retryAfter": result.retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
