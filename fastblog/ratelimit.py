import logging

import redis.asyncio as redis
from fastapi import HTTPException, Request, status

from fastblog.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window request limiter backed by Redis.

    Each client gets one counter per window (``INCR`` + ``EXPIRE``).  When
    Redis is unavailable every request is allowed: the limiter protects the
    service, it must never take it down.
    """

    def __init__(self, max_requests: int, window_seconds: int, prefix: str = "ratelimit") -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix
        self._redis: redis.Redis | None = None
        self._rejected: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Rate limiter connected: %s", settings.REDIS_URL)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, rate limiting disabled: %s", exc)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def hit(self, identifier: str) -> bool:
        """
        Record one request for *identifier*; return False once the window's
        budget is exhausted.
        """
        if not self._redis:
            return True
        key = f"{self.prefix}:{identifier}"
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self.window_seconds)
        except Exception as exc:
            logger.debug("Rate limiter error for key=%r: %s", key, exc)
            return True
        if count > self.max_requests:
            self._rejected += 1
            return False
        return True

    async def __call__(self, request: Request) -> None:
        """FastAPI dependency form: raises 429 when the client is over budget."""
        client = request.client.host if request.client else "unknown"
        if not await self.hit(client):
            logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(self.window_seconds)},
            )

    @property
    def stats(self) -> dict:
        return {
            "enabled": self._redis is not None,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "rejected": self._rejected,
        }


# Module-level singleton shared across all request handlers.
rate_limiter = RateLimiter(settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS)
