"""Login attempt rate limiting (Redis, fail-open)."""
import ipaddress
import logging

import redis
from fastapi import HTTPException, Request, status
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _incr_with_ttl(key: str, ttl_seconds: int) -> tuple[int, int]:
    """
    Increment a Redis counter and ensure it has an expiry.
    Returns (value, ttl_remaining_seconds).
    """
    r = _get_redis()
    value = r.incr(key)
    if value == 1:
        r.expire(key, ttl_seconds)
    ttl = r.ttl(key)
    if ttl is None or ttl < 0:
        ttl = ttl_seconds
    return int(value), int(ttl)


def enforce_login_rate_limit(request: Request) -> None:
    """FastAPI dependency: 429 once an IP exceeds the per-minute login budget."""
    if not settings.REDIS_URL:
        return
    ip = get_client_ip(request)
    try:
        attempts, ttl = _incr_with_ttl(f"auth:rl:login:ip:{ip}", 60)
    except RedisError:
        # Fail open if Redis is down to avoid total auth outage.
        logger.exception("Redis error during login rate limiting (fail-open)")
        return
    if attempts > settings.AUTH_LOGIN_IP_LIMIT_PER_MINUTE:
        logger.warning("Login rate limit exceeded for ip=%s", ip)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Try again later.",
            headers={"Retry-After": str(ttl)},
        )
