"""Token bucket rate limiter backed by Redis."""

import time

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, Response

from escrow_api.config import settings
from escrow_api.redis import get_redis

# Atomic check-and-consume. Returns {allowed, remaining, retry_after}.
_TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens = tonumber(bucket[1])
local last_refill = tonumber(bucket[2])

if tokens == nil then
    tokens = capacity
    last_refill = now
end

local elapsed = now - last_refill
local new_tokens = math.min(capacity, tokens + elapsed * (refill_rate / 60.0))

if new_tokens >= 1 then
    new_tokens = new_tokens - 1
    redis.call('HSET', key, 'tokens', new_tokens, 'last_refill', now)
    redis.call('EXPIRE', key, 120)
    return {1, math.floor(new_tokens), 0}
else
    local retry_after = math.ceil((1 - new_tokens) * 60 / refill_rate)
    redis.call('HSET', key, 'tokens', new_tokens, 'last_refill', now)
    redis.call('EXPIRE', key, 120)
    return {0, 0, retry_after}
end
"""


def get_rate_config(method: str, path: str) -> tuple[int, int, str]:
    """Return (capacity, refill_per_min, category) for an endpoint."""
    path = path.rstrip("/")
    if method == "POST" and path == "/profiles":
        return (
            settings.rate_limit_registration_capacity,
            settings.rate_limit_registration_refill_per_min,
            "registration",
        )
    if method == "POST" and path.endswith("/approve"):
        return (
            settings.rate_limit_approval_capacity,
            settings.rate_limit_approval_refill_per_min,
            "approval",
        )
    if method in ("POST", "PATCH", "PUT", "DELETE"):
        return (
            settings.rate_limit_write_capacity,
            settings.rate_limit_write_refill_per_min,
            "write",
        )
    return (
        settings.rate_limit_read_capacity,
        settings.rate_limit_read_refill_per_min,
        "read",
    )


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first X-Forwarded-For hop."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def bucket_key(request: Request, category: str) -> str:
    """Signed callers are limited per profile, anonymous ones per IP."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("ProfileSig "):
        profile_id = auth_header[len("ProfileSig "):].split(":", 1)[0]
        if profile_id:
            return f"ratelimit:{profile_id}:{category}"
    return f"ratelimit:ip:{get_client_ip(request)}:{category}"


async def check_rate_limit(
    request: Request,
    response: Response,
    redis: aioredis.Redis = Depends(get_redis),
) -> None:
    """Rate limit dependency."""
    capacity, refill_rate, category = get_rate_config(request.method.upper(), request.url.path)
    result = await redis.eval(
        _TOKEN_BUCKET_SCRIPT, 1, bucket_key(request, category), capacity, refill_rate, time.time()
    )
    allowed, remaining, retry_after = int(result[0]), int(result[1]), int(result[2])

    response.headers["X-RateLimit-Limit"] = str(capacity)
    response.headers["X-RateLimit-Remaining"] = str(remaining)

    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded",
            headers={"Retry-After": str(retry_after)},
        )
