"""Helper function to create Redis clients with SSL support for hosted providers."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def normalize_redis_url(url: str) -> str:
    """Upstash only accepts TLS; upgrade plain redis:// URLs pointing at it."""
    if ".upstash.io" in url and url.startswith("redis://"):
        return url.replace("redis://", "rediss://", 1)
    return url


def is_tls_url(url: str) -> bool:
    return url.startswith("rediss://")


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client with proper SSL configuration.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Additional arguments (decode_responses, socket_connect_timeout, etc.)

    Returns:
        Configured Redis client (connections are opened lazily)
    """
    url = normalize_redis_url(url)
    client = Redis.from_url(url, **kwargs)

    if is_tls_url(url):
        # Hosted providers terminate TLS with certificates we cannot pin.
        client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
