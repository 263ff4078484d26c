"""
Key-value substrate connection helpers.
"""

from __future__ import annotations

import redis

import recall.config as config


class Storage:
    """Substrate state holder (avoids global scoping issues)."""

    client = None


def init_storage(client=None) -> None:
    """Connect to the substrate, or install an already-built client."""
    if client is not None:
        Storage.client = client
        return
    config.validate_and_prepare_config()
    config.logger.info("Connecting to key-value store...")
    Storage.client = redis.Redis.from_url(
        config.REDIS_URL,
        decode_responses=True,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=30,
    )
    Storage.client.ping()
    config.logger.info("Key-value store initialized")


def get_client():
    if Storage.client is None:
        init_storage()
    return Storage.client


def close_storage() -> None:
    if Storage.client is not None:
        Storage.client.close()
        Storage.client = None
        config.logger.info("Key-value store connection closed")


def ping() -> bool:
    client = Storage.client
    if client is None:
        return False
    try:
        return bool(client.ping())
    except redis.exceptions.RedisError:
        return False
