"""
Valkey (Redis-compatible) client for the session store.

Sessions are written by the login service and read, extended and revoked
here. Thin wrapper around redis-py; connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        client.set_json("session:abc", {"user_id": "..."}, expire_seconds=3600)
        data = client.get_json("session:abc")  # None if missing
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def delete(self, key: str) -> bool:
        """Delete key. Returns False if the key didn't exist."""
        return self._client.delete(key) > 0

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        """Store a JSON-serialized value, optionally with a TTL in seconds."""
        payload = json.dumps(value)
        if expire_seconds is not None:
            self._client.setex(key, expire_seconds, payload)
        else:
            self._client.set(key, payload)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self._client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in key '{key}': {e}")

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
