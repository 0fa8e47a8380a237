"""
Valkey (Redis-compatible) durable store for client state.

Simple wrapper around redis-py. Keys are namespaced per client install so
several processes sharing one Valkey see the same token and verification
progress (the cross-process analogue of browser tabs sharing storage).
Fail-fast: raises on connection failure, never returns fallback values.
"""

import json
import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    DurableStore backed by Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0", namespace="socialclient")
        client.set("auth:token", "abc")
        value = client.get("auth:token")  # Returns None if missing
    """

    def __init__(
        self,
        url: str | None = None,
        namespace: str = "socialclient",
        redis_client: redis.Redis | None = None,
    ):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix applied to every key
            redis_client: Pre-built client (must use decode_responses=True)

        Raises:
            ValueError: If neither url nor redis_client is given
            redis.ConnectionError: If connection fails
        """
        if redis_client is None:
            if not url:
                raise ValueError("url is required when no redis_client is given")
            redis_client = redis.from_url(url, decode_responses=True)

        self._client = redis_client
        self._namespace = namespace
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected (namespace=%s)", namespace)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def get(self, key: str) -> str | None:
        """
        Get value by key.

        Returns None if key doesn't exist (not an error).
        Raises on connection failure.
        """
        return self._client.get(self._key(key))

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        """
        Set key to value, optionally with expiration.

        Args:
            key: Key to set
            value: Value to store
            expire_seconds: TTL in seconds (None for no expiration)
        """
        if expire_seconds is not None:
            self._client.setex(self._key(key), expire_seconds, value)
        else:
            self._client.set(self._key(key), value)

    def delete(self, key: str) -> bool:
        """
        Delete key.

        Returns True if key existed and was deleted, False if key didn't exist.
        """
        return self._client.delete(self._key(key)) > 0

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        """Set key to JSON-serialized value."""
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        """
        Get and deserialize JSON value.

        Returns None if key doesn't exist.
        Raises ValueError if value is not valid JSON.
        """
        value = self.get(key)
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
