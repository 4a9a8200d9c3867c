# core/redis_client.py
"""
Redis client factory with connection pooling and error handling.

Backs the durable job store. Connection is lazy-loaded and uses
connection pooling for performance. One instance is created by the broker
context when JOB_STORE_BACKEND is "redis".
"""

import redis
from redis.connection import ConnectionPool
from typing import Optional
from core.config import Settings
from core.logger import logger


class RedisClient:
    """
    Redis client with connection pooling.

    Thread-safe connection pool that handles:
    - Automatic reconnection on failure
    - Optional TLS/SSL
    - Connection timeout configuration
    """

    def __init__(self, config: Settings):
        self._config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[redis.Redis] = None

    def _initialize_pool(self):
        """
        Create connection pool with production-ready settings.
        """
        config = self._config
        try:
            logger.info(
                f"Initializing Redis connection pool",
                extra={
                    "host": config.REDIS_HOST,
                    "port": config.REDIS_PORT,
                    "ssl": config.REDIS_SSL,
                    "max_connections": config.REDIS_MAX_CONNECTIONS
                }
            )

            pool_kwargs = {
                "host": config.REDIS_HOST,
                "port": config.REDIS_PORT,
                "db": config.REDIS_DB,
                "decode_responses": True,  # Job documents are JSON text
                "socket_timeout": config.REDIS_SOCKET_TIMEOUT,
                "socket_connect_timeout": config.REDIS_SOCKET_CONNECT_TIMEOUT,
                "max_connections": config.REDIS_MAX_CONNECTIONS,
                "retry_on_timeout": True,
                "health_check_interval": 30
            }

            if config.REDIS_SSL:
                pool_kwargs["connection_class"] = redis.SSLConnection
                pool_kwargs["ssl_cert_reqs"] = None

            if config.REDIS_PASSWORD:
                pool_kwargs["password"] = config.REDIS_PASSWORD

            self._pool = ConnectionPool(**pool_kwargs)
            self._client = redis.Redis(connection_pool=self._pool)

            self._client.ping()
            logger.info("Redis connection pool initialized successfully")

        except redis.ConnectionError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error initializing Redis: {e}")
            raise

    def get_client(self) -> redis.Redis:
        """
        Get Redis client instance.

        Raises:
            redis.ConnectionError: If connection to Redis fails
        """
        if self._client is None:
            self._initialize_pool()

        return self._client

    def close(self):
        """
        Close connection pool (called on application shutdown).
        """
        if self._pool:
            self._pool.disconnect()
            logger.info("Redis connection pool closed")
