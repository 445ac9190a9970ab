"""Shared mysql.connector pools, one per server, user, schema and pool name"""

import hashlib
import threading
from logging import getLogger

from mysql.connector import Error as MySQLError
from mysql.connector.pooling import MySQLConnectionPool

from .config import MysqlSettings

logger = getLogger(__name__)

# mysql.connector refuses pools bigger than this
MAX_POOL_SIZE = 32


def make_pool_key(mysql_settings: MysqlSettings) -> str:
    return (
        f"{mysql_settings.host}:{mysql_settings.port}:{mysql_settings.user}:"
        f"{mysql_settings.database}:{mysql_settings.pool_name}"
    )


def make_short_pool_name(pool_key: str, user: str) -> str:
    """
    mysql.connector limits pool names to ~64 characters: the full key stays
    the lookup key, the connector gets ``pool_<user>_<hash8>``.
    """
    hash_digest = hashlib.sha256(pool_key.encode("utf-8")).hexdigest()[:8]
    return f"pool_{user[:16]}_{hash_digest}"


class ConnectionPoolManager:
    """Singleton registry of connection pools"""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._pools = {}
            self._initialized = True

    def get_or_create_pool(self, mysql_settings: MysqlSettings) -> MySQLConnectionPool:
        """
        Pool for these settings, created on first use.

        Pool connections run in autocommit mode: single statements commit
        on their own, flushes open an explicit transaction.
        """
        pool_key = make_pool_key(mysql_settings)
        pool = self._pools.get(pool_key)
        if pool is not None:
            return pool

        with self._lock:
            if pool_key in self._pools:
                return self._pools[pool_key]

            pool_size = min(mysql_settings.pool_size + mysql_settings.max_overflow, MAX_POOL_SIZE)
            short_name = make_short_pool_name(pool_key, mysql_settings.user)
            try:
                pool = MySQLConnectionPool(
                    pool_name=short_name,
                    pool_size=pool_size,
                    pool_reset_session=True,
                    **mysql_settings.get_connection_config(autocommit=True),
                )
            except MySQLError as e:
                logger.error(f"Failed to create connection pool '{pool_key}': {e}")
                raise

            self._pools[pool_key] = pool
            logger.info(f"Created MySQL connection pool '{short_name}' (key: '{pool_key}') with {pool_size} connections")
            return pool

    def close_all_pools(self):
        """Forget all pools, their connections close when they are released"""
        with self._lock:
            for pool_key in self._pools:
                logger.info(f"Connection pool '{pool_key}' will be cleaned up")
            self._pools.clear()


class PooledConnection:
    """
    Borrow a connection and a dictionary cursor from a pool.

    Anything with ``get_connection()`` works as the pool. The connection
    goes back on every exit path; a transaction still open after an error
    is rolled back first.
    """

    def __init__(self, pool, dictionary=True):
        self.pool = pool
        self.dictionary = dictionary
        self.connection = None
        self.cursor = None

    def __enter__(self):
        try:
            self.connection = self.pool.get_connection()
            self.cursor = self.connection.cursor(dictionary=self.dictionary)
        except MySQLError as e:
            logger.error(f"Failed to get connection from pool: {e}")
            if self.connection is not None:
                self.connection.close()
            raise
        return self.connection, self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Error in pooled connection: {exc_val}")
            if getattr(self.connection, 'in_transaction', False):
                try:
                    self.connection.rollback()
                except MySQLError as e:
                    logger.error(f"Rollback on release failed: {e}")
        if self.cursor is not None:
            self.cursor.close()
        if self.connection is not None:
            self.connection.close()  # Returns connection to pool


def get_pool_manager() -> ConnectionPoolManager:
    """Get the singleton connection pool manager"""
    return ConnectionPoolManager()
