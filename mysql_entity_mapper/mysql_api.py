import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger

from .config import MysqlSettings
from .connection_pool import PooledConnection, get_pool_manager
from .utils import format_query

logger = getLogger(__name__)
query_logger = getLogger('mysql_entity_mapper.query')


@dataclass
class QueryResult:
    rows: list = field(default_factory=list)
    row_count: int = 0
    insert_id: int = None


class QueryLogger:
    """Logs every statement with its parameters inlined, like a server general log"""

    def __init__(self, enabled=True):
        self.enabled = enabled

    def log(self, query, params=None, took=None):
        if not self.enabled:
            return
        message = f'[query] {format_query(query, params)}'
        if took is not None:
            message += f' [took {int(took * 1000)} ms]'
        query_logger.info(message)


class Transaction:
    """One pooled connection with an open transaction on it"""

    def __init__(self, api: 'MySQLApi', connection, cursor):
        self.api = api
        self.connection = connection
        self.cursor = cursor

    def execute(self, query, params=None) -> QueryResult:
        return self.api.run(self.cursor, query, params)


class MySQLApi:
    def __init__(self, database: str, mysql_settings: MysqlSettings, connection_pool=None, log_queries=True):
        self.database = database
        self.mysql_settings = mysql_settings
        self.query_logger = QueryLogger(enabled=log_queries)
        if connection_pool is None:
            self.pool_manager = get_pool_manager()
            connection_pool = self.pool_manager.get_or_create_pool(mysql_settings)
        else:
            self.pool_manager = None
        self.connection_pool = connection_pool
        logger.info(
            f"MySQLApi initialized with database '{database}' using connection pool '{mysql_settings.pool_name}'"
        )

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool with automatic cleanup"""
        with PooledConnection(self.connection_pool) as (connection, cursor):
            if self.database is not None and self.database != self.mysql_settings.database:
                cursor.execute(f"USE `{self.database}`")
            yield connection, cursor

    def close(self):
        """Close method for compatibility - pool handles connection lifecycle"""
        logger.debug("MySQLApi.close() called - connection pool will handle cleanup")

    def run(self, cursor, query, params=None) -> QueryResult:
        start_time = time.monotonic()
        try:
            if params:
                cursor.execute(query, tuple(params))
            else:
                cursor.execute(query)
            result = QueryResult()
            if cursor.with_rows:
                result.rows = cursor.fetchall()
            result.row_count = cursor.rowcount
            result.insert_id = cursor.lastrowid
        except Exception as e:
            logger.error(f"Query execution failed: {format_query(query, params)}")
            logger.error(f"Error details: {e}")
            raise
        self.query_logger.log(query, params, took=time.monotonic() - start_time)
        return result

    def execute(self, query, params=None, transaction: Transaction = None) -> QueryResult:
        if transaction is not None:
            return transaction.execute(query, params)
        with self.get_connection() as (connection, cursor):
            return self.run(cursor, query, params)

    @contextmanager
    def transaction(self):
        """
        Run a block of statements atomically on one pooled connection.

        Commits when the block exits normally, rolls back and re-raises on
        any exception. The connection is returned to the pool either way.
        """
        with self.get_connection() as (connection, cursor):
            connection.start_transaction()
            self.query_logger.log('begin')
            transaction = Transaction(self, connection, cursor)
            try:
                yield transaction
            except BaseException:
                try:
                    connection.rollback()
                    self.query_logger.log('rollback')
                except Exception as rollback_error:
                    logger.error(f"Rollback failed: {rollback_error}")
                raise
            connection.commit()
            self.query_logger.log('commit')

    def get_server_version(self):
        result = self.execute('select version() as `version`')
        return result.rows[0]['version']
