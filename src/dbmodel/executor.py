"""
Executor: connection and driver identity, timezones and the Query pool.
"""
import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Self, TypeVar

from dateutil import tz

from dbmodel.connection import Connection, Transaction
from dbmodel.converter import ConversionContext
from dbmodel.options import pandas_numpy_data_loader
from dbmodel.query import Query, QueryState
from dbmodel.strategy import DatabaseStrategy, get_dialect_name, get_strategy
from dbmodel.types import resolve_zone

if TYPE_CHECKING:
    from dbmodel.model import Model

logger = logging.getLogger(__name__)

__all__ = ['Executor']

T = TypeVar('T')


class Executor:
    """Runs queries against a connection.

    `conn()` binds a DB-API connection and detects its driver; the database
    timezone is local. `conn_with_driver()` names the driver explicitly and
    takes the driver's timezone policy (UTC for sqlite, local otherwise).
    `conn_source()` binds a connection factory instead: statements outside a
    transaction share one connection from it and every `begin()` checks out
    a connection of its own. Temporal values are presented in the
    application timezone.

        executor = Executor().conn_with_driver(sqlite3.connect('app.db'), 'sqlite')
        with executor.begin() as tx:
            executor.query(tx).table('user').insert({'name': 'a'})
    """

    def __init__(self, connection: Any = None, driver: str | None = None,
                 app_timezone: str = 'local', data_loader: Callable[..., Any] | None = None,
                 logger: Any = None) -> None:
        self.connection: Connection | None = None
        self.driver = 'generic'
        self.strategy: DatabaseStrategy = get_strategy('generic')
        self.app_zone = resolve_zone(app_timezone)
        self.database_zone = tz.tzlocal()
        self.data_loader = data_loader or pandas_numpy_data_loader
        self.logger = logger or logging.getLogger(__name__)
        self._pool: list[QueryState] = []
        self._pool_lock = threading.Lock()
        self._source: Callable[[], Any] | None = None
        if connection is not None:
            if driver:
                self.conn_with_driver(connection, driver)
            else:
                self.conn(connection)

    def __repr__(self):
        return f'Executor(driver={self.driver!r})'

    def _bind(self, connection: Any, strategy: DatabaseStrategy) -> None:
        if isinstance(connection, Connection):
            connection.strategy = strategy
        else:
            connection = Connection(connection, strategy)
        strategy.configure_connection(connection.dbapi_connection)
        self.connection = connection
        self.strategy = strategy

    def conn(self, connection: Any) -> Self:
        """Bind a connection, detecting the driver; database timezone is local."""
        self._source = None
        raw = connection.dbapi_connection if isinstance(connection, Connection) else connection
        self.driver = get_dialect_name(raw)
        self._bind(connection, get_strategy(self.driver))
        self.database_zone = tz.tzlocal()
        self.logger.debug(f'Bound {self.driver} connection')
        return self

    def conn_with_driver(self, connection: Any, driver: str) -> Self:
        """Bind a connection for a named driver, using its database timezone."""
        self._source = None
        strategy = get_strategy(driver)
        self.driver = driver
        self._bind(connection, strategy)
        self.database_zone = resolve_zone(strategy.database_timezone)
        self.logger.debug(f'Bound {driver} connection, database timezone {strategy.database_timezone}')
        return self

    def conn_source(self, source: Callable[[], Any], driver: str) -> Self:
        """Bind a connection factory for a named driver.

        `source` returns a new DB-API connection or Connection per call;
        closing it must release it (a pooled checkout goes back to its pool).
        """
        self.conn_with_driver(source(), driver)
        self._source = source
        return self

    def set_logger(self, logger: Any) -> Self:
        self.logger = logger
        return self

    def set_timezone(self, name: str) -> Self:
        """Set the application timezone ('local', 'utc' or an IANA name)."""
        self.app_zone = resolve_zone(name)
        return self

    @property
    def context(self) -> ConversionContext:
        return ConversionContext(self.database_zone, self.app_zone, self.strategy)

    def query(self, conn: Any = None) -> Query:
        """Get an exclusively owned Query, optionally bound to a transaction."""
        with self._pool_lock:
            state = self._pool.pop() if self._pool else None
        query = Query(self, state)
        if conn is not None:
            query.session(conn)
        return query

    def release(self, state: QueryState) -> None:
        """Reset a query's state and return it to the pool."""
        state.reset()
        with self._pool_lock:
            self._pool.append(state)

    def begin(self) -> Transaction:
        """Start a transaction.

        With a connection source the transaction runs on a connection of its
        own, closed when it finishes. Otherwise it holds the bound connection
        until it commits or rolls back.
        """
        if self._source is not None:
            connection = self._source()
            if not isinstance(connection, Connection):
                connection = Connection(connection, self.strategy)
            self.strategy.configure_connection(connection.dbapi_connection)
            return Transaction(connection, close_when_done=True)
        if self.connection is None:
            raise RuntimeError('executor has no connection')
        return Transaction(self.connection)

    def session(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn inside a transaction.

        Commits and returns fn's result on success; on exception rolls back
        (a failing rollback is only logged) and re-raises.
        """
        with self.begin() as tx:
            return fn(tx)

    def model(self, name: str, record: Any) -> 'Model':
        """Build a Model for a table and record type on this executor."""
        from dbmodel.model import Model
        return Model(name, record, self)

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None
