"""
Database connection handling.

This module provides:
1. The `Connection` adapter giving any DB-API 2.0 connection the
   `query(sql, args)` / `exec(sql, args)` / `begin()` capability
2. The `Transaction` context manager
3. Engine creation and management through a thread-safe SQLAlchemy registry
4. The `connect()` function returning a bound Executor
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any, Self

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from dbmodel.converter import convert_params
from dbmodel.exceptions import DriverError
from dbmodel.options import DatabaseOptions
from dbmodel.strategy import DatabaseStrategy, get_db_strategy, get_strategy

if TYPE_CHECKING:
    from dbmodel.executor import Executor

__all__ = [
    'Connection',
    'ExecResult',
    'Transaction',
    'connect',
    'dumpsql',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def dumpsql(func):
    """Decorator for logging SQL statements, parameters and timing."""
    @wraps(func)
    def wrapper(self, sql: str, args: Any = None, *a: Any, **kw: Any):
        start = time.time()
        logger.debug(f'SQL:\n{sql}\nargs: {args}')
        try:
            return func(self, sql, args, *a, **kw)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{sql}\nargs: {args}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


@dataclass
class ExecResult:
    """Outcome of a statement: affected rows and the driver-assigned id."""
    rowcount: int
    lastrowid: Any = None


class Connection:
    """Adapter over a DB-API connection.

    Statements are written with `?` placeholders and rewritten for the
    driver by its strategy. Outside a transaction every statement is
    committed on success and rolled back on failure.

    While a Transaction holds the connection, statements issued directly on
    it from other threads wait for the transaction to finish; from the
    holding thread they raise RuntimeError instead of joining it.
    """

    def __init__(self, dbapi_connection: Any, strategy: DatabaseStrategy | None = None,
                 owner: Any = None) -> None:
        self.dbapi_connection = dbapi_connection
        self.strategy = strategy or get_db_strategy(dbapi_connection)
        self.owner = owner
        self.in_transaction = False
        self.calls = 0
        self.time = 0
        self._hold = threading.Lock()
        self._holder: int | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def cursor(self) -> Any:
        return self.dbapi_connection.cursor()

    def acquire(self) -> None:
        """Take the connection for a transaction of the calling thread."""
        if self._holder == threading.get_ident():
            raise RuntimeError('Nested transactions are not supported')
        self._hold.acquire()
        self._holder = threading.get_ident()
        self.in_transaction = True

    def release(self) -> None:
        self.in_transaction = False
        self._holder = None
        self._hold.release()

    @contextmanager
    def _outside_transaction(self):
        if self._holder == threading.get_ident():
            raise RuntimeError('connection is held by an open transaction, '
                               'run the statement through the transaction')
        with self._hold:
            yield

    def query(self, sql: str, args: Any = None) -> Any:
        """Execute a statement and return the open cursor over its result set.
        """
        with self._outside_transaction():
            return self.run_query(sql, args)

    def exec(self, sql: str, args: Any = None, returning: bool = False) -> ExecResult:
        """Execute a statement and return affected rows and last inserted id.

        With `returning`, the id is read from the first row of the result
        (INSERT ... RETURNING) instead of `cursor.lastrowid`.
        """
        with self._outside_transaction():
            return self.run_exec(sql, args, returning=returning)

    @dumpsql
    def run_query(self, sql: str, args: Any = None) -> Any:
        cursor = self.cursor()
        try:
            cursor.execute(self.strategy.standardize_sql(sql), convert_params(args))
        except Exception:
            cursor.close()
            self._rollback_if_idle()
            raise
        return cursor

    @dumpsql
    def run_exec(self, sql: str, args: Any = None, returning: bool = False) -> ExecResult:
        cursor = self.cursor()
        try:
            cursor.execute(self.strategy.standardize_sql(sql), convert_params(args))
            if returning:
                row = cursor.fetchone()
                lastrowid = row[0] if row else None
            else:
                lastrowid = getattr(cursor, 'lastrowid', None)
            result = ExecResult(cursor.rowcount, lastrowid)
            if not self.in_transaction:
                self.commit()
            return result
        except Exception:
            self._rollback_if_idle()
            raise
        finally:
            cursor.close()

    def _rollback_if_idle(self) -> None:
        if self.in_transaction:
            return
        try:
            self.dbapi_connection.rollback()
        except DriverError as err:
            logger.warning(f'Rollback after failed statement failed: {err}')

    def begin(self) -> 'Transaction':
        return Transaction(self)

    def commit(self) -> None:
        self.dbapi_connection.commit()

    def rollback(self) -> None:
        self.dbapi_connection.rollback()

    def close(self) -> None:
        """Close the connection (return it to the engine pool when pooled)."""
        target = self.owner if self.owner is not None else self.dbapi_connection
        target.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1,self.calls):.3f}s per query)')


class Transaction:
    """A transaction on a Connection, usable as the connection capability.

    The transaction starts on construction and holds the connection until
    it commits or rolls back. As a context manager it commits on success
    and rolls back on exception. With `close_when_done` the connection is
    closed (returned to its pool) once the transaction finishes.

    Examples
        with executor.begin() as tx:
            executor.query(tx).table('user').where('id', '=', 1).delete()
    """

    def __init__(self, cn: Connection, close_when_done: bool = False) -> None:
        cn.acquire()
        self.connection = cn
        self.close_when_done = close_when_done
        self.active = True
        cn.strategy.disable_autocommit(cn.dbapi_connection)
        logger.debug(f'Started transaction for connection {id(cn)}')

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        if not self.active:
            return
        if exc_type is not None:
            logger.warning('Rolling back the current transaction')
            self.rollback()
        else:
            self.commit()

    @property
    def strategy(self) -> DatabaseStrategy:
        return self.connection.strategy

    @property
    def dialect(self) -> str:
        return self.connection.dialect

    def query(self, sql: str, args: Any = None) -> Any:
        return self.connection.run_query(sql, args)

    def exec(self, sql: str, args: Any = None, returning: bool = False) -> ExecResult:
        return self.connection.run_exec(sql, args, returning=returning)

    def _finish(self) -> None:
        self.active = False
        cn = self.connection
        try:
            cn.strategy.enable_autocommit(cn.dbapi_connection)
        finally:
            cn.release()
            if self.close_when_done:
                cn.close()

    def commit(self) -> None:
        """Commit; on failure the transaction is rolled back and the error raised."""
        if not self.active:
            raise RuntimeError('Transaction is no longer active')
        try:
            self.connection.commit()
            logger.debug(f'Committed transaction for connection {id(self.connection)}')
        except Exception:
            self.rollback()
            raise
        finally:
            if self.active:
                self._finish()

    def rollback(self) -> None:
        """Roll back; a failing rollback is logged, not raised."""
        if not self.active:
            return
        try:
            self.connection.rollback()
        except DriverError as err:
            logger.error(f'Rollback failed: {err}')
        finally:
            self._finish()


def _engine_kwargs(options: DatabaseOptions, strategy: DatabaseStrategy) -> dict[str, Any]:
    kwargs: dict[str, Any] = {'echo': False, **strategy.get_engine_kwargs(options)}
    if not options.use_pool:
        kwargs['poolclass'] = NullPool
        return kwargs
    kwargs.update(
        pool_size=options.pool_max_connections,
        pool_recycle=options.pool_max_idle_time,
        pool_timeout=options.pool_wait_timeout,
        max_overflow=10,
        pool_pre_ping=True,
        pool_reset_on_return='rollback',
    )
    return kwargs


def get_engine_for_options(options: DatabaseOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Shared SQLAlchemy engine for a set of options.

    Engines are keyed by every option except the data loader, created once
    and disposed at interpreter exit. Without `use_pool` each checkout opens
    a fresh driver connection (NullPool).
    """
    key = repr(sorted((k, v) for k, v in asdict(options).items() if k != 'data_loader'))
    with _engine_registry_lock:
        engine = _engine_registry.get(key)
        if engine is not None:
            return engine
        strategy = get_strategy(options.drivername)
        engine = engine_factory(strategy.build_connection_url(options),
                                **{**_engine_kwargs(options, strategy), **kwargs})
        _engine_registry[key] = engine
        logger.debug(f'Created engine for {options.drivername} (pooled: {options.use_pool})')
        return engine


def dispose_all_engines() -> None:
    with _engine_registry_lock:
        engines = list(_engine_registry.values())
        _engine_registry.clear()
    for engine in engines:
        engine.dispose()
    logger.debug(f'Disposed {len(engines)} engines')


atexit.register(dispose_all_engines)


def connect(options: DatabaseOptions | dict[str, Any] | None = None, **kw: Any) -> 'Executor':
    """Connect to a database and return an Executor bound to it.

    Args:
        options: DatabaseOptions, or a dict of option fields
        **kw: option fields overriding `options`

    Returns
        Executor drawing its connections from the engine; each transaction
        checks out its own
    """
    from dbmodel.executor import Executor

    if not isinstance(options, DatabaseOptions):
        options = DatabaseOptions(**{**(options or {}), **kw})

    engine = get_engine_for_options(options)
    strategy = get_strategy(options.drivername)

    def checkout() -> Connection:
        pooled = engine.raw_connection()
        return Connection(pooled.driver_connection, strategy, owner=pooled)

    executor = Executor(app_timezone=options.app_timezone, data_loader=options.data_loader)
    if strategy.single_connection(options):
        return executor.conn_with_driver(checkout(), options.drivername)
    return executor.conn_source(checkout, options.drivername)
