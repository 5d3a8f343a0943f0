"""
Driver strategies: lookup by driver name and detection from a connection.

Names are matched case-insensitively by `get_strategy`; unknown drivers get
the generic qmark strategy. Option validation (`get_strategy_class`) is
strict and only accepts registered names.
"""
from functools import lru_cache
from typing import Any

from dbmodel.strategy.base import _STRATEGY_REGISTRY
from dbmodel.strategy.base import DatabaseStrategy as DatabaseStrategy
from dbmodel.strategy.base import register_strategy as register_strategy
from dbmodel.strategy.generic import GenericStrategy as GenericStrategy
from dbmodel.strategy.mysql import MySQLStrategy as MySQLStrategy
from dbmodel.strategy.postgres import PostgresStrategy as PostgresStrategy
from dbmodel.strategy.sqlite import SQLiteStrategy as SQLiteStrategy

# connection type module fragment -> driver name
_MODULE_DIALECTS = (
    ('psycopg', 'postgresql'),
    ('sqlite3', 'sqlite'),
    ('pymysql', 'mysql'),
    ('MySQLdb', 'mysql'),
)


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    """Registered strategy class of a driver name; ValueError when unknown."""
    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        raise ValueError(f'no strategy for driver {dialect!r}, '
                         f'registered: {get_available_dialects()}') from None


@lru_cache(maxsize=16)
def _strategy_instance(dialect: str) -> DatabaseStrategy:
    return get_strategy_class(dialect)()


def get_strategy(dialect: str) -> DatabaseStrategy:
    """Shared strategy instance for a driver name, generic when unknown.
    """
    dialect = dialect.lower()
    return _strategy_instance(dialect if dialect in _STRATEGY_REGISTRY else 'generic')


def get_dialect_name(obj: Any) -> str:
    """Driver name of a DB-API connection or a SQLAlchemy engine/connection.
    """
    dialect = getattr(obj, 'dialect', None)
    if dialect is not None and not isinstance(dialect, str):
        return str(dialect.name).lower()

    engine = getattr(obj, 'engine', None)
    if engine is not None and hasattr(engine, 'dialect'):
        return str(engine.dialect.name).lower()

    if hasattr(obj, 'driver_connection'):
        return get_dialect_name(obj.driver_connection)

    module = type(obj).__module__
    for fragment, name in _MODULE_DIALECTS:
        if fragment in module:
            return name
    return 'generic'


def get_db_strategy(cn: Any) -> DatabaseStrategy:
    """Strategy for a connection, detected from its type."""
    return get_strategy(get_dialect_name(cn))


def get_available_dialects() -> list[str]:
    return list(_STRATEGY_REGISTRY)


def is_supported_dialect(dialect: str) -> bool:
    return dialect in _STRATEGY_REGISTRY
