"""
SQLite through the standard library sqlite3 module.

SQLite has no temporal column types: values are stored as text, in UTC
when the connection is bound through `conn_with_driver`.
"""
import logging
from typing import TYPE_CHECKING, Any

from dbmodel.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from dbmodel.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('sqlite', 'sqlite3')
class SQLiteStrategy(DatabaseStrategy):

    database_timezone = 'utc'

    @property
    def dialect_name(self) -> str:
        return 'sqlite'

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['database']

    def build_connection_url(self, options: 'DatabaseOptions') -> str:
        return f'sqlite:///{options.database}'

    def single_connection(self, options: 'DatabaseOptions') -> bool:
        """An in-memory database lives and dies with its one connection."""
        return options.database == ':memory:'

    def configure_connection(self, conn: Any) -> None:
        """Turn on foreign key enforcement, off by default in SQLite."""
        conn.execute('PRAGMA foreign_keys = ON')
        logger.debug('Enabled foreign keys on sqlite connection')
