"""
PostgreSQL through psycopg 3.

psycopg uses the format paramstyle and does not report `lastrowid`, so
inserted identifiers come back through `RETURNING`. Connections run in
autocommit mode outside a Transaction.
"""
import logging
from typing import TYPE_CHECKING, Any

from dbmodel.strategy.base import DatabaseStrategy, register_strategy, server_url

if TYPE_CHECKING:
    from dbmodel.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql', 'postgres', 'psycopg')
class PostgresStrategy(DatabaseStrategy):

    @property
    def dialect_name(self) -> str:
        return 'postgresql'

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'password', 'database', 'port']

    def build_connection_url(self, options: 'DatabaseOptions') -> str:
        return server_url('postgresql+psycopg', options)

    def configure_connection(self, conn: Any) -> None:
        self.enable_autocommit(conn)
        logger.debug('Enabled autocommit on psycopg connection')

    def enable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.autocommit = False

    def get_placeholder_style(self) -> str:
        return '%s'

    def returning_clause(self, column: str) -> str:
        return f' RETURNING {self.quote_identifier(column)}'
