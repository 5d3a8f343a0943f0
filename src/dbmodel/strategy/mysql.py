"""
MySQL through PyMySQL.

Backtick identifiers, `LIMIT start,count`, and BIT(1) columns that arrive
as one raw byte.
"""
from typing import TYPE_CHECKING, Any

from dbmodel.strategy.base import DatabaseStrategy, register_strategy, server_url

if TYPE_CHECKING:
    from dbmodel.options import DatabaseOptions


@register_strategy('mysql')
class MySQLStrategy(DatabaseStrategy):
    """MySQL-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        return 'mysql'

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['hostname', 'username', 'database', 'port']

    def build_connection_url(self, options: 'DatabaseOptions') -> str:
        return server_url('mysql+pymysql', options)

    def get_placeholder_style(self) -> str:
        return '%s'

    def limit_clause(self, start: int, count: int) -> str:
        return f'LIMIT {start},{count}'

    def decode_integer(self, value: Any, sql: str = '') -> int | None:
        """BIT columns arrive as one raw byte; other binary cells fall through."""
        if sql.split('(')[0].strip().upper() != 'BIT':
            return None
        if isinstance(value, (bytes, bytearray)) and len(value) == 1:
            return value[0]
        return None
