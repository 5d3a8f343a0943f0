"""
Fallback strategy for DB-API drivers without a dedicated strategy.

Uses backtick identifiers, `?` placeholders and `cursor.lastrowid`.
"""
from dbmodel.strategy.base import DatabaseStrategy, register_strategy


@register_strategy('generic')
class GenericStrategy(DatabaseStrategy):
    """Generic qmark-style DB-API driver.
    """

    connectable = False

    @property
    def dialect_name(self) -> str:
        return 'generic'

    @classmethod
    def get_required_options(cls) -> list[str]:
        return []
