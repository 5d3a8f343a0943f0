"""
Forward-only cursor over a result set.
"""
import logging
from collections.abc import Callable, Iterator
from typing import Any, Self

from dbmodel.converter import ConversionContext
from dbmodel.exceptions import QueryError
from dbmodel.scanner import scan_record
from dbmodel.schema import Schema, schema_for

logger = logging.getLogger(__name__)

__all__ = ['Rows']


class Rows:
    """Result-set cursor.

    Always close a Rows, or use it as a context manager; iterating to the
    end closes it too.

        with query.rows() as rows:
            while rows.next():
                user = rows.scan(User)
    """

    def __init__(self, cursor: Any, ctx: ConversionContext, schema: Schema | None = None,
                 on_close: Callable[[], None] | None = None) -> None:
        self._cursor = cursor
        self._ctx = ctx
        self._on_close = on_close
        self._row: tuple | None = None
        self.schema = schema
        self.closed = False
        description = cursor.description or []
        self.columns: list[str] = [desc[0] for desc in description]

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        try:
            while self.next():
                yield self.map()
        finally:
            self.close()

    def next(self) -> bool:
        """Advance to the next row. Returns False when exhausted or closed."""
        if self.closed:
            return False
        row = self._cursor.fetchone()
        if row is None:
            self._row = None
            return False
        self._row = tuple(row)
        return True

    def with_schema(self, schema: Schema) -> Self:
        """Pre-bind the schema used by `scan`."""
        self.schema = schema
        return self

    def _current(self) -> tuple:
        if self._row is None:
            raise QueryError('no current row, call next() first')
        return self._row

    def scan(self, target: Any) -> Any:
        """Scan the current row into a target.

        A dict is filled by column name, a list positionally. A dataclass
        type builds a new record; a dataclass instance is filled in place.
        Without a bound schema one is derived from the target on first use.
        """
        row = self._current()
        if isinstance(target, dict):
            target.update(zip(self.columns, row))
            return target
        if isinstance(target, list):
            target[:] = list(row)
            return target

        record_type = target if isinstance(target, type) else type(target)
        if self.schema is None or self.schema.record_type is not record_type:
            self.schema = schema_for(target)
        record = None if isinstance(target, type) else target
        return scan_record(self.schema, self.columns, row, self._ctx, record)

    def map(self) -> dict[str, Any]:
        """Current row as a column-name mapping of raw cells."""
        return dict(zip(self.columns, self._current()))

    def slice(self) -> list[Any]:
        """Current row as a list of raw cells."""
        return list(self._current())

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._row = None
        try:
            self._cursor.close()
        finally:
            if self._on_close is not None:
                self._on_close()
