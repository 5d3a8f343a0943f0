"""
Model: a Schema and an Executor bound to one table, with the CRUD policy
of the schema (soft delete, create/update timestamps).

    users = Model('user', User, executor)
    users.schema.set_time()
    users.insert(user)
    users.find(executor.query().where('name', '=', 'a'))
    users.pk(1).soft_delete()
"""
import logging
from typing import TYPE_CHECKING, Any

from dbmodel.converter import convert_row
from dbmodel.exceptions import BuilderError
from dbmodel.query import Query, now_value, record_update_map
from dbmodel.schema import Schema

if TYPE_CHECKING:
    from dbmodel.executor import Executor

logger = logging.getLogger(__name__)

__all__ = ['Model']


class Model:
    """CRUD access to one table through a record type.

    `query()` and `pk()` return model-bound queries: their terminal calls
    apply the soft-delete scope (`delete_time = 0`) unless `with_deleted()`
    or `recovery()` is used. The methods taking a plain query (`find`,
    `update`, `delete`, `count`) add the same scope; their `*_by_query`
    variants do not.
    """

    def __init__(self, name: str, record: Any, executor: 'Executor') -> None:
        self.name = name
        self.schema = record if isinstance(record, Schema) else Schema(record)
        self.executor = executor

    def __repr__(self):
        return f'Model({self.name!r}, {self.schema.record_type.__name__})'

    def _bind(self, query: Query) -> Query:
        query.table(self.name)
        query._bind_model(self)
        if self.schema.auto_increment:
            query.id(self.schema.column_name(self.schema.auto_increment))
        return query

    def query(self) -> Query:
        """A model-bound query on this table."""
        return self._bind(self.executor.query())

    def bind(self, query: Query) -> Query:
        """Target a plain query at this table and scan with this schema."""
        return query.table(self.name)._bind_schema(self.schema)

    def pk(self, *keys: Any) -> Query:
        """A model-bound query filtered by primary key values, in key order."""
        query = self.query()
        primary = self.schema.primary
        if not primary:
            return query._fail(BuilderError(f'{self.name} does not have a primary key'))
        if len(keys) != len(primary):
            return query._fail(BuilderError(f'{self.name} primary key has {len(primary)} fields, got {len(keys)} values'))
        for attr, key in zip(primary, keys):
            query.where(self.schema.column_name(attr), '=', key)
        return query

    def _scope(self, query: Query) -> Query:
        if self.schema.soft_delete_enabled:
            query.where(self.schema.column_name(self.schema.delete_time), '=', 0)
        return query

    def find(self, query: Query) -> list[Any]:
        return self.find_by_query(self._scope(query))

    def one(self, query: Query) -> Any | None:
        """First matching record, or None."""
        query.limit(0, 1)
        result = self.find_by_query(self._scope(query))
        return result[0] if result else None

    def find_by_query(self, query: Query) -> list[Any]:
        return self.bind(query).find(self.schema.record_type)

    def rows(self, query: Query):
        return self.bind(query).rows()

    def insert(self, record: Any) -> int:
        """Insert a record and return its new identifier."""
        return self.query().save(record)

    def _update_values(self, record: Any) -> dict[str, Any]:
        schema = self.schema
        data = record_update_map(schema, record)
        if schema.update_time:
            column = schema.column(schema.update_time)
            data[column.name] = now_value(column, self.executor.app_zone)
        return convert_row(schema, data, self.executor.context)

    def update(self, query: Query, record: Any) -> int:
        return self.update_by_query(self._scope(query), record)

    def update_by_query(self, query: Query, record: Any) -> int:
        return self.bind(query).update(self._update_values(record))

    def delete(self, query: Query) -> int:
        """Delete the matching records.

        With soft delete enabled the rows are only marked deleted.
        """
        self._scope(query)
        if self.schema.soft_delete_enabled:
            column = self.schema.column(self.schema.delete_time)
            value = convert_row(self.schema, {column.name: now_value(column, self.executor.app_zone)},
                                self.executor.context)
            return self.bind(query).update(value)
        return self.delete_by_query(query)

    def delete_by_query(self, query: Query, all_rows: bool = False) -> int:
        return self.bind(query).delete(all_rows=all_rows)

    def count(self, query: Query) -> int:
        return self.count_by_query(self._scope(query))

    def count_by_query(self, query: Query) -> int:
        return self.bind(query).count()
