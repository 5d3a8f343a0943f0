"""
Fluent query builder and terminal operations.

A Query accumulates clause state through builder calls and runs exactly
one terminal call (insert, update, delete, count, execute, select_*, find,
rows, get, soft_delete, recovery, save). The terminal call releases the
query back to its Executor's pool; using it afterwards raises BuilderError.

Builder errors (bad raw-SQL argument source and the like) are captured and
raised by the terminal call, so chains stay linear:

    executor.query().table('user').where('id', '=', 1).one_interface()
"""
import dataclasses
import datetime
import decimal
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import TYPE_CHECKING, Any, Self

import numpy as np
import pandas as pd

from dbmodel.column import ROLE_CREATE_TIME, ROLE_UPDATE_TIME, Column
from dbmodel.connection import Connection
from dbmodel.converter import convert_row, record_to_map, to_storage_value
from dbmodel.exceptions import BuilderError, ConversionError, NoResultError
from dbmodel.exceptions import SchemaError
from dbmodel.rows import Rows
from dbmodel.scanner import scan_record
from dbmodel.schema import Schema, schema_for
from dbmodel.sql import substitute_params
from dbmodel.types import Kind, Temporal

if TYPE_CHECKING:
    from dbmodel.executor import Executor
    from dbmodel.model import Model

logger = logging.getLogger(__name__)

__all__ = ['Query', 'QueryState', 'now_value', 'record_update_map', 'value_to_string']


@dataclass
class QueryState:
    """Clause state of one request/response cycle, recycled by the pool."""
    table: str = ''
    fields: list[str] = field(default_factory=list)
    where: list[str] = field(default_factory=list)
    where_args: list[Any] = field(default_factory=list)
    order: list[str] = field(default_factory=list)
    limit: tuple[int, int] | None = None
    id: str = ''
    model: 'Model | None' = None
    schema: Schema | None = None
    scoped: bool = True
    raw_sql: str = ''
    raw_args: list[Any] = field(default_factory=list)
    conn: Any = None
    error: Exception | None = None

    def reset(self) -> None:
        self.table = ''
        self.fields.clear()
        self.where.clear()
        self.where_args.clear()
        self.order.clear()
        self.limit = None
        self.id = ''
        self.model = None
        self.schema = None
        self.scoped = True
        self.raw_sql = ''
        self.raw_args = []
        self.conn = None
        self.error = None


def value_to_string(value: Any) -> str:
    """Render a raw cell as text for the string-map select terminals.
    """
    if value is None:
        return ''
    if isinstance(value, (bool, np.bool_)):
        return 'true' if value else 'false'
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        return np.format_float_positional(float(value), trim='-')
    if isinstance(value, (str, decimal.Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        text = bytes(value).decode('utf-8', errors='replace')
        return '0' if text == '\x00' else text
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, complex):
        return str(value)
    raise ConversionError(f'unsupported type {type(value).__name__}')


def now_value(column: Column, zone: datetime.tzinfo) -> Any:
    """Current time in the form a timestamp column stores it.

    Whole seconds unless the column keeps a timestamptz.
    """
    now = datetime.datetime.now(zone)
    if column.temporal is not Temporal.TIMESTAMPTZ:
        now = now.replace(microsecond=0)
    if column.kind is Kind.DATETIME:
        return now
    if column.kind is Kind.DATE:
        return now.date()
    if column.kind is Kind.TIME:
        return now.time()
    if column.kind in {Kind.INT, Kind.UINT, Kind.FLOAT}:
        return column.type(int(time.time()))
    return now


def record_update_map(schema: Schema, record: Any) -> dict[str, Any]:
    """Column values of a record for an UPDATE.

    The identifier, delete-time and update-time columns are left out, as is
    an unset create time.
    """
    data = record_to_map(schema, record)
    for attr in (schema.auto_increment, schema.delete_time, schema.update_time):
        if attr:
            data.pop(schema.column_name(attr), None)
    if schema.create_time and data.get(schema.column_name(schema.create_time)) is None:
        data.pop(schema.column_name(schema.create_time), None)
    return data


def builder(func: Callable) -> Callable:
    """Builder call: skipped once an error is captured, captures BuilderError."""
    @wraps(func)
    def wrapper(self: 'Query', *args: Any, **kwargs: Any) -> 'Query':
        state = self._live()
        if state.error is not None:
            return self
        try:
            func(self, *args, **kwargs)
        except BuilderError as err:
            logger.debug(f'Captured builder error: {err}')
            state.error = err
        return self
    return wrapper


def terminal(func: Callable) -> Callable:
    """Terminal call: raises a captured error, always releases the query."""
    @wraps(func)
    def wrapper(self: 'Query', *args: Any, **kwargs: Any) -> Any:
        state = self._live()
        try:
            if state.error is not None:
                raise state.error
            return func(self, *args, **kwargs)
        finally:
            self._release()
    return wrapper


class Query:
    """Builder and executor for a single request/response cycle.
    """

    def __init__(self, executor: 'Executor', state: QueryState | None = None) -> None:
        self.executor = executor
        self._state = state if state is not None else QueryState()

    def __repr__(self):
        if self._state is None:
            return 'Query(released)'
        return f'Query(table={self._state.table!r}, where={self._state.where!r})'

    def _live(self) -> QueryState:
        if self._state is None:
            raise BuilderError('query has been released; get a new one from the executor')
        return self._state

    def _release(self) -> None:
        state, self._state = self._state, None
        if state is not None:
            self.executor.release(state)

    @property
    def released(self) -> bool:
        return self._state is None

    def _quote(self, identifier: str) -> str:
        return self.executor.strategy.quote_identifier(identifier)

    def _column_ref(self, name: str) -> str:
        """Map an attribute name of the bound schema to its column name."""
        schema = self._state.schema
        if schema is not None and name not in schema.columns and name in schema.fields:
            return schema.fields[name]
        return name

    # builder calls

    @builder
    def table(self, table: str) -> Self:
        self._state.table = self._quote(table)

    @builder
    def table_alias(self, table: str, alias: str) -> Self:
        self._state.table = self._quote(table)
        if alias:
            self._state.table += f' AS {alias}'

    @builder
    def field(self, name: str) -> Self:
        self._state.fields.append(self._quote(self._column_ref(name)))

    @builder
    def field_alias(self, expr: str, alias: str) -> Self:
        """Project a raw expression, optionally aliased."""
        self._state.fields.append(f'{expr} AS {alias}' if alias else expr)

    @builder
    def where(self, name: str, operator: str, value: Any) -> Self:
        """Append `<field> <operator> ?`; predicates are AND-conjoined."""
        self._state.where.append(f'{self._quote(self._column_ref(name))} {operator} ?')
        self._state.where_args.append(value)

    @builder
    def order(self, name: str) -> Self:
        self._state.order.append(self._quote(self._column_ref(name)))

    @builder
    def asc(self, name: str) -> Self:
        self._state.order.append(f'{self._quote(self._column_ref(name))} ASC')

    @builder
    def desc(self, name: str) -> Self:
        self._state.order.append(f'{self._quote(self._column_ref(name))} DESC')

    @builder
    def limit(self, start: int, count: int) -> Self:
        self._state.limit = (int(start), int(count))

    @builder
    def page(self, page: int, size: int) -> Self:
        """Limit to one page; pages below 1 start at row 0."""
        start = (page - 1) * size if page >= 1 else 0
        self._state.limit = (start, size)

    @builder
    def sql(self, query: str, args: Any = None) -> Self:
        """Override the built statement with raw SQL.

        `args` is a list/tuple for `?` placeholders, or a dict/object that
        supplies `?name` placeholders.
        """
        self._state.raw_sql, self._state.raw_args = substitute_params(query, args)

    @builder
    def id(self, name: str) -> Self:
        """Name the field that receives the driver-assigned identifier on insert."""
        self._state.id = name

    @builder
    def session(self, conn: Any) -> Self:
        """Run this query on a transaction (or another connection)."""
        if not hasattr(conn, 'exec'):
            conn = Connection(conn, self.executor.strategy)
        self._state.conn = conn

    @builder
    def with_deleted(self) -> Self:
        """Drop the implicit soft-delete scope of a model-bound query."""
        self._state.scoped = False

    def _fail(self, err: Exception) -> Self:
        """Capture an error for the terminal call to raise."""
        state = self._live()
        if state.error is None:
            state.error = err
        return self

    def _bind_model(self, model: 'Model') -> Self:
        state = self._live()
        state.model = model
        state.schema = model.schema
        return self

    def _bind_schema(self, schema: Schema) -> Self:
        self._live().schema = schema
        return self

    # statement building

    def _connection(self) -> Any:
        conn = self._state.conn or self.executor.connection
        if conn is None:
            raise BuilderError('executor has no connection')
        return conn

    def _require_table(self) -> None:
        if not self._state.table:
            raise BuilderError('table is empty')

    def _soft_delete_column(self) -> str | None:
        state = self._state
        if state.model is None or not state.scoped:
            return None
        schema = state.model.schema
        if not schema.soft_delete_enabled:
            return None
        return schema.column_name(schema.delete_time)

    def _where_clause(self) -> tuple[str, list[Any]]:
        state = self._state
        where = list(state.where)
        args = list(state.where_args)
        deleted = self._soft_delete_column()
        if deleted is not None:
            where.append(f'{self._quote(deleted)} = ?')
            args.append(0)

        sql = ' AND '.join(where) if where else '1=1'
        if state.order:
            sql += ' ORDER BY ' + ', '.join(state.order)
        if state.limit is not None:
            sql += ' ' + self.executor.strategy.limit_clause(*state.limit)
        return sql, args

    def _select(self) -> Any:
        """Run the select (or the raw override) and return the open cursor."""
        state = self._state
        if state.raw_sql:
            return self._connection().query(state.raw_sql, state.raw_args)
        self._require_table()
        fields = ', '.join(state.fields) or '*'
        where, args = self._where_clause()
        return self._connection().query(f'SELECT {fields} FROM {state.table} WHERE {where}', args)

    def _fetch(self) -> tuple[list[str], list[tuple]]:
        cursor = self._select()
        try:
            columns = [desc[0] for desc in cursor.description or []]
            return columns, [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _one(self) -> None:
        if not self._state.raw_sql:
            self._state.limit = (0, 1)

    # model value handling

    def _now(self, column: Column) -> Any:
        return now_value(column, self.executor.app_zone)

    def _model_key(self, schema: Schema, key: str) -> str:
        if key in schema.columns:
            return key
        try:
            return schema.column_name(key)
        except SchemaError as err:
            raise BuilderError(str(err)) from err

    def _model_insert_rows(self, data: list[dict]) -> tuple[list[str], list[list[Any]]]:
        schema = self._state.schema
        ctx = self.executor.context
        auto = schema.column_name(schema.auto_increment) if schema.auto_increment else None
        fields = [name for name in schema.columns if name != auto]
        for record in data:
            for key in record:
                self._model_key(schema, key)

        rows = []
        for record in data:
            keyed = {self._model_key(schema, k): k for k in record}
            row = []
            for name in fields:
                column = schema.columns[name]
                value = record[keyed[name]] if name in keyed else column.default_value()
                if column.role in {ROLE_CREATE_TIME, ROLE_UPDATE_TIME} and _is_unset(value):
                    value = self._now(column)
                    record[keyed.get(name, name)] = value
                if column.required and value is None:
                    raise BuilderError(f'column {name} is required')
                row.append(to_storage_value(column, value, ctx))
            rows.append(row)
        return fields, rows

    def _model_update_values(self, data: dict) -> tuple[list[str], list[Any]]:
        schema = self._state.schema
        ctx = self.executor.context
        auto = schema.column_name(schema.auto_increment) if schema.auto_increment else None
        values = {self._model_key(schema, k): v for k, v in data.items()}
        values.pop(auto, None)
        if schema.update_time:
            name = schema.column_name(schema.update_time)
            if _is_unset(values.get(name)):
                values[name] = self._now(schema.columns[name])
        converted = convert_row(schema, values, ctx)
        return list(converted), list(converted.values())

    # exec terminals

    def _insert(self, data: list[dict]) -> int:
        state = self._state
        self._require_table()
        if not data:
            raise BuilderError('no data to insert')
        if state.model is not None:
            fields, rows = self._model_insert_rows(data)
        else:
            fields, rows = _parse_maps(data)

        strategy = self.executor.strategy
        columns = ', '.join(self._quote(f) for f in fields)
        placeholders = '(' + ', '.join('?' * len(fields)) + ')'
        conn = self._connection()

        if len(rows) == 1:
            sql = f'INSERT INTO {state.table} ({columns}) VALUES {placeholders}'
            returning = strategy.returning_clause(state.id) if state.id else ''
            result = conn.exec(sql + returning, rows[0], returning=bool(returning))
            if state.id:
                data[0][state.id] = result.lastrowid
                return result.lastrowid
            return result.rowcount

        sql = f'INSERT INTO {state.table} ({columns}) VALUES ' + ', '.join([placeholders] * len(rows))
        return conn.exec(sql, [v for row in rows for v in row]).rowcount

    def _update(self, data: dict) -> int:
        state = self._state
        self._require_table()
        if state.model is not None:
            fields, values = self._model_update_values(data)
        else:
            fields, values = list(data), list(data.values())
        if not fields:
            raise BuilderError('no fields to update')
        assignments = ', '.join(f'{self._quote(f)} = ?' for f in fields)
        where, args = self._where_clause()
        sql = f'UPDATE {state.table} SET {assignments} WHERE {where}'
        return self._connection().exec(sql, values + args).rowcount

    @terminal
    def insert(self, *data: dict) -> int:
        """Insert one or more field maps.

        One map returns the driver-assigned identifier when an id field is
        set (and writes it into the map), else the affected rows. Several
        maps are one statement returning the affected rows.
        """
        return self._insert(list(data))

    @terminal
    def update(self, data: dict) -> int:
        return self._update(data)

    @terminal
    def delete(self, all_rows: bool = False) -> int:
        """Delete the matching rows.

        Without a where clause nothing is deleted unless `all_rows` is set.
        """
        state = self._state
        self._require_table()
        if not state.where and not all_rows:
            raise BuilderError('delete without where clause; pass all_rows=True to delete every row')
        where, args = self._where_clause()
        return self._connection().exec(f'DELETE FROM {state.table} WHERE {where}', args).rowcount

    @terminal
    def execute(self) -> int:
        """Run the raw SQL override as a statement and return affected rows."""
        state = self._state
        if not state.raw_sql:
            raise BuilderError('no raw sql to execute')
        return self._connection().exec(state.raw_sql, state.raw_args).rowcount

    # select terminals

    @terminal
    def count(self) -> int:
        state = self._state
        state.fields[:] = ['count(*) AS n']
        state.limit = (0, 1)
        _, rows = self._fetch()
        if not rows:
            raise NoResultError('count returned no row')
        return int(rows[0][0])

    @terminal
    def select_string(self) -> list[dict[str, str]]:
        columns, rows = self._fetch()
        return [{c: value_to_string(v) for c, v in zip(columns, row)} for row in rows]

    @terminal
    def one_string(self) -> dict[str, str]:
        self._one()
        columns, rows = self._fetch()
        if not rows:
            raise NoResultError('result is empty')
        return {c: value_to_string(v) for c, v in zip(columns, rows[0])}

    @terminal
    def select_interface(self) -> list[dict[str, Any]]:
        columns, rows = self._fetch()
        return [dict(zip(columns, row)) for row in rows]

    @terminal
    def one_interface(self) -> dict[str, Any]:
        self._one()
        columns, rows = self._fetch()
        if not rows:
            raise NoResultError('result is empty')
        return dict(zip(columns, rows[0]))

    @terminal
    def select_frame(self) -> pd.DataFrame:
        """Load the result through the executor's data loader (a DataFrame by default)."""
        columns, rows = self._fetch()
        data = [dict(zip(columns, row)) for row in rows]
        return self.executor.data_loader(data, columns)

    def _schema_for(self, target: Any) -> Schema:
        record_type = target if isinstance(target, type) else type(target)
        schema = self._state.schema
        if schema is not None and schema.record_type is record_type:
            return schema
        return schema_for(record_type)

    @terminal
    def find(self, target: Any) -> Any:
        """Scan the result into records.

        A dataclass type returns a list of new records; a list is filled
        with records of the bound schema; a dataclass instance is filled
        from the first row (NoResultError when there is none).
        """
        ctx = self.executor.context
        if isinstance(target, list):
            if self._state.schema is None:
                raise BuilderError('find into a list needs a model-bound query')
            schema = self._state.schema
            columns, rows = self._fetch()
            target.extend(scan_record(schema, columns, row, ctx) for row in rows)
            return target
        if isinstance(target, type):
            schema = self._schema_for(target)
            columns, rows = self._fetch()
            return [scan_record(schema, columns, row, ctx) for row in rows]
        if dataclasses.is_dataclass(target):
            schema = self._schema_for(target)
            self._one()
            columns, rows = self._fetch()
            if not rows:
                raise NoResultError('result is empty')
            return scan_record(schema, columns, rows[0], ctx, record=target)
        raise BuilderError(f'find target must be a dataclass type, instance or list, got {type(target).__name__}')

    @terminal
    def rows(self) -> Rows:
        """Open a Rows cursor over the result; the caller must close it."""
        cursor = self._select()
        return Rows(cursor, self.executor.context, schema=self._state.schema)

    # model-bound terminals

    def _require_model(self, soft_delete: bool = False) -> 'Model':
        model = self._state.model
        if model is None:
            raise BuilderError('query is not bound to a model')
        if soft_delete and not model.schema.soft_delete_enabled:
            raise BuilderError(f'{model.name} does not have soft delete')
        return model

    @terminal
    def get(self) -> Any:
        """Fetch the first matching row as a new record; NoResultError when none."""
        model = self._require_model()
        self._one()
        columns, rows = self._fetch()
        if not rows:
            raise NoResultError(f'no {model.name} found')
        return scan_record(model.schema, columns, rows[0], self.executor.context)

    @terminal
    def soft_delete(self) -> int:
        """Mark the matching rows deleted by setting the delete-time column to now."""
        model = self._require_model(soft_delete=True)
        schema = model.schema
        column = schema.column(schema.delete_time)
        return self._update({column.name: self._now(column)})

    @terminal
    def recovery(self) -> int:
        """Reset the delete-time column of the matching (deleted) rows to zero."""
        model = self._require_model(soft_delete=True)
        schema = model.schema
        self._state.scoped = False
        return self._update({schema.column_name(schema.delete_time): 0})

    @terminal
    def save(self, record: Any) -> int:
        """Insert a record without identifier, else update it by primary key.

        Insert returns the new identifier (also set on the record), update
        returns affected rows.
        """
        model = self._require_model()
        schema = model.schema
        if not schema.primary:
            raise BuilderError(f'{model.name} does not have a primary key')
        if not schema.auto_increment:
            raise BuilderError(f'{model.name} does not have an auto-increment field')

        identifier = schema.get(record, schema.auto_increment)
        data = record_to_map(schema, record)
        if not identifier:
            auto = schema.column_name(schema.auto_increment)
            self._state.id = auto
            result = self._insert([data])
            schema.set(record, schema.auto_increment, result)
            for attr in (schema.create_time, schema.update_time):
                if attr:
                    schema.set(record, attr, data[schema.column_name(attr)])
            return result

        if not self._state.where:
            for attr in schema.primary:
                self._state.where.append(f'{self._quote(schema.column_name(attr))} = ?')
                self._state.where_args.append(schema.get(record, attr))
        return self._update(record_update_map(schema, record))


def _is_unset(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    return False


def _parse_maps(data: list[dict]) -> tuple[list[str], list[list[Any]]]:
    """Field list from the first map, values per map in that order."""
    fields = list(data[0])
    rows = []
    for record in data:
        missing = [f for f in fields if f not in record]
        if missing or len(record) != len(fields):
            raise BuilderError(f'field num is error: expected {fields}, got {list(record)}')
        rows.append([record[f] for f in fields])
    return fields, rows
