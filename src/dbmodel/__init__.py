"""
Record mapping and fluent query building over DB-API connections, with
drivers for PostgreSQL, SQLite and MySQL.

Records are dataclasses; table columns are described with `field()`:

    @dataclass
    class User:
        id: int = field(orm='auto', default=0)
        name: str = ''
        created: datetime | None = field(name='create_time', sql='datetime', default=None)

    executor = Executor().conn_with_driver(sqlite3.connect('app.db'), 'sqlite')
    users = executor.model('user', User)
    users.schema.set_create_time('created')
    users.insert(User(name='a'))
    users.query().where('name', '=', 'a').get()
"""
__version__ = '0.1.0'

from dbmodel.cache import Cache
from dbmodel.column import Column, field
from dbmodel.connection import Connection, Transaction, connect
from dbmodel.exceptions import BuilderError, ConversionError, DatabaseError
from dbmodel.exceptions import DriverError, IntegrityError, NoResultError
from dbmodel.exceptions import OperationalError, ProgrammingError, QueryError
from dbmodel.exceptions import SchemaError, TypeConversionError, UniqueViolation
from dbmodel.executor import Executor
from dbmodel.model import Model
from dbmodel.options import DatabaseOptions
from dbmodel.query import Query
from dbmodel.rows import Rows
from dbmodel.schema import Schema, schema_for

__all__ = [
    'BuilderError',
    'Cache',
    'Column',
    'Connection',
    'ConversionError',
    'DatabaseError',
    'DatabaseOptions',
    'DriverError',
    'Executor',
    'IntegrityError',
    'Model',
    'NoResultError',
    'OperationalError',
    'ProgrammingError',
    'Query',
    'QueryError',
    'Rows',
    'Schema',
    'SchemaError',
    'Transaction',
    'TypeConversionError',
    'UniqueViolation',
    'connect',
    'field',
    'schema_for',
]
