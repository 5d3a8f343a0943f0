"""
Exception classes for schema, builder, conversion and driver errors.
"""
import sqlite3

import psycopg


class DatabaseError(Exception):
    """Base class for all dbmodel errors.
    """


class SchemaError(DatabaseError):
    """Bad record shape or invalid role-marker combination.
    """


class QueryError(DatabaseError):
    """Error in query construction or execution.
    """


class BuilderError(QueryError):
    """Error captured while building a query (empty table, bad argument
    source, field/value arity mismatch, reuse of a released query).
    """


class NoResultError(QueryError):
    """A single-row terminal call found no row.
    """


class ConversionError(DatabaseError):
    """Error converting a value between a host field and a column cell.
    """

    def __init__(self, message: str, column: str | None = None) -> None:
        if column:
            message = f'{column}: {message}'
        super().__init__(message)
        self.column = column


TypeConversionError = ConversionError

DriverError = (
    psycopg.Error,
    sqlite3.Error,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    )

ProgrammingError = (
    psycopg.ProgrammingError,
    sqlite3.ProgrammingError,
    QueryError,
    )

OperationalError = (
    psycopg.OperationalError,
    sqlite3.OperationalError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    )
