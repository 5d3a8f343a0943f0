"""
Type handling shared by the schema, converter and scanner.

This module provides:
- SQL type categories: the fixed table mapping SQL type tags to categories
- Kind: resolution of a field annotation to the kind that drives conversion
- Temporal: temporal subtypes and time formatting/parsing with timezones
- Capability protocols for custom storage conversion and nullable scanning
"""
import datetime
import decimal
import enum
import types
import typing
from typing import Any, Protocol, runtime_checkable

import dateutil.parser
import numpy as np
from dateutil import tz

from dbmodel.exceptions import ConversionError

# SQL type categories

class Category(enum.Enum):
    UNKNOWN = 0
    TEXT = 1
    BLOB = 2
    TIME = 3
    NUMERIC = 4


SQL_TYPES: dict[str, Category] = {
    'BIT': Category.NUMERIC,
    'TINYINT': Category.NUMERIC,
    'SMALLINT': Category.NUMERIC,
    'MEDIUMINT': Category.NUMERIC,
    'INT': Category.NUMERIC,
    'INTEGER': Category.NUMERIC,
    'BIGINT': Category.NUMERIC,

    'ENUM': Category.TEXT,
    'SET': Category.TEXT,
    'JSON': Category.TEXT,
    'JSONB': Category.TEXT,

    'CHAR': Category.TEXT,
    'VARCHAR': Category.TEXT,
    'NVARCHAR': Category.TEXT,
    'TINYTEXT': Category.TEXT,
    'TEXT': Category.TEXT,
    'MEDIUMTEXT': Category.TEXT,
    'LONGTEXT': Category.TEXT,
    'UUID': Category.TEXT,
    'CLOB': Category.TEXT,

    'DATE': Category.TIME,
    'DATETIME': Category.TIME,
    'TIME': Category.TIME,
    'TIMESTAMP': Category.TIME,
    'TIMESTAMPZ': Category.TIME,
    'TIMESTAMPTZ': Category.TIME,

    'DECIMAL': Category.NUMERIC,
    'NUMERIC': Category.NUMERIC,
    'REAL': Category.NUMERIC,
    'FLOAT': Category.NUMERIC,
    'DOUBLE': Category.NUMERIC,

    'BINARY': Category.BLOB,
    'VARBINARY': Category.BLOB,
    'TINYBLOB': Category.BLOB,
    'BLOB': Category.BLOB,
    'MEDIUMBLOB': Category.BLOB,
    'LONGBLOB': Category.BLOB,
    'BYTEA': Category.BLOB,

    'BOOL': Category.NUMERIC,
    'BOOLEAN': Category.NUMERIC,

    'SERIAL': Category.NUMERIC,
    'BIGSERIAL': Category.NUMERIC,
}

JSON_TYPES = {'JSON', 'JSONB'}


def sql_category(sql: str) -> Category:
    """Return the category of a SQL type tag, ignoring case and size suffixes.

    >>> sql_category('varchar(32)')
    <Category.TEXT: 1>
    >>> sql_category('')
    <Category.UNKNOWN: 0>
    """
    base = sql.split('(')[0].strip().upper()
    return SQL_TYPES.get(base, Category.UNKNOWN)


# Field kinds

class Kind(enum.Enum):
    ANY = 'any'
    STRING = 'string'
    BYTES = 'bytes'
    BOOL = 'bool'
    INT = 'int'
    UINT = 'uint'
    FLOAT = 'float'
    COMPLEX = 'complex'
    DATETIME = 'datetime'
    DATE = 'date'
    TIME = 'time'
    SEQUENCE = 'sequence'
    MAPPING = 'mapping'
    STRUCT = 'struct'


TEMPORAL_KINDS = {Kind.DATETIME, Kind.DATE, Kind.TIME}


def unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Strip `X | None` / `Optional[X]`, returning (X, optional)."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = typing.get_args(annotation)
        rest = [a for a in args if a is not type(None)]
        optional = len(rest) != len(args)
        if len(rest) == 1:
            return rest[0], optional
        return Any, optional
    return annotation, False


def resolve_kind(annotation: Any) -> tuple[Kind, Any, bool]:
    """Resolve a field annotation to (kind, base type, optional).

    Generic aliases resolve to their origin, so `list[int]` is a SEQUENCE
    with base type `list`.
    """
    annotation, optional = unwrap_optional(annotation)
    base = typing.get_origin(annotation) or annotation
    if not isinstance(base, type):
        return Kind.ANY, annotation, optional

    if issubclass(base, (bool, np.bool_)):
        kind = Kind.BOOL
    elif issubclass(base, (bytes, bytearray)):
        kind = Kind.BYTES
    elif issubclass(base, str):
        kind = Kind.STRING
    elif issubclass(base, np.unsignedinteger):
        kind = Kind.UINT
    elif issubclass(base, (int, np.signedinteger)):
        kind = Kind.INT
    elif issubclass(base, (float, decimal.Decimal, np.floating)):
        kind = Kind.FLOAT
    elif issubclass(base, (complex, np.complexfloating)):
        kind = Kind.COMPLEX
    elif issubclass(base, datetime.datetime):
        kind = Kind.DATETIME
    elif issubclass(base, datetime.date):
        kind = Kind.DATE
    elif issubclass(base, datetime.time):
        kind = Kind.TIME
    elif issubclass(base, (list, tuple, set, frozenset)):
        kind = Kind.SEQUENCE
    elif issubclass(base, dict):
        kind = Kind.MAPPING
    else:
        kind = Kind.STRUCT
    return kind, base, optional


def zero_value(kind: Kind, base: Any) -> Any:
    """Zero value of a kind, used as the captured default of a column."""
    if kind in {Kind.STRING, Kind.BYTES, Kind.BOOL, Kind.INT, Kind.UINT,
                Kind.FLOAT, Kind.COMPLEX, Kind.SEQUENCE, Kind.MAPPING}:
        return base()
    return None


# Capabilities

@runtime_checkable
class StorageConvertible(Protocol):
    """Custom binary conversion: wins over every other conversion rule."""

    def to_storage(self) -> bytes: ...

    @classmethod
    def from_storage(cls, data: bytes) -> Any: ...


@runtime_checkable
class NullableScanner(Protocol):
    """Fallback for struct kinds: populate the instance from a raw driver value."""

    def scan(self, value: Any) -> None: ...


def is_storage_convertible(base: Any) -> bool:
    return isinstance(base, type) and callable(getattr(base, 'to_storage', None)) \
        and callable(getattr(base, 'from_storage', None))


def is_nullable_scanner(base: Any) -> bool:
    return isinstance(base, type) and callable(getattr(base, 'scan', None))


# Temporal handling

class Temporal(enum.Enum):
    DATE = 'date'
    TIME = 'time'
    DATETIME = 'datetime'
    TIMESTAMPTZ = 'timestamptz'
    EPOCH = 'epoch'


_TEMPORAL_TAGS = {
    'DATE': Temporal.DATE,
    'TIME': Temporal.TIME,
    'DATETIME': Temporal.DATETIME,
    'TIMESTAMP': Temporal.DATETIME,
    'TIMESTAMPZ': Temporal.TIMESTAMPTZ,
    'TIMESTAMPTZ': Temporal.TIMESTAMPTZ,
}

_KIND_TEMPORAL = {
    Kind.DATETIME: Temporal.DATETIME,
    Kind.DATE: Temporal.DATE,
    Kind.TIME: Temporal.TIME,
}

ZERO_TIMES = {'0000-00-00 00:00:00', '0001-01-01 00:00:00'}

DATE_FORMAT = '%Y-%m-%d'
TIME_FORMAT = '%H:%M:%S'
DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def resolve_temporal(sql: str, kind: Kind) -> Temporal | None:
    """Pick the temporal subtype for a column from its SQL tag and field kind.

    Numeric tags on temporal fields store unix epoch seconds.
    """
    base = sql.split('(')[0].strip().upper()
    if base in _TEMPORAL_TAGS:
        return _TEMPORAL_TAGS[base]
    if kind not in TEMPORAL_KINDS:
        return None
    if SQL_TYPES.get(base) is Category.NUMERIC:
        return Temporal.EPOCH
    return _KIND_TEMPORAL[kind]


def resolve_zone(name: str) -> datetime.tzinfo:
    """Load a timezone by name: 'local', 'utc' or an IANA zone name."""
    lowered = name.lower()
    if lowered == 'local':
        return tz.tzlocal()
    if lowered == 'utc':
        return tz.UTC
    zone = tz.gettz(name)
    if zone is None:
        raise ConversionError(f'unknown timezone {name!r}')
    return zone


def _aware(value: datetime.datetime, zone: datetime.tzinfo) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


def format_time(subtype: Temporal, value: Any, storage_zone: datetime.tzinfo,
                app_zone: datetime.tzinfo) -> Any:
    """Format a temporal host value for storage.

    Date and time subtypes keep the wall clock of the value as given.
    Date-time values are shifted into the storage zone first; naive values
    are taken to be in the application zone.
    """
    if isinstance(value, datetime.datetime):
        if subtype is Temporal.DATE:
            return value.strftime(DATE_FORMAT)
        if subtype is Temporal.TIME:
            return value.strftime(TIME_FORMAT)
        moment = _aware(value, app_zone)
        if subtype is Temporal.DATETIME:
            return moment.astimezone(storage_zone).strftime(DATETIME_FORMAT)
        if subtype is Temporal.TIMESTAMPTZ:
            return moment.isoformat()
        return int(moment.timestamp())

    if isinstance(value, datetime.date):
        if subtype is Temporal.DATE:
            return value.strftime(DATE_FORMAT)
        midnight = datetime.datetime.combine(value, datetime.time(), tzinfo=storage_zone)
        if subtype is Temporal.TIME:
            return midnight.strftime(TIME_FORMAT)
        if subtype is Temporal.DATETIME:
            return midnight.strftime(DATETIME_FORMAT)
        if subtype is Temporal.TIMESTAMPTZ:
            return midnight.isoformat()
        return int(midnight.timestamp())

    if isinstance(value, datetime.time):
        if subtype is Temporal.TIME:
            return value.strftime(TIME_FORMAT)
        raise ConversionError(f'cannot store a time of day as {subtype.value}')

    raise ConversionError(f'unsupported temporal value {value!r}')


def str_to_time(data: str, subtype: Temporal | None, storage_zone: datetime.tzinfo,
                app_zone: datetime.tzinfo, driver: str = '') -> datetime.datetime | None:
    """Parse a textual time cell into an aware datetime.

    Returns None for the zero-date sentinels. Date and time subtypes stay in
    the storage zone, everything else is moved to the application zone.
    """
    sdata = data.strip()
    if sdata in ZERO_TIMES:
        return None

    try:
        if not any(c in sdata for c in '- :'):
            return datetime.datetime.fromtimestamp(int(sdata), app_zone)
        if len(sdata) > 19 and '-' in sdata:
            try:
                moment = dateutil.parser.isoparse(sdata)
            except ValueError:
                moment = dateutil.parser.parse(sdata)
        elif len(sdata) == 19 and '-' in sdata:
            moment = datetime.datetime.strptime(sdata, DATETIME_FORMAT)
        elif len(sdata) == 10 and sdata[4] == '-' and sdata[7] == '-':
            moment = datetime.datetime.strptime(sdata, DATE_FORMAT)
        elif subtype is Temporal.TIME or ':' in sdata:
            if ' ' in sdata:
                sdata = sdata.split(' ')[1].strip()
            if driver == 'mysql' and len(sdata) > 8:
                sdata = sdata[-8:]
            moment = datetime.datetime.strptime(f'1970-01-01 {sdata}', DATETIME_FORMAT)
        else:
            raise ConversionError(f'unsupported time format {sdata}')
    except (ValueError, OverflowError) as err:
        raise ConversionError(f'unsupported time format {sdata}: {err}') from err

    moment = _aware(moment, storage_zone)
    if subtype in {Temporal.DATE, Temporal.TIME}:
        return moment
    return moment.astimezone(app_zone)
