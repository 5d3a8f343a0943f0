"""
Value scanning from driver cells to host record fields.

Mirror of the converter. Per column: `from_storage()` capability, JSON
decode (string targets get the raw text), then kind-directed decode. A NULL
cell leaves the captured default on non-optional fields and sets None on
optional ones. Result columns without a schema column are skipped.
"""
import base64
import dataclasses
import datetime
import decimal
import json
import logging
import typing
from collections.abc import Sequence
from typing import Any

import dateutil.parser
import numpy as np

from dbmodel.column import ROLE_DELETE_TIME, Column
from dbmodel.converter import ConversionContext
from dbmodel.exceptions import ConversionError
from dbmodel.types import Kind, Temporal, str_to_time, unwrap_optional

logger = logging.getLogger(__name__)

__all__ = ['scan_value', 'scan_record', 'from_json', 'decode_int', 'decode_bool']

_TRUE = {'1', 't', 'true'}
_FALSE = {'0', 'f', 'false'}


def _as_text(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode('utf-8')
    return str(raw)


def _as_bytes(raw: Any) -> bytes:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    return _as_text(raw).encode('utf-8')


def decode_int(raw: Any, strategy: Any = None, sql: str = '') -> int:
    """Decode an integer cell of SQL type `sql`.

    Accepts native integers, the driver's own encodings (e.g. MySQL BIT),
    `0x` hex, leading-zero octal, true/false and decimal text.
    """
    if strategy is not None:
        special = strategy.decode_integer(raw, sql)
        if special is not None:
            return special
    if isinstance(raw, (bool, np.bool_)):
        return int(raw)
    if isinstance(raw, (int, np.integer)):
        return int(raw)
    if isinstance(raw, (float, decimal.Decimal, np.floating)):
        if raw != int(raw):
            raise ConversionError(f'{raw!r} is not an integer')
        return int(raw)

    text = _as_text(raw).strip()
    lowered = text.lower()
    try:
        if lowered == 'true':
            return 1
        if lowered == 'false':
            return 0
        if lowered.lstrip('-+').startswith('0x'):
            return int(text, 16)
        if len(text) > 1 and text.startswith('0') and text.isdigit():
            return int(text, 8)
        return int(text, 10)
    except ValueError as err:
        raise ConversionError(f'cannot decode {text!r} as integer') from err


def decode_bool(raw: Any) -> bool:
    """Decode a boolean cell: 1/0, t/f, true/false in any case."""
    if isinstance(raw, (bool, np.bool_)):
        return bool(raw)
    if isinstance(raw, (int, float, np.integer, np.floating)):
        return raw != 0
    text = _as_text(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConversionError(f'cannot decode {text!r} as boolean')


def from_json(hint: Any, data: Any) -> Any:
    """Build a host value of type `hint` from decoded JSON data.

    Dataclasses are built recursively from objects; generic containers
    convert their items.
    """
    if data is None:
        return None
    hint, _ = unwrap_optional(hint)
    origin = typing.get_origin(hint) or hint
    args = typing.get_args(hint)

    if dataclasses.is_dataclass(origin) and isinstance(data, dict):
        hints = typing.get_type_hints(origin)
        kwargs = {f.name: from_json(hints.get(f.name, Any), data[f.name])
                  for f in dataclasses.fields(origin) if f.init and f.name in data}
        return origin(**kwargs)
    if origin is tuple and isinstance(data, list):
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(from_json(args[0], item) for item in data)
        if args:
            return tuple(from_json(a, item) for a, item in zip(args, data))
        return tuple(data)
    if origin in {list, set, frozenset} and isinstance(data, list):
        item_hint = args[0] if args else Any
        return origin(from_json(item_hint, item) for item in data)
    if origin is dict and isinstance(data, dict):
        value_hint = args[1] if len(args) == 2 else Any
        return {k: from_json(value_hint, v) for k, v in data.items()}
    if origin is datetime.datetime and isinstance(data, str):
        return dateutil.parser.isoparse(data)
    if origin is datetime.date and isinstance(data, str):
        return datetime.date.fromisoformat(data)
    if origin is datetime.time and isinstance(data, str):
        return datetime.time.fromisoformat(data)
    if origin is bytes and isinstance(data, str):
        return base64.b64decode(data)
    if origin is decimal.Decimal:
        return decimal.Decimal(str(data))
    if origin is complex and isinstance(data, str):
        return complex(data)
    return data


def _json_load(raw: Any) -> Any:
    if not isinstance(raw, (str, bytes, bytearray, memoryview)):
        # driver already decoded it (psycopg json/jsonb)
        return raw
    try:
        return json.loads(_as_text(raw))
    except json.JSONDecodeError as err:
        raise ConversionError(f'json decode failed: {err}') from err


def _numeric(base: Any, value: Any) -> Any:
    if isinstance(base, type) and issubclass(base, np.generic):
        return base(value)
    if isinstance(base, type) and base not in {int, float, bool} and not issubclass(base, bool):
        return base(value)
    return value


def _fit_temporal(column: Column, moment: datetime.datetime) -> Any:
    if column.kind is Kind.DATE:
        return moment.date()
    if column.kind is Kind.TIME:
        return moment.time()
    if column.temporal is Temporal.DATE:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return moment


def _decode_time(column: Column, raw: Any, ctx: ConversionContext) -> Any:
    storage = column.storage_zone(ctx.database_zone)
    subtype = column.temporal

    if column.role == ROLE_DELETE_TIME and _as_text(raw).strip() == '0':
        return None

    if isinstance(raw, datetime.datetime):
        moment = raw if raw.tzinfo is not None else raw.replace(tzinfo=storage)
        if subtype not in {Temporal.DATE, Temporal.TIME}:
            moment = moment.astimezone(ctx.app_zone)
    elif isinstance(raw, datetime.date):
        moment = datetime.datetime.combine(raw, datetime.time(), tzinfo=storage)
    elif isinstance(raw, datetime.time):
        moment = datetime.datetime.combine(datetime.date(1970, 1, 1),
                                           raw.replace(tzinfo=None), tzinfo=storage)
    elif isinstance(raw, (int, float, np.integer, np.floating)) and not isinstance(raw, bool):
        moment = datetime.datetime.fromtimestamp(int(raw), ctx.app_zone)
    else:
        moment = str_to_time(_as_text(raw), subtype, storage, ctx.app_zone, ctx.dialect)
        if moment is None:
            return None
    return _fit_temporal(column, moment)


def _decode_struct(column: Column, raw: Any) -> Any:
    if column.scanner:
        target = column.type()
        target.scan(raw)
        return target
    if dataclasses.is_dataclass(column.type):
        return from_json(column.hint, _json_load(raw))
    if isinstance(raw, column.type):
        return raw
    raise ConversionError(f'unsupported type {column.type.__name__} for value {raw!r}')


def scan_value(column: Column, raw: Any, ctx: ConversionContext) -> Any:
    """Decode one raw cell into the host value of its column.
    """
    if raw is None:
        return None if column.optional else column.default_value()

    kind, base = column.kind, column.type

    if column.custom:
        return base.from_storage(_as_bytes(raw))

    if column.json:
        if kind is Kind.STRING:
            return _as_text(raw) if isinstance(raw, (str, bytes, bytearray, memoryview)) \
                else json.dumps(raw)
        if kind is Kind.BYTES:
            return _as_bytes(raw)
        return from_json(column.hint, _json_load(raw))

    if kind is Kind.BYTES:
        return base(_as_bytes(raw))
    if kind is Kind.COMPLEX:
        if isinstance(raw, complex):
            return base(raw)
        try:
            return base(complex(_as_text(raw).replace(' ', '')))
        except ValueError as err:
            raise ConversionError(f'cannot decode {raw!r} as complex') from err
    if kind in {Kind.SEQUENCE, Kind.MAPPING}:
        if isinstance(raw, base):
            return raw
        return from_json(column.hint, _json_load(raw))
    if kind is Kind.STRING:
        if isinstance(raw, (datetime.date, datetime.time)):
            return raw.isoformat()
        return _as_text(raw)
    if kind is Kind.BOOL:
        bit = ctx.strategy.decode_integer(raw, column.sql) if ctx.strategy is not None else None
        return _numeric(base, decode_bool(raw) if bit is None else bit != 0)
    if kind is Kind.INT:
        return _numeric(base, decode_int(raw, ctx.strategy, column.sql))
    if kind is Kind.UINT:
        value = decode_int(raw, ctx.strategy, column.sql)
        if value < 0:
            raise ConversionError(f'negative value {value} for unsigned field')
        return _numeric(base, value)
    if kind is Kind.FLOAT:
        if issubclass(base, decimal.Decimal):
            return base(str(raw) if not isinstance(raw, bytes) else _as_text(raw))
        try:
            value = float(raw) if isinstance(raw, (int, float, decimal.Decimal, np.number)) \
                else float(_as_text(raw).strip())
        except ValueError as err:
            raise ConversionError(f'cannot decode {raw!r} as float') from err
        return _numeric(base, value)
    if kind in {Kind.DATETIME, Kind.DATE, Kind.TIME}:
        return _decode_time(column, raw, ctx)
    if kind is Kind.STRUCT:
        return _decode_struct(column, raw)
    return raw


def scan_record(schema, columns: Sequence[str], values: Sequence[Any],
                ctx: ConversionContext, record: Any = None) -> Any:
    """Fill a record from one result row.

    Builds a new record from the schema defaults unless one is given.
    Errors name the offending column.
    """
    if record is None:
        record = schema.new_record()
    for name, raw in zip(columns, values):
        column = schema.columns.get(name)
        if column is None:
            continue
        if raw is None and not column.optional:
            continue
        try:
            value = scan_value(column, raw, ctx)
        except ConversionError as err:
            if err.column:
                raise
            raise ConversionError(str(err), column.name) from err
        except (ValueError, TypeError) as err:
            raise ConversionError(str(err), column.name) from err
        object.__setattr__(record, column.attr, value)
    return record
