"""
Value conversion from host record fields to driver values.

Per column, in priority order:
1. `to_storage()` capability wins outright
2. None becomes NULL (the soft-delete column writes 0 instead)
3. temporal values are formatted per the column's temporal subtype
4. JSON columns serialize to bytes (blob columns) or text; strings pass verbatim
5. containers and dataclasses on other columns serialize to JSON text,
   complex numbers to text; everything else goes through `convert_value`
"""
import base64
import dataclasses
import datetime
import decimal
import json
import logging
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from dateutil import tz

from dbmodel.column import ROLE_DELETE_TIME, Column
from dbmodel.exceptions import ConversionError
from dbmodel.types import format_time

logger = logging.getLogger(__name__)

__all__ = [
    'ConversionContext',
    'convert_value',
    'convert_params',
    'json_dumps',
    'to_storage_value',
    'record_to_map',
    'convert_row',
]


@dataclass
class ConversionContext:
    """Timezones and driver strategy a conversion runs under."""
    database_zone: datetime.tzinfo = dataclasses.field(default_factory=tz.tzlocal)
    app_zone: datetime.tzinfo = dataclasses.field(default_factory=tz.tzlocal)
    strategy: Any = None

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name if self.strategy is not None else ''


def convert_value(value: Any) -> Any:
    """Convert a single bound parameter to a database-compatible value.

    NumPy scalars become Python scalars; NaN, NaT and pandas NA become NULL.
    """
    if value is None:
        return None

    if isinstance(value, float) and math.isnan(value):
        return None

    if isinstance(value, np.floating) and np.isnan(value):
        return None

    if isinstance(value, np.datetime64) and np.isnat(value):
        return None

    if value is pd.NaT or value is pd.NA:
        return None

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()

    if isinstance(value, np.generic):
        return value.item()

    return value


def convert_params(params: list | tuple | None) -> list:
    """Convert a collection of parameters for database operations."""
    if params is None:
        return []
    return [convert_value(v) for v in params]


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode('ascii')
    if isinstance(value, (set, frozenset)):
        return list(value)
    if isinstance(value, complex):
        return str(value)
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f'Object of type {type(value).__name__} is not JSON serializable')


def json_dumps(value: Any) -> str:
    """Serialize a host value to JSON text."""
    try:
        return json.dumps(value, default=_json_default, ensure_ascii=False)
    except (TypeError, ValueError) as err:
        raise ConversionError(f'json encode failed: {err}') from err


def to_storage_value(column: Column, value: Any, ctx: ConversionContext) -> Any:
    """Convert one host field value to the driver value of its column.
    """
    if value is not None and callable(getattr(value, 'to_storage', None)):
        try:
            return value.to_storage()
        except ConversionError:
            raise
        except Exception as err:
            raise ConversionError(f'to_storage failed: {err}', column.name) from err

    if column.role == ROLE_DELETE_TIME and (value is None or (isinstance(value, int) and value == 0)):
        return 0

    if value is None:
        return None

    if column.temporal is not None and isinstance(value, (datetime.date, datetime.time)):
        try:
            return format_time(column.temporal, value, column.storage_zone(ctx.database_zone),
                               ctx.app_zone)
        except ConversionError as err:
            raise ConversionError(str(err), column.name) from err

    if column.json:
        if isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value) if column.is_blob else bytes(value).decode('utf-8')
        payload = json_dumps(value)
        return payload.encode('utf-8') if column.is_blob else payload

    if isinstance(value, (list, tuple, set, frozenset, dict)) or (
            dataclasses.is_dataclass(value) and not isinstance(value, type)):
        return json_dumps(value)

    if isinstance(value, (complex, np.complexfloating)):
        return str(complex(value))

    return convert_value(value)


def record_to_map(schema, record: Any) -> dict[str, Any]:
    """Host values of a record keyed by column name."""
    return {column.name: getattr(record, column.attr) for column in schema.columns.values()}


def convert_row(schema, data: dict[str, Any], ctx: ConversionContext) -> dict[str, Any]:
    """Convert a column-keyed map of host values to driver values.

    Keys that are not schema columns are normalized with `convert_value` only.
    """
    result = {}
    for name, value in data.items():
        column = schema.columns.get(name) if schema is not None else None
        if column is None:
            result[name] = convert_value(value)
        else:
            result[name] = to_storage_value(column, value, ctx)
    return result
