"""
Unit tests for host-to-driver value conversion.
"""
import datetime
import json

import numpy as np
import pandas as pd
import pytest
from dateutil import tz
from dbmodel import ConversionError, Schema
from dbmodel.converter import ConversionContext, convert_params, convert_row
from dbmodel.converter import convert_value, json_dumps, record_to_map
from dbmodel.converter import to_storage_value

from tests.fixtures.records import Address, Document, Event, Point, Sample, Shape
from tests.fixtures.records import User


@pytest.fixture
def ctx():
    return ConversionContext(database_zone=tz.UTC, app_zone=tz.gettz('Asia/Tokyo'))


def test_convert_value_nulls():
    """NaN, NaT and pandas NA become NULL"""
    assert convert_value(float('nan')) is None
    assert convert_value(np.float64('nan')) is None
    assert convert_value(pd.NaT) is None
    assert convert_value(pd.NA) is None
    assert convert_value(np.datetime64('NaT')) is None


def test_convert_value_numpy_scalars():
    assert convert_value(np.int64(5)) == 5
    assert type(convert_value(np.int64(5))) is int
    assert type(convert_value(np.float32(1.5))) is float
    assert convert_value(pd.Timestamp('2024-01-02 03:04:05')) == datetime.datetime(2024, 1, 2, 3, 4, 5)


def test_convert_params():
    assert convert_params(None) == []
    assert convert_params((np.int32(1), 'a', None)) == [1, 'a', None]


def test_custom_storage_wins():
    schema = Schema(Shape)
    assert to_storage_value(schema.column('origin'), Point(1, 2), ConversionContext()) == b'1,2'


def test_json_column(ctx):
    """JSON columns serialize composites, pass strings verbatim"""
    schema = Schema(Sample)
    column = schema.column('address')
    assert json.loads(to_storage_value(column, Address('Paris', 75), ctx)) == {'city': 'Paris', 'zip': 75}
    assert to_storage_value(column, '{"city": "x"}', ctx) == '{"city": "x"}'
    assert to_storage_value(schema.column('tags'), ['a', 'b'], ctx) == '["a", "b"]'


def test_json_blob_column_stores_bytes(ctx):
    """JSON goes to a blob column as UTF-8 bytes and to a text column as str"""
    schema = Schema(Document)
    body = to_storage_value(schema.column('body'), Address('Zürich', 8000), ctx)
    assert isinstance(body, bytes)
    assert json.loads(body.decode('utf-8')) == {'city': 'Zürich', 'zip': 8000}
    note = to_storage_value(schema.column('note'), Address('Zürich', 8000), ctx)
    assert isinstance(note, str)
    assert to_storage_value(schema.column('body'), '{}', ctx) == '{}'


def test_json_dumps_failure():
    with pytest.raises(ConversionError):
        json_dumps({'a': object()})


def test_datetime_shifts_to_storage_zone(ctx):
    """Naive date-times are read in the application zone"""
    schema = Schema(User)
    column = schema.column('created')
    value = datetime.datetime(2024, 1, 2, 9, 0, 0)
    assert to_storage_value(column, value, ctx) == '2024-01-02 00:00:00'


def test_column_timezone_override(ctx):
    schema = Schema(Sample)
    value = datetime.datetime(2024, 1, 2, 0, 0, 0, tzinfo=tz.UTC)
    assert to_storage_value(schema.column('moment'), value, ctx) == '2024-01-02 08:00:00'


def test_date_tag_discards_time(ctx):
    schema = Schema(Event)
    value = datetime.datetime(2024, 5, 6, 23, 30, tzinfo=tz.UTC)
    assert to_storage_value(schema.column('day'), value, ctx) == '2024-05-06'
    assert to_storage_value(schema.column('birthday'), datetime.date(2024, 5, 6), ctx) == '2024-05-06'


def test_soft_delete_column(ctx):
    """The delete-time column writes 0 for unset and epoch seconds otherwise"""
    schema = Schema(User)
    column = schema.column('deleted')
    assert to_storage_value(column, None, ctx) == 0
    moment = datetime.datetime(2024, 1, 1, tzinfo=tz.UTC)
    assert to_storage_value(column, moment, ctx) == int(moment.timestamp())


def test_none_is_null(ctx):
    schema = Schema(User)
    assert to_storage_value(schema.column('created'), None, ctx) is None


def test_record_to_map_and_convert_row(ctx):
    schema = Schema(Sample)
    record = Sample(label='x', small=np.int16(3), tags=['a'])
    data = record_to_map(schema, record)
    assert data['label'] == 'x'
    assert 'moment' in data
    row = convert_row(schema, {**data, 'extra': np.int64(1)}, ctx)
    assert row['small'] == 3
    assert type(row['small']) is int
    assert row['tags'] == '["a"]'
    assert row['extra'] == 1
