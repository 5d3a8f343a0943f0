"""
Unit tests for driver-to-host value scanning.
"""
import datetime

import numpy as np
import pytest
from dateutil import tz
from dbmodel import Column, ConversionError, Schema
from dbmodel.converter import ConversionContext
from dbmodel.scanner import decode_bool, decode_int, from_json, scan_record
from dbmodel.scanner import scan_value
from dbmodel.strategy import MySQLStrategy
from dbmodel.types import Kind

from tests.fixtures.records import Address, Document, Event, Point, Sample, Shape
from tests.fixtures.records import User


@pytest.fixture
def ctx():
    return ConversionContext(database_zone=tz.UTC, app_zone=tz.UTC)


@pytest.mark.parametrize(('raw', 'expected'), [
    (12, 12),
    ('12', 12),
    (b'12', 12),
    ('0x1f', 31),
    ('017', 15),
    ('0', 0),
    ('true', 1),
    ('False', 0),
    (3.0, 3),
])
def test_decode_int(raw, expected):
    assert decode_int(raw) == expected


def test_decode_int_errors():
    with pytest.raises(ConversionError):
        decode_int('abc')
    with pytest.raises(ConversionError):
        decode_int(1.5)


def test_decode_int_mysql_bit():
    """MySQL BIT columns arrive as a single raw byte"""
    assert decode_int(b'\x01', MySQLStrategy(), 'bit(1)') == 1
    assert decode_int(b'\x00', MySQLStrategy(), 'BIT') == 0


@pytest.fixture
def mysql_ctx():
    return ConversionContext(database_zone=tz.UTC, app_zone=tz.UTC, strategy=MySQLStrategy())


def test_mysql_binary_integer_is_text(mysql_ctx):
    """Only BIT columns get the raw byte rule"""
    column = Column(name='n', attr='n', type=int, kind=Kind.INT, sql='varbinary(1)')
    assert scan_value(column, b'7', mysql_ctx) == 7
    assert decode_int(b'7', MySQLStrategy()) == 7


def test_mysql_bit_bool(mysql_ctx):
    column = Column(name='flag', attr='flag', type=bool, kind=Kind.BOOL, sql='bit(1)')
    assert scan_value(column, b'\x01', mysql_ctx) is True
    assert scan_value(column, b'\x00', mysql_ctx) is False


@pytest.mark.parametrize(('raw', 'expected'), [
    (1, True), (0, False), ('t', True), ('FALSE', False), (b'1', True), (True, True),
])
def test_decode_bool(raw, expected):
    assert decode_bool(raw) is expected


def test_decode_bool_error():
    with pytest.raises(ConversionError):
        decode_bool('maybe')


def test_from_json_nested():
    assert from_json(Address, {'city': 'Oslo', 'zip': 1}) == Address('Oslo', 1)
    assert from_json(list[Address], [{'city': 'a'}]) == [Address('a', 0)]
    assert from_json(tuple[int, ...], [1, 2]) == (1, 2)
    assert from_json(dict[str, datetime.date], {'a': '2024-01-02'}) == {'a': datetime.date(2024, 1, 2)}


def test_json_string_target_gets_raw_text(ctx):
    """String targets of JSON columns are not decoded twice"""
    from dataclasses import dataclass

    from dbmodel import field

    @dataclass
    class Doc:
        body: str = field(sql='json', default='')

    column = Schema(Doc).column('body')
    assert scan_value(column, '{"a": 1}', ctx) == '{"a": 1}'
    assert scan_value(column, {'a': 1}, ctx) == '{"a": 1}'


def test_unsigned_rejects_negative(ctx):
    column = Schema(Sample).column('unsigned')
    assert scan_value(column, 5, ctx) == np.uint32(5)
    with pytest.raises(ConversionError):
        scan_value(column, -1, ctx)


def test_null_cells(ctx):
    """NULL leaves the default on plain fields and None on optional ones"""
    schema = Schema(User)
    record = scan_record(schema, ['id', 'name', 'create_time'], [1, None, None], ctx)
    assert record.id == 1
    assert record.name == ''
    assert record.created is None


def test_unknown_columns_are_skipped(ctx):
    record = scan_record(Schema(User), ['name', 'extra'], ['a', 'b'], ctx)
    assert record.name == 'a'


def test_error_names_column(ctx):
    with pytest.raises(ConversionError, match='^age:'):
        scan_record(Schema(User), ['age'], ['abc'], ctx)


def test_soft_delete_zero_is_none(ctx):
    schema = Schema(User)
    record = scan_record(schema, ['delete_time'], [0], ctx)
    assert record.deleted is None
    record = scan_record(schema, ['delete_time'], [1704067200], ctx)
    assert record.deleted == datetime.datetime(2024, 1, 1, tzinfo=tz.UTC)


def test_date_tag_reads_midnight():
    """A date column reads back at midnight of the stored day, whatever the app zone"""
    ctx = ConversionContext(database_zone=tz.UTC, app_zone=tz.gettz('America/New_York'))
    schema = Schema(Event)
    record = scan_record(schema, ['day', 'birthday'], ['2024-05-06', '2024-05-06'], ctx)
    assert record.day == datetime.datetime(2024, 5, 6, tzinfo=tz.UTC)
    assert record.birthday == datetime.date(2024, 5, 6)


def test_datetime_text_moves_to_app_zone():
    ctx = ConversionContext(database_zone=tz.UTC, app_zone=tz.gettz('Asia/Tokyo'))
    record = scan_record(Schema(User), ['create_time'], ['2024-01-02 00:00:00'], ctx)
    assert record.created.utcoffset() == datetime.timedelta(hours=9)
    assert record.created == datetime.datetime(2024, 1, 2, tzinfo=tz.UTC)


def test_zero_dates_are_none(ctx):
    record = scan_record(Schema(User), ['create_time'], ['0000-00-00 00:00:00'], ctx)
    assert record.created is None


def test_custom_and_scanner_capabilities(ctx):
    record = scan_record(Schema(Shape), ['origin', 'price'], [b'3,4', 12.5], ctx)
    assert record.origin == Point(3, 4)
    assert record.price.cents == 1250


def test_fill_existing_record(ctx):
    user = User(name='old', age=9)
    scan_record(Schema(User), ['name'], ['new'], ctx, record=user)
    assert user.name == 'new'
    assert user.age == 9


@pytest.mark.parametrize('raw', [
    b'{"city": "Oslo", "zip": 150}',
    memoryview(b'{"city": "Oslo", "zip": 150}'),
])
def test_json_blob_cell(ctx, raw):
    """JSON kept in a blob column decodes from raw bytes"""
    column = Schema(Document).column('body')
    assert scan_value(column, raw, ctx) == Address('Oslo', 150)
