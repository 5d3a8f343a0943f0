"""
Unit tests for kind resolution, SQL categories and time parsing.
"""
import datetime
import decimal

import numpy as np
import pytest
from dateutil import tz
from dbmodel import ConversionError
from dbmodel.types import Category, Kind, Temporal, format_time, resolve_kind
from dbmodel.types import resolve_temporal, resolve_zone, sql_category, str_to_time


@pytest.mark.parametrize(('annotation', 'kind'), [
    (bool, Kind.BOOL),
    (np.bool_, Kind.BOOL),
    (int, Kind.INT),
    (np.int8, Kind.INT),
    (np.uint64, Kind.UINT),
    (float, Kind.FLOAT),
    (decimal.Decimal, Kind.FLOAT),
    (complex, Kind.COMPLEX),
    (str, Kind.STRING),
    (bytes, Kind.BYTES),
    (datetime.datetime, Kind.DATETIME),
    (datetime.date, Kind.DATE),
    (datetime.time, Kind.TIME),
    (list[int], Kind.SEQUENCE),
    (dict[str, int], Kind.MAPPING),
    (int | None, Kind.INT),
])
def test_resolve_kind(annotation, kind):
    assert resolve_kind(annotation)[0] is kind


def test_resolve_kind_optional():
    kind, base, optional = resolve_kind(datetime.date | None)
    assert (kind, base, optional) == (Kind.DATE, datetime.date, True)


@pytest.mark.parametrize(('sql', 'category'), [
    ('varchar(32)', Category.TEXT),
    ('BIGINT', Category.NUMERIC),
    ('datetime', Category.TIME),
    ('longblob', Category.BLOB),
    ('json', Category.TEXT),
    ('', Category.UNKNOWN),
    ('geometry', Category.UNKNOWN),
])
def test_sql_category(sql, category):
    assert sql_category(sql) is category


def test_resolve_temporal():
    assert resolve_temporal('date', Kind.DATETIME) is Temporal.DATE
    assert resolve_temporal('timestamptz', Kind.DATETIME) is Temporal.TIMESTAMPTZ
    assert resolve_temporal('bigint', Kind.DATETIME) is Temporal.EPOCH
    assert resolve_temporal('', Kind.TIME) is Temporal.TIME
    assert resolve_temporal('', Kind.STRING) is None


def test_resolve_zone():
    assert resolve_zone('UTC') is tz.UTC
    assert resolve_zone('Europe/Paris') is not None
    with pytest.raises(ConversionError):
        resolve_zone('Not/AZone')


def test_format_time_subtypes():
    moment = datetime.datetime(2024, 3, 4, 5, 6, 7, tzinfo=tz.UTC)
    assert format_time(Temporal.DATE, moment, tz.UTC, tz.UTC) == '2024-03-04'
    assert format_time(Temporal.TIME, moment, tz.UTC, tz.UTC) == '05:06:07'
    assert format_time(Temporal.DATETIME, moment, tz.UTC, tz.UTC) == '2024-03-04 05:06:07'
    assert format_time(Temporal.TIMESTAMPTZ, moment, tz.UTC, tz.UTC) == '2024-03-04T05:06:07+00:00'
    assert format_time(Temporal.EPOCH, moment, tz.UTC, tz.UTC) == int(moment.timestamp())


def test_format_time_of_day_as_datetime():
    with pytest.raises(ConversionError):
        format_time(Temporal.DATETIME, datetime.time(1, 2), tz.UTC, tz.UTC)


def test_str_to_time_formats():
    utc = tz.UTC
    assert str_to_time('2024-03-04T05:06:07+02:00', Temporal.DATETIME, utc, utc) == \
        datetime.datetime(2024, 3, 4, 3, 6, 7, tzinfo=utc)
    assert str_to_time('1709528767', Temporal.EPOCH, utc, utc) == \
        datetime.datetime.fromtimestamp(1709528767, utc)
    assert str_to_time('05:06:07', Temporal.TIME, utc, utc) == \
        datetime.datetime(1970, 1, 1, 5, 6, 7, tzinfo=utc)
    assert str_to_time('0001-01-01 00:00:00', Temporal.DATETIME, utc, utc) is None


def test_str_to_time_mysql_time():
    """MySQL time cells keep only the trailing HH:MM:SS"""
    utc = tz.UTC
    assert str_to_time('105:06:07', Temporal.TIME, utc, utc, 'mysql').time() == \
        datetime.time(5, 6, 7)


def test_str_to_time_invalid():
    with pytest.raises(ConversionError):
        str_to_time('2024-13-45 00:00:00', Temporal.DATETIME, tz.UTC, tz.UTC)
