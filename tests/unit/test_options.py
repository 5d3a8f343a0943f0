import pytest
from dbmodel.options import DatabaseOptions, iterdict_data_loader
from dbmodel.options import pandas_numpy_data_loader


def test_init_defaults():
    """Test default initialization"""
    options = DatabaseOptions(
        hostname='testhost',
        username='testuser',
        password='testpass',
        database='testdb',
        port=1234,
        timeout=30
    )

    assert options.drivername == 'postgresql'
    assert options.app_timezone == 'local'
    assert options.data_loader == pandas_numpy_data_loader

    assert options.use_pool is False
    assert options.pool_max_connections == 5
    assert options.pool_max_idle_time == 300
    assert options.pool_wait_timeout == 30


def test_validation():
    """Test validation rules"""
    with pytest.raises(ValueError):
        DatabaseOptions(drivername='invalid', database='testdb')

    with pytest.raises(ValueError):
        DatabaseOptions(drivername='postgresql', hostname='testhost', database='testdb')

    with pytest.raises(ValueError):
        DatabaseOptions(drivername='sqlite')


def test_generic_driver_rejected():
    """The generic strategy cannot be opened from options"""
    with pytest.raises(ValueError, match='conn_with_driver'):
        DatabaseOptions(drivername='generic')


def test_sqlite_needs_only_database():
    options = DatabaseOptions(drivername='sqlite', database=':memory:')
    assert options.database == ':memory:'


def test_app_timezone_validation():
    assert DatabaseOptions(drivername='sqlite', database='x', app_timezone='Asia/Tokyo')
    with pytest.raises(ValueError):
        DatabaseOptions(drivername='sqlite', database='x', app_timezone='Nowhere/Town')


def test_pandas_loader():
    frame = pandas_numpy_data_loader([{'a': 1, 'b': 2}], ['a', 'b'])
    assert list(frame.columns) == ['a', 'b']
    assert frame.iloc[0]['a'] == 1

    empty = pandas_numpy_data_loader([], ['a', 'b'])
    assert empty.empty
    assert list(empty.columns) == ['a', 'b']


def test_iterdict_loader():
    assert iterdict_data_loader([{'a': 1}], ['a']) == [{'a': 1}]
    assert iterdict_data_loader([], ['a']) == []
