"""
Model CRUD against SQLite: timestamps, soft delete and primary keys.
"""
import datetime

import pytest
from dbmodel import BuilderError, NoResultError

from tests.fixtures.records import Event, User


def test_end_to_end(user_model):
    """Insert, count, update and get through model-bound queries"""
    data = {'name': 'a'}
    assert user_model.query().insert(data) == 1
    assert data['create_time'] is not None

    assert user_model.query().count() == 1
    assert user_model.query().where('id', '=', 1).update({'name': 'b'}) == 1

    user = user_model.query().where('id', '=', 1).get()
    assert user.name == 'b'
    assert user.id == 1
    assert user.created is not None
    assert user.updated is not None
    assert user.deleted is None


def test_insert_record_sets_identifier(user_model):
    first, second = User(name='a'), User(name='b')
    assert user_model.insert(first) == 1
    assert user_model.insert(second) == 2
    assert second.id == 2
    assert isinstance(second.created, datetime.datetime)
    assert second.updated is not None


def test_save_updates_existing_record(user_model):
    user = User(name='a', age=1)
    user_model.insert(user)
    user.age = 30
    assert user_model.query().save(user) == 1
    assert user_model.pk(user.id).get().age == 30


def test_pk(user_model):
    user_model.insert(User(name='a'))
    assert user_model.pk(1).get().name == 'a'
    with pytest.raises(BuilderError):
        user_model.pk(1, 2).get()
    with pytest.raises(NoResultError):
        user_model.pk(99).get()


def test_soft_delete_and_recovery(user_model, sqlite_executor):
    """Model deletes only mark rows; recovery brings them back"""
    user_model.insert(User(name='a'))
    user_model.insert(User(name='b'))

    assert user_model.pk(1).soft_delete() == 1
    assert user_model.query().count() == 1
    assert sqlite_executor.query().table('users').count() == 2

    deleted = user_model.query().with_deleted().where('id', '=', 1).get()
    assert isinstance(deleted.deleted, datetime.datetime)
    row = sqlite_executor.query().table('users').where('id', '=', 1).one_interface()
    assert row['delete_time'] > 0

    assert user_model.pk(1).recovery() == 1
    assert user_model.query().count() == 2
    assert user_model.pk(1).get().deleted is None


def test_model_delete_is_soft(user_model, sqlite_executor):
    user_model.insert(User(name='a'))
    assert user_model.delete(sqlite_executor.query().where('name', '=', 'a')) == 1
    assert user_model.count(sqlite_executor.query()) == 0
    assert user_model.count_by_query(sqlite_executor.query()) == 1
    assert user_model.find(sqlite_executor.query()) == []


def test_soft_delete_needs_policy(sqlite_executor):
    events = sqlite_executor.model('event', Event)
    with pytest.raises(BuilderError):
        events.query().where('id', '=', 1).soft_delete()


def test_physical_delete_without_soft_delete(sqlite_executor):
    events = sqlite_executor.model('event', Event)
    events.insert(Event(birthday=datetime.date(2000, 1, 1)))
    assert events.delete(sqlite_executor.query().where('id', '=', 1)) == 1
    assert sqlite_executor.query().table('event').count() == 0


def test_find_and_one(user_model, sqlite_executor):
    for name in ('a', 'b', 'c'):
        user_model.insert(User(name=name, age=len(name)))
    users = user_model.find(sqlite_executor.query().desc('name'))
    assert [u.name for u in users] == ['c', 'b', 'a']
    assert user_model.one(sqlite_executor.query().where('name', '=', 'b')).name == 'b'
    assert user_model.one(sqlite_executor.query().where('name', '=', 'z')) is None

    found = []
    user_model.query().asc('id').find(found)
    assert [u.id for u in found] == [1, 2, 3]


def test_model_update_refreshes_update_time(user_model, sqlite_executor):
    user = User(name='a')
    user_model.insert(user)
    user.name = 'b'
    user.updated = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)
    assert user_model.update(sqlite_executor.query().where('id', '=', user.id), user) == 1
    stored = user_model.pk(user.id).get()
    assert stored.name == 'b'
    assert stored.updated.year > 2000
    assert stored.created == user.created


def test_model_insert_reads_back_equal(user_model):
    """Timestamps written back to the record match what the column stores"""
    user = User(name='a')
    user_model.insert(user)
    assert user.created.microsecond == 0
    assert user_model.pk(user.id).get() == user


def test_model_rows(user_model, sqlite_executor):
    user_model.insert(User(name='a'))
    with user_model.rows(sqlite_executor.query()) as rows:
        assert rows.next()
        user = rows.scan(User)
        assert user.name == 'a'
        assert not rows.next()
