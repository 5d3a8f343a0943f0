"""
Record types shared by the unit and integration tests.

Kept at module level so annotations resolve through `typing.get_type_hints`.
"""
import datetime
from dataclasses import dataclass

import numpy as np
from dbmodel import field


@dataclass
class User:
    id: int = field(orm='auto', default=0)
    name: str = ''
    age: int = 0
    created: datetime.datetime | None = field(name='create_time', orm='createTime', default=None)
    updated: datetime.datetime | None = field(name='update_time', orm='updateTime', default=None)
    deleted: datetime.datetime | None = field(name='delete_time', orm='deleteTime', default=None)


@dataclass
class Address:
    city: str = ''
    zip: int = 0


@dataclass
class Sample:
    id: int = field(orm='auto', default=0)
    label: str = ''
    small: np.int16 = np.int16(0)
    big: int = 0
    unsigned: np.uint32 = np.uint32(0)
    ratio: float = 0.0
    single: np.float32 = np.float32(0)
    flag: bool = False
    payload: bytes = b''
    address: Address = field(json=True, default_factory=Address)
    tags: list[str] = field(json=True, default_factory=list)
    moment: datetime.datetime | None = field(tz='Asia/Shanghai', default=None)


@dataclass
class Event:
    id: int = field(orm='auto', default=0)
    day: datetime.datetime | None = field(sql='date', default=None)
    birthday: datetime.date | None = field(sql='date', default=None)


class Point:
    """Stores itself as `x,y` bytes."""

    def __init__(self, x=0, y=0):
        self.x = x
        self.y = y

    def __eq__(self, other):
        return isinstance(other, Point) and (self.x, self.y) == (other.x, other.y)

    def to_storage(self) -> bytes:
        return f'{self.x},{self.y}'.encode()

    @classmethod
    def from_storage(cls, data: bytes) -> 'Point':
        x, y = data.decode().split(',')
        return cls(int(x), int(y))


class Money:
    """Populates itself from a raw cell."""

    def __init__(self):
        self.cents = 0

    def scan(self, value):
        self.cents = int(round(float(value) * 100))


@dataclass
class Shape:
    id: int = field(orm='auto', default=0)
    origin: Point = field(sql='blob', default_factory=Point)
    price: Money = field(default_factory=Money)


@dataclass
class Document:
    id: int = field(orm='auto', default=0)
    body: Address = field(json=True, sql='blob', default_factory=Address)
    note: Address = field(json=True, default_factory=Address)
