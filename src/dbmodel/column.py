"""
Column model and the field declaration helper.

Record types are plain dataclasses. Storage details live in the field
metadata under the `dbmodel` key, written by `field()`:

    @dataclass
    class User:
        Id: int = field(name='id', orm='auto')
        Name: str = field(name='name', sql='varchar(32)', required=True)
        Tags: list = field(name='tags', json=True, default_factory=list)
"""
import copy
import dataclasses
import datetime
from dataclasses import dataclass
from typing import Any

from dbmodel.types import JSON_TYPES, Category, Kind, Temporal
from dbmodel.types import is_nullable_scanner, is_storage_convertible
from dbmodel.types import resolve_temporal, resolve_zone, sql_category

__all__ = ['Column', 'field', 'METADATA_KEY', 'ROLES']

METADATA_KEY = 'dbmodel'

ROLE_AUTO = 'auto'
ROLE_PRIMARY = 'primary'
ROLE_CREATE_TIME = 'createTime'
ROLE_UPDATE_TIME = 'updateTime'
ROLE_DELETE_TIME = 'deleteTime'

ROLES = {ROLE_AUTO, ROLE_PRIMARY, ROLE_CREATE_TIME, ROLE_UPDATE_TIME, ROLE_DELETE_TIME}


def field(*, name: str | None = None, sql: str = '', json: bool = False,
          required: bool = False, tz: str | None = None, orm: str | None = None,
          default: Any = dataclasses.MISSING,
          default_factory: Any = dataclasses.MISSING, **kwargs) -> Any:
    """Declare a record field with its storage options.

    Args:
        name: storage column name, defaults to the attribute name
        sql: SQL type tag (case-insensitive), e.g. 'varchar(32)', 'date', 'json'
        json: store the value with the JSON codec
        required: refuse NULL for this column on insert
        tz: timezone override for temporal columns ('local', 'utc', IANA name)
        orm: role marker, one of auto, primary, createTime, updateTime, deleteTime

    Remaining keyword arguments go to `dataclasses.field`.
    """
    metadata = dict(kwargs.pop('metadata', None) or {})
    metadata[METADATA_KEY] = {
        'name': name,
        'sql': sql,
        'json': json,
        'required': required,
        'tz': tz,
        'orm': orm,
    }
    return dataclasses.field(default=default, default_factory=default_factory,
                             metadata=metadata, **kwargs)


@dataclass
class Column:
    """One storage column of a record type.
    """
    name: str
    attr: str
    type: Any
    kind: Kind
    optional: bool = False
    default: Any = None
    sql: str = ''
    category: Category = Category.UNKNOWN
    json: bool = False
    required: bool = False
    role: str | None = None
    tz: datetime.tzinfo | None = None
    temporal: Temporal | None = None
    hint: Any = None

    def __post_init__(self):
        self.set_sql(self.sql)

    def set_sql(self, sql: str) -> None:
        """Assign the SQL type tag and derive category, JSON flag and temporal subtype.
        """
        self.sql = sql or ''
        self.category = sql_category(self.sql)
        if self.sql.split('(')[0].strip().upper() in JSON_TYPES:
            self.json = True
        self.temporal = resolve_temporal(self.sql, self.kind)

    def set_tz(self, name: str | None) -> None:
        self.tz = resolve_zone(name) if name else None

    @property
    def is_blob(self) -> bool:
        return self.category is Category.BLOB

    @property
    def custom(self) -> bool:
        """Field type carries its own storage conversion."""
        return is_storage_convertible(self.type)

    @property
    def scanner(self) -> bool:
        return self.kind is Kind.STRUCT and is_nullable_scanner(self.type)

    def storage_zone(self, database_zone: datetime.tzinfo) -> datetime.tzinfo:
        return self.tz or database_zone

    def default_value(self) -> Any:
        return copy.deepcopy(self.default)
