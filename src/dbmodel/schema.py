"""
Schema introspection for dataclass record types.

A Schema maps the fields of one record type to storage columns and holds
the CRUD policy of that type: auto-increment and primary keys, soft delete
and the create/update timestamp columns.
"""
import dataclasses
import logging
import typing
from typing import Any, Self

from dbmodel.cache import Cache
from dbmodel.column import METADATA_KEY, ROLE_AUTO, ROLE_CREATE_TIME
from dbmodel.column import ROLE_DELETE_TIME, ROLE_PRIMARY, ROLE_UPDATE_TIME
from dbmodel.column import ROLES, Column
from dbmodel.exceptions import SchemaError
from dbmodel.types import TEMPORAL_KINDS, Temporal, resolve_kind, unwrap_optional
from dbmodel.types import zero_value

logger = logging.getLogger(__name__)

__all__ = ['Schema', 'schema_for']


def _record_type(record: Any) -> type:
    record_type = record if isinstance(record, type) else type(record)
    if not dataclasses.is_dataclass(record_type):
        raise SchemaError(f'record must be a dataclass type or instance, got {record_type.__name__}')
    return record_type


class Schema:
    """Storage columns and CRUD policy of one record type.

    Columns keep declaration order. `fields` maps attribute names to column
    names; the role slots (`auto_increment`, `primary`, `create_time`,
    `update_time`, `delete_time`) hold attribute names.
    """

    def __init__(self, record: Any):
        self.record_type = _record_type(record)
        self.columns: dict[str, Column] = {}
        self.fields: dict[str, str] = {}
        self.auto_increment: str | None = None
        self.primary: list[str] = []
        self.create_time: str | None = None
        self.update_time: str | None = None
        self.delete_time: str | None = None
        self.soft_delete_enabled = False
        self._introspect(None if isinstance(record, type) else record)
        logger.debug(f'Introspected {self.record_type.__name__}: {list(self.columns)}')

    def __repr__(self):
        return f'Schema({self.record_type.__name__}, columns={list(self.columns)})'

    def _introspect(self, instance: Any) -> None:
        try:
            hints = typing.get_type_hints(self.record_type)
        except (NameError, TypeError) as err:
            raise SchemaError(f'cannot resolve annotations of {self.record_type.__name__}: {err}') from err

        roles: list[tuple[str, str]] = []
        for f in dataclasses.fields(self.record_type):
            meta = f.metadata.get(METADATA_KEY, {})
            kind, base, optional = resolve_kind(hints.get(f.name, Any))
            if instance is not None:
                default = getattr(instance, f.name)
            elif f.default is not dataclasses.MISSING:
                default = f.default
            elif f.default_factory is not dataclasses.MISSING:
                default = f.default_factory()
            else:
                default = None if optional else zero_value(kind, base)

            column = Column(
                name=meta.get('name') or f.name,
                attr=f.name,
                type=base,
                kind=kind,
                optional=optional,
                default=default,
                sql=meta.get('sql', ''),
                json=meta.get('json', False),
                required=meta.get('required', False),
                hint=unwrap_optional(hints.get(f.name, Any))[0],
            )
            column.set_tz(meta.get('tz'))
            if column.name in self.columns:
                raise SchemaError(f'duplicate column name {column.name!r}')
            self.columns[column.name] = column
            self.fields[f.name] = column.name

            role = meta.get('orm')
            if role:
                if role not in ROLES:
                    raise SchemaError(f'unknown role marker {role!r} on {f.name}')
                roles.append((role, f.name))

        autos = [name for role, name in roles if role == ROLE_AUTO]
        if len(autos) > 1:
            raise SchemaError(f'more than one auto-increment field: {autos}')
        if autos:
            self.set_auto_increment(autos[0])
        for role, name in roles:
            if role == ROLE_PRIMARY:
                self.set_primary(name)
            elif role == ROLE_CREATE_TIME:
                self.set_create_time(name)
            elif role == ROLE_UPDATE_TIME:
                self.set_update_time(name)
            elif role == ROLE_DELETE_TIME:
                self.soft_delete(name)

    def _resolve(self, field: str) -> str:
        """Return the attribute name for an attribute or column name."""
        if field in self.fields:
            return field
        if field in self.columns:
            return self.columns[field].attr
        raise SchemaError(f'{self.record_type.__name__} has no field {field!r}')

    def column(self, name: str) -> Column:
        """Column by column name (attribute names are accepted too)."""
        return self.columns[self.fields[self._resolve(name)]]

    def column_for_field(self, attr: str) -> Column:
        return self.column(attr)

    def column_name(self, field: str) -> str:
        return self.fields[self._resolve(field)]

    def has_column(self, name: str) -> bool:
        return name in self.columns

    # configuration

    def set_primary(self, *fields: str) -> Self:
        for field in fields:
            attr = self._resolve(field)
            if attr not in self.primary:
                self.primary.append(attr)
        return self

    def set_auto_increment(self, field: str) -> Self:
        attr = self._resolve(field)
        self.auto_increment = attr
        self.primary = [attr]
        self.column(attr).role = ROLE_AUTO
        return self

    def _set_time_role(self, field: str, role: str) -> Column:
        column = self.column(field)
        column.role = role
        return column

    def set_create_time(self, field: str = 'CreateTime') -> Self:
        column = self._set_time_role(field, ROLE_CREATE_TIME)
        if column.kind in TEMPORAL_KINDS and not column.sql:
            column.temporal = Temporal.DATETIME
        self.create_time = column.attr
        return self

    def set_update_time(self, field: str = 'UpdateTime') -> Self:
        column = self._set_time_role(field, ROLE_UPDATE_TIME)
        if column.kind in TEMPORAL_KINDS and not column.sql:
            column.temporal = Temporal.DATETIME
        self.update_time = column.attr
        return self

    def soft_delete(self, field: str = 'DeleteTime') -> Self:
        """Enable soft delete on a field.

        Temporal fields without an explicit SQL tag are stored as unix epoch
        seconds, with 0 meaning "not deleted".
        """
        column = self._set_time_role(field, ROLE_DELETE_TIME)
        if column.kind in TEMPORAL_KINDS and not column.sql:
            column.temporal = Temporal.EPOCH
        self.delete_time = column.attr
        self.soft_delete_enabled = True
        return self

    def set_time(self, create_time: str = 'CreateTime', update_time: str = 'UpdateTime',
                 delete_time: str = 'DeleteTime') -> Self:
        self.set_create_time(create_time)
        self.set_update_time(update_time)
        self.soft_delete(delete_time)
        return self

    def default(self, field: str, value: Any) -> Self:
        self.column(field).default = value
        return self

    # record access

    def get(self, record: Any, field: str) -> Any:
        return getattr(record, self._resolve(field))

    def set(self, record: Any, field: str, value: Any) -> None:
        object.__setattr__(record, self._resolve(field), value)

    def new_record(self) -> Any:
        """Build a record filled with the captured column defaults.

        The dataclass `__init__` is bypassed so required constructor
        arguments and frozen records are supported.
        """
        record = object.__new__(self.record_type)
        for column in self.columns.values():
            object.__setattr__(record, column.attr, column.default_value())
        return record


def schema_for(record: Any) -> Schema:
    """Return the cached Schema of a record type.
    """
    record_type = _record_type(record)
    return Cache.get_instance().get_or_create('schema', record_type,
                                              lambda: Schema(record_type))
