"""
Connection options for `connect()` and the result loaders of `select_frame`.

A data loader takes the fetched rows (a list of column-name mappings) and the
result column names and returns whatever `Query.select_frame()` hands back.
"""
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pandas as pd

from dbmodel.exceptions import ConversionError
from dbmodel.strategy import get_available_dialects, get_strategy_class
from dbmodel.strategy import is_supported_dialect
from dbmodel.types import resolve_zone

__all__ = [
    'DatabaseOptions',
    'iterdict_data_loader',
    'pandas_numpy_data_loader',
]

DataLoader = Callable[..., Any]


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Keep the rows as a list of dicts; extra keyword arguments are ignored.
    """
    return list(data) if data else []


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Load rows into a numpy-backed DataFrame.

    An empty result still yields a frame carrying the result columns.
    """
    columns = list(columns)
    if not data:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame.from_records(list(data), columns=columns)


@dataclass
class DatabaseOptions:
    """Where and how `connect()` opens its connection.

    Drivers: `postgresql`, `sqlite`, `mysql` (plus their registered aliases).
    Each driver names the fields it cannot do without; sqlite only needs
    `database`.

    Engine pool (SQLAlchemy, only with `use_pool`):
    - pool_max_connections: pool size
    - pool_max_idle_time: seconds before a pooled connection is recycled
    - pool_wait_timeout: seconds to wait for a free connection

    `app_timezone` is the zone temporal values are presented in: 'local',
    'utc' or an IANA name. `data_loader` shapes `select_frame` results and
    defaults to `pandas_numpy_data_loader`.
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    app_timezone: str = 'local'
    data_loader: DataLoader | None = None

    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        self._check_driver()
        self._check_timezone()
        self.data_loader = self.data_loader or pandas_numpy_data_loader

    def _check_driver(self) -> None:
        if not is_supported_dialect(self.drivername):
            raise ValueError(f'unknown drivername {self.drivername!r}, '
                             f'expected one of {get_available_dialects()}')
        strategy = get_strategy_class(self.drivername)
        if not strategy.connectable:
            raise ValueError(f'driver {self.drivername!r} cannot be opened from options, '
                             f'bind a connection with Executor.conn_with_driver')
        strategy.validate_options(self)

    def _check_timezone(self) -> None:
        try:
            resolve_zone(self.app_timezone)
        except ConversionError as err:
            raise ValueError(f'app_timezone: {err}') from err
