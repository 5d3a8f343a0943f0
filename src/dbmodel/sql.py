"""
SQL text processing.

Statements are written with `?` placeholders. Raw statements may also use
`?name` placeholders resolved from a dict or object. Right before execution
the strategy rewrites `?` to the driver paramstyle:

    sql, args = substitute_params('select * from t where a = ?a', {'a': 1})
    standardize_placeholders(sql, '%s')  # 'select * from t where a = %s'

String literals (single, double or backtick quoted) are never touched.
"""
import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from dbmodel.exceptions import BuilderError

__all__ = [
    'tokenize_sql',
    'substitute_params',
    'standardize_placeholders',
    'escape_percent_signs_in_literals',
    'quote_identifier',
    'has_placeholders',
]


class Part(Enum):
    TEXT = auto()
    LITERAL = auto()
    MARKER = auto()     # ? or %s
    NAMED = auto()      # ?name


@dataclass(slots=True)
class Token:
    kind: Part
    text: str
    name: str | None = None


_SCANNER = re.compile(r"""
      (?P<literal>'(?:[^']|'')*'|"(?:[^"]|"")*"|`[^`]*`)
    | \?(?P<name>[A-Za-z_]\w*)
    | (?P<marker>%s|\?)
""", re.VERBOSE)

_LONE_PERCENT = re.compile(r'(?<!%)%(?!%)')


def tokenize_sql(sql: str) -> list[Token]:
    """Split a statement into text, literal and placeholder tokens.

    Joining the token texts gives back the statement unchanged.
    """
    tokens = []
    pos = 0
    for match in _SCANNER.finditer(sql):
        if match.start() > pos:
            tokens.append(Token(Part.TEXT, sql[pos:match.start()]))
        if match.group('literal'):
            tokens.append(Token(Part.LITERAL, match.group()))
        elif match.group('name'):
            tokens.append(Token(Part.NAMED, match.group(), match.group('name')))
        else:
            tokens.append(Token(Part.MARKER, match.group()))
        pos = match.end()
    if pos < len(sql):
        tokens.append(Token(Part.TEXT, sql[pos:]))
    return tokens


def has_placeholders(sql: str | None) -> bool:
    return bool(sql) and any(t.kind in {Part.MARKER, Part.NAMED} for t in tokenize_sql(sql))


def _storage_value(value: Any) -> Any:
    if callable(getattr(value, 'to_storage', None)):
        return value.to_storage()
    return value


def _lookup(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        if name not in source:
            raise BuilderError(f'map key {name} is missing')
        return source[name]
    try:
        return getattr(source, name)
    except AttributeError:
        raise BuilderError(f'field {name} is missing on {type(source).__name__}') from None


def _is_object_source(source: Any) -> bool:
    if isinstance(source, type) or isinstance(source, (str, bytes, int, float, complex)):
        return False
    return dataclasses.is_dataclass(source) or hasattr(source, '__dict__')


def substitute_params(sql: str, source: Any) -> tuple[str, list]:
    """Resolve the argument source of a raw statement.

    A list or tuple is used positionally as-is. A dict or an object
    (dataclass or plain instance) supplies the values of `?name`
    placeholders in order of appearance; each is replaced by `?`.

    >>> substitute_params('select * from t where a = ?a and b = ?b', {'a': 1, 'b': 2})
    ('select * from t where a = ? and b = ?', [1, 2])

    Raises
        BuilderError: missing key/attribute or unsupported source type
    """
    if source is None:
        return sql, []
    if isinstance(source, (list, tuple)):
        return sql, [_storage_value(v) for v in source]
    if not isinstance(source, Mapping) and not _is_object_source(source):
        raise BuilderError(f'args can be list, tuple, dict or object, got {type(source).__name__}')

    args = []
    parts = []
    for token in tokenize_sql(sql):
        if token.kind is Part.NAMED:
            args.append(_storage_value(_lookup(source, token.name)))
            parts.append('?')
        else:
            parts.append(token.text)
    return ''.join(parts), args


def escape_percent_signs_in_literals(sql: str) -> str:
    """Double lone `%` signs inside quoted literals for format-style drivers.

    Backtick-quoted identifiers are left alone.
    """
    if not sql or '%' not in sql:
        return sql
    return ''.join(
        _LONE_PERCENT.sub('%%', t.text)
        if t.kind is Part.LITERAL and not t.text.startswith('`') else t.text
        for t in tokenize_sql(sql))


def standardize_placeholders(sql: str, style: str = '?') -> str:
    """Rewrite `?` markers to the driver paramstyle ('?' or '%s').

    >>> standardize_placeholders("select * from t where a = ? and b like 'x%'", '%s')
    "select * from t where a = %s and b like 'x%%'"
    """
    if not sql or style == '?':
        return sql
    return ''.join(
        style if t.kind is Part.MARKER and t.text == '?' else t.text
        for t in tokenize_sql(escape_percent_signs_in_literals(sql)))


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Quote a table or column name for a driver.

    Double quotes for postgresql and sqlite, backticks for mysql and the
    generic driver; ValueError for anything else.
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '"' + identifier.replace('"', '""') + '"'
    if dialect in {'mysql', 'generic'}:
        return '`' + identifier.replace('`', '``') + '`'
    raise ValueError(f'Unknown dialect: {dialect}')
