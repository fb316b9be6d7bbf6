"""
Filter expressions, query parameters and resource references for the
Xen Orchestra REST API.

The remote filter grammar joins clauses with whitespace (logical AND) and
uses ``field:(a|b)`` for a disjunction inside a single clause.

    >>> build_filter([any_of('tags', ['prod', 'db']), scoped('pool', 'abc')])
    'tags:(prod|db) $pool:abc'
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

from errors import HrefFormatError

logger = logging.getLogger(__name__)

API_PREFIX = '/rest/v0'
DEFAULT_LIMIT = 25

# Separator used inside ``field:(...)`` disjunctions. The server is not
# consistent across fields, so entries here must be checked against the
# live API before being relied on.
DISJUNCTION_SEPARATORS = {
    'tags': '|',
    'power_state': ' ',
}
DEFAULT_SEPARATOR = '|'

CLAUSE_KINDS = ('equals', 'contains', 'any', 'all', 'scope')

HREF_REGEX = re.compile(
    r'^(?:.*/)?rest/v0/(?P<collection>[^/?#\s]+)/(?P<identifier>[^/?#\s]+)/?(?:[?#].*)?$'
)


def _as_text(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _single(value):
    # 0 and False are real values, only None and '' leave the clause empty.
    if value is None or value == '':
        return []
    return [value]


class FilterClause(BaseModel):
    field: str
    kind: str = 'equals'
    values: List[str] = Field(default_factory=list)
    separator: Optional[str] = None

    @field_validator('values', mode='before')
    @classmethod
    def coerce_values(cls, values):
        return [_as_text(v) for v in (values or [])]

    @field_validator('kind')
    @classmethod
    def check_kind(cls, value):
        if value not in CLAUSE_KINDS:
            raise ValueError(f"Unknown filter clause kind '{value}'")
        return value

    @property
    def is_empty(self):
        return not self.field or not [v for v in self.values if v != '']

    def render(self):
        """
        Render this clause in the remote filter grammar.

        :return: Clause text, or an empty string for an empty clause
        """
        if self.is_empty:
            return ''
        values = [v for v in self.values if v != '']
        if self.kind == 'equals':
            return f"{self.field}:{quote(values[0])}"
        if self.kind == 'contains':
            return f"{self.field}:{quote('*' + values[0] + '*')}"
        if self.kind == 'scope':
            return f"${self.field.lstrip('$')}:{values[0]}"
        if self.kind == 'all':
            separator = '&'
        else:
            separator = self.separator or DISJUNCTION_SEPARATORS.get(self.field, DEFAULT_SEPARATOR)
        joined = separator.join(quote(v) for v in values)
        return f"{self.field}:({joined})"


def quote(value):
    """Wrap a value in double quotes when it contains whitespace. Embedded quotes are not escaped."""
    value = str(value)
    if re.search(r'\s', value):
        return f'"{value}"'
    return value


def equals(field, value):
    return FilterClause(field=field, kind='equals', values=_single(value))


def contains(field, value):
    return FilterClause(field=field, kind='contains', values=_single(value))


def any_of(field, values, separator=None):
    return FilterClause(field=field, kind='any', values=list(values or []), separator=separator)


def all_of(field, values):
    return FilterClause(field=field, kind='all', values=list(values or []))


def scoped(parent_field, uuid):
    return FilterClause(field=parent_field, kind='scope', values=_single(uuid))


def build_filter(clauses: Optional[Iterable[Optional[FilterClause]]]) -> str:
    """
    Combine filter clauses into one filter expression.

    Clauses keep the order they were given in. ``None`` and empty clauses
    contribute nothing, so a list of only empty clauses gives ``''``.

    :param clauses: Iterable of FilterClause (``None`` entries are skipped)
    :return: Space-joined filter expression
    """
    rendered = [c.render() for c in (clauses or []) if c is not None]
    return ' '.join(r for r in rendered if r)


class ResourceQuery(BaseModel):
    fields: List[str] = Field(default_factory=list)
    filter: Optional[str] = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=0)
    used_default: bool = False

    def to_params(self) -> Dict[str, str]:
        """
        Outgoing query-string parameters. ``filter`` is left out when empty
        and ``limit`` is left out when 0 (the server then returns everything).
        """
        params = OrderedDict()
        if self.fields:
            params['fields'] = ','.join(self.fields)
        if self.filter:
            params['filter'] = self.filter
        if self.limit:
            params['limit'] = str(self.limit)
        return params


def assemble_query(fields, clauses=None, limit=None, default_limit=DEFAULT_LIMIT) -> ResourceQuery:
    """
    Build the ResourceQuery for a collection request.

    :param fields: Field names, kept in order (duplicates are not removed)
    :param clauses: Optional FilterClause list
    :param limit: Explicit limit, 0 for unlimited, None for the session default
    :param default_limit: Session default limit
    :return: ResourceQuery
    """
    used_default = limit is None
    if used_default:
        limit = default_limit
        if limit:
            logger.warning(
                f"No limit specified, using the session default of {limit} results. "
                "Pass limit=0 to return all results."
            )
        else:
            logger.warning("No limit specified, using the session default (unlimited)")
    if limit < 0:
        raise ValueError(f"Invalid limit {limit}: must be >= 0")
    return ResourceQuery(
        fields=list(fields or []),
        filter=build_filter(clauses) or None,
        limit=limit,
        used_default=used_default,
    )


def _match_href(href):
    if not isinstance(href, str):
        raise HrefFormatError(href)
    match = HREF_REGEX.match(href.strip())
    if not match:
        raise HrefFormatError(href)
    return match


def resolve_href(href) -> str:
    """
    Extract the identifier from a ``.../rest/v0/<collection>/<id>`` reference.

    :param href: Absolute or relative reference
    :return: The identifier (last path segment)
    :raises HrefFormatError: If the reference does not have that shape
    """
    return _match_href(href).group('identifier')


def href_collection(href) -> str:
    return _match_href(href).group('collection')


def build_href(collection, identifier) -> str:
    return f"{API_PREFIX}/{collection}/{identifier}"
