"""
Query engine for filtering, sorting, paging and shaping record lists.

Directives are applied in a fixed order:
    where -> sortBy -> offset -> pageSize -> distinct -> count -> select -> load

count reflects the filtered and paginated list; select and load only ever
see the final, deduplicated page.
"""

from __future__ import annotations

import functools
import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from docstore.errors import RequestError
from docstore.logging import get_logger
from docstore.values import JsonValue, Record, is_number

logger = get_logger("Query")

DEFAULT_PAGE_SIZE = 10
PASSWORD_HASH_FIELD = "hashedPassword"

RelationResolver = Callable[[str, str], Record]

WHERE_SYNTAX_ERROR = "Could not parse WHERE clause, check your syntax."


# =============================================================================
# WHERE clauses
# =============================================================================


class FilterOperator(str, Enum):
    """Supported WHERE operators, in longest-match-first order."""

    LTE = "<="
    LT = "<"
    GTE = ">="
    GT = ">"
    EQ = "="
    LIKE = " like "  # Case-insensitive substring
    IN = " in "  # Membership in a literal list: field in ("a", "b")


_CLAUSE_PATTERN = re.compile(
    r"^(.+?)(" + "|".join(re.escape(op.value) for op in FilterOperator) + r")(.+?)$",
    re.IGNORECASE | re.DOTALL,
)
_AND_PATTERN = re.compile(r" and ", re.IGNORECASE)
_OR_PATTERN = re.compile(r" or ", re.IGNORECASE)
_LIST_LITERAL_PATTERN = re.compile(r"\((.+?)\)", re.DOTALL)


def _parse_literal(raw: str) -> JsonValue:
    try:
        value: JsonValue = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RequestError(WHERE_SYNTAX_ERROR) from e
    return value


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Bring two values to a comparable pair, or None if they never compare."""
    if is_number(left) and is_number(right):
        return left, right
    if isinstance(left, str) and isinstance(right, str):
        return left, right
    if is_number(left) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return None
    if isinstance(left, str) and is_number(right):
        try:
            return float(left), right
        except ValueError:
            return None
    return None


def _loose_equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    pair = _coerce_pair(left, right)
    if pair is not None:
        return bool(pair[0] == pair[1])
    return bool(left == right)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without coercion; bools never equal numbers."""
    if is_number(left) and is_number(right):
        return bool(left == right)
    return type(left) is type(right) and bool(left == right)


_ORDERING: dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.LTE: lambda a, b: a <= b,
    FilterOperator.LT: lambda a, b: a < b,
    FilterOperator.GTE: lambda a, b: a >= b,
    FilterOperator.GT: lambda a, b: a > b,
}


@dataclass
class WhereClause:
    """A single ``field OP value`` clause."""

    field: str
    operator: FilterOperator
    value: JsonValue

    @classmethod
    def parse(cls, clause: str) -> WhereClause:
        """
        Parse one clause.

        Examples:
            - 'rating > 3' -> WhereClause("rating", GT, 3)
            - 'title like "dune"' -> WhereClause("title", LIKE, "dune")
            - 'author in ("Ivan", "John")' -> WhereClause("author", IN, ["Ivan", "John"])
        """
        match = _CLAUSE_PATTERN.match(clause.strip())
        if match is None:
            raise RequestError(WHERE_SYNTAX_ERROR)

        field_name, op_token, raw_value = match.groups()
        field_name, raw_value = field_name.strip(), raw_value.strip()
        if not field_name:
            raise RequestError(WHERE_SYNTAX_ERROR)
        operator = FilterOperator(op_token.lower())

        value: JsonValue
        if operator == FilterOperator.IN:
            inner = _LIST_LITERAL_PATTERN.search(raw_value)
            if inner is None:
                raise RequestError(WHERE_SYNTAX_ERROR)
            value = _parse_literal(f"[{inner.group(1)}]")
        else:
            value = _parse_literal(raw_value)
            if operator == FilterOperator.LIKE and not isinstance(value, str):
                raise RequestError(WHERE_SYNTAX_ERROR)

        return cls(field=field_name, operator=operator, value=value)

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = record.get(self.field)

        if self.operator == FilterOperator.EQ:
            return _loose_equals(actual, self.value)
        if self.operator == FilterOperator.LIKE:
            if not isinstance(actual, str) or not isinstance(self.value, str):
                return False
            return self.value.lower() in actual.lower()
        if self.operator == FilterOperator.IN:
            if not isinstance(self.value, list):
                return False
            return any(_strict_equals(actual, item) for item in self.value)

        pair = _coerce_pair(actual, self.value)
        if pair is None:
            return False
        return _ORDERING[self.operator](*pair)


@dataclass
class WhereFilter:
    """
    A list of clauses joined by a single connective.

    AND and OR are never mixed: the connective is picked by scanning for the
    keyword, with AND taking precedence, and applies to every clause.
    """

    clauses: list[WhereClause]
    conjunction: bool = True

    def __call__(self, record: Mapping[str, Any]) -> bool:
        results = (clause.matches(record) for clause in self.clauses)
        return all(results) if self.conjunction else any(results)


def parse_where(expression: str) -> WhereFilter:
    """
    Compile a WHERE expression.

    Raises:
        RequestError: If any clause is malformed
    """
    expression = expression.strip()
    if _AND_PATTERN.search(expression):
        parts, conjunction = _AND_PATTERN.split(expression), True
    elif _OR_PATTERN.search(expression):
        parts, conjunction = _OR_PATTERN.split(expression), False
    else:
        parts, conjunction = [expression], True

    return WhereFilter(
        clauses=[WhereClause.parse(part) for part in parts],
        conjunction=conjunction,
    )


# =============================================================================
# Sorting
# =============================================================================


@dataclass
class SortField:
    """A sort criterion."""

    field: str
    descending: bool = False


def parse_sort_string(sort_by: str) -> list[SortField]:
    """
    Parse ``"rating desc,author"`` into sort criteria.

    Only ``desc`` (any case) after the field name sorts descending; a bare
    field or ``asc`` sorts ascending.
    """
    fields: list[SortField] = []
    for part in sort_by.split(","):
        words = part.split()
        if not words:
            continue
        descending = len(words) > 1 and words[1].lower() == "desc"
        fields.append(SortField(field=words[0], descending=descending))
    return fields


def _sort_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _compare_values(left: Any, right: Any) -> int:
    if is_number(left) and is_number(right):
        return (left > right) - (left < right)
    a, b = _sort_text(left), _sort_text(right)
    return (a > b) - (a < b)


def sort_records(records: list[Record], fields: list[SortField]) -> list[Record]:
    """
    Sort by several criteria, first-listed dominating.

    Implemented as one stable pass per criterion, last to first. Numbers
    compare numerically, everything else lexicographically.
    """
    result = list(records)
    for sort_field in reversed(fields):
        sign = -1 if sort_field.descending else 1
        name = sort_field.field

        def compare(a: Record, b: Record, name: str = name, sign: int = sign) -> int:
            return sign * _compare_values(a.get(name), b.get(name))

        result.sort(key=functools.cmp_to_key(compare))
    return result


# =============================================================================
# Shaping
# =============================================================================


def parse_field_list(value: str) -> list[str]:
    """Split a comma-separated field list, dropping empty entries."""
    return [part for part in value.split(",") if part != ""]


def distinct_records(records: list[Record], fields: list[str]) -> list[Record]:
    """Keep the first record seen for each combination of the given fields."""
    seen: dict[str, Record] = {}
    for record in records:
        key = "::".join(_sort_text(record.get(name)) for name in fields)
        if key not in seen:
            seen[key] = record
    return list(seen.values())


def select_fields(data: Record | list[Record], fields: list[str]) -> Record | list[Record]:
    """Project a record, or each record of a list, onto the given fields."""

    def project(record: Record) -> Record:
        return {name: record[name] for name in fields if name in record}

    if isinstance(data, list):
        return [project(record) for record in data]
    return project(data)


@dataclass
class RelationLoad:
    """A ``alias=sourceField:collection`` join directive."""

    alias: str
    source_field: str
    collection: str

    @classmethod
    def parse(cls, directive: str) -> RelationLoad:
        alias, sep, relation = directive.partition("=")
        source_field, sep2, collection = relation.partition(":")
        if not (sep and sep2 and alias and source_field and collection):
            raise RequestError(f"Invalid load directive: {directive}")
        return cls(alias=alias, source_field=source_field, collection=collection)


def parse_load_string(load: str) -> list[RelationLoad]:
    return [RelationLoad.parse(part) for part in parse_field_list(load)]


def load_relations(
    data: Record | list[Record],
    loads: list[RelationLoad],
    resolver: RelationResolver,
) -> Record | list[Record]:
    """
    Embed related records under their alias.

    The related record is looked up by the id held in the source field.
    Password hashes never leave through a join. A record without a source
    value gets ``None`` under the alias.

    Raises:
        NotFoundError: If the related collection or record does not exist
    """
    records = data if isinstance(data, list) else [data]
    for load in loads:
        logger.debug(
            'Loading related records from "%s" into "%s", joined on "_id"="%s"',
            load.collection,
            load.alias,
            load.source_field,
        )
        for record in records:
            seek_id = record.get(load.source_field)
            if seek_id is None:
                record[load.alias] = None
                continue
            related = resolver(load.collection, str(seek_id))
            related.pop(PASSWORD_HASH_FIELD, None)
            record[load.alias] = related
    return data


# =============================================================================
# Query options
# =============================================================================


def _parse_number(value: str | None, default: int) -> int:
    """Number-like parse where missing, zero or garbage falls back to default."""
    if not value:
        return default
    try:
        number = int(float(value))
    except (ValueError, OverflowError):
        return default
    return number or default


@dataclass
class QueryOptions:
    """Query directives recognised on a GET request."""

    where: WhereFilter | None = None
    sort_by: list[SortField] = field(default_factory=list)
    offset: int | None = None
    page_size: int | None = None
    distinct: list[str] = field(default_factory=list)
    count: bool = False
    select: list[str] = field(default_factory=list)
    load: list[RelationLoad] = field(default_factory=list)

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> QueryOptions:
        """
        Build options from decoded query parameters.

        pageSize defaults to 10 only when the parameter is present; without
        it the list is not limited, even if an offset is given.

        Raises:
            RequestError: If the WHERE clause or a load directive is malformed
        """
        where = params.get("where")
        sort_by = params.get("sortBy")
        distinct = params.get("distinct")
        select = params.get("select")
        load = params.get("load")

        return cls(
            where=parse_where(where) if where else None,
            sort_by=parse_sort_string(sort_by) if sort_by else [],
            offset=_parse_number(params.get("offset"), 0) if params.get("offset") else None,
            page_size=(
                _parse_number(params.get("pageSize"), DEFAULT_PAGE_SIZE)
                if params.get("pageSize")
                else None
            ),
            distinct=parse_field_list(distinct) if distinct else [],
            count=bool(params.get("count")),
            select=parse_field_list(select) if select else [],
            load=parse_load_string(load) if load else [],
        )


def narrow_records(
    data: Record | list[Record],
    options: QueryOptions,
) -> Record | list[Record]:
    """
    Pick the records a read returns: where, sort, paging and distinct.

    A single record passes through unchanged. The records themselves are
    not modified.
    """
    if not isinstance(data, list):
        return data
    if options.where is not None:
        data = [record for record in data if options.where(record)]
    if options.sort_by:
        data = sort_records(data, options.sort_by)
    if options.offset is not None:
        data = data[options.offset :]
    if options.page_size is not None:
        data = data[: options.page_size]
    if options.distinct:
        data = distinct_records(data, options.distinct)
    return data


def shape_records(
    data: Record | list[Record],
    options: QueryOptions,
    resolver: RelationResolver | None = None,
) -> Record | list[Record] | int:
    """
    Turn narrowed records into the response: count, select, then load.

    Output records line up one-to-one with the input records. count on a
    single record is 1.
    """
    if options.count:
        return len(data) if isinstance(data, list) else 1

    if options.select:
        data = select_fields(data, options.select)

    if options.load:
        if resolver is None:
            raise RequestError("Relation loading is not available")
        data = load_relations(data, options.load, resolver)

    return data


def apply_query(
    data: Record | list[Record],
    options: QueryOptions,
    resolver: RelationResolver | None = None,
) -> Record | list[Record] | int:
    """Run the whole directive pipeline over a record list (or a single record)."""
    return shape_records(narrow_records(data, options), options, resolver)
