"""
Filter Expression Module

Planner output and tool inputs express filters as Mongo-shaped mappings
(``{"employeeCount": {"$gte": 50}, "$or": [...]}``).  This module parses those
mappings once into a small expression AST so that the schema validator, the
in-memory datastore and any concrete backend can work on the same structure:

    parse_filter()  mapping  -> FilterExpr
    walk_conditions()        -> every leaf condition
    field_names()            -> distinct leaf fields (schema checks)
    matches()                -> evaluate against a document (in-memory backend)

Operators may be written with or without the leading ``$``.
"""
from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from core.errors import FilterSyntaxError

FIELD_OPERATORS = (
    "eq", "ne", "gt", "gte", "lt", "lte", "in", "nin",
    "exists", "regex", "all", "size", "elemMatch", "not",
)
COMBINATORS = ("and", "or", "nor")

_BARE_KEYS = set(FIELD_OPERATORS) | {"options"}
_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


# ========== AST ==========

class FilterExpr:
    """Base node of a filter expression."""


@dataclass(frozen=True)
class Condition(FilterExpr):
    field: str
    op: str
    value: Any
    options: str = ""  # regex flags only


@dataclass(frozen=True)
class Combinator(FilterExpr):
    kind: str  # "and" | "or" | "nor"
    clauses: Tuple[FilterExpr, ...]


@dataclass(frozen=True)
class Negation(FilterExpr):
    field: str
    inner: Tuple[Condition, ...]


MATCH_ALL = Combinator("and", ())


# ========== Parsing ==========

def parse_filter(raw: Any) -> FilterExpr:
    """Parse a Mongo-shaped filter mapping into a :class:`FilterExpr`.

    Parsing is structural only; operand types (e.g. ``$in`` needing an
    array) are checked at evaluation time so that filters still holding
    unresolved step references can be validated.
    """
    if raw is None:
        return MATCH_ALL
    if isinstance(raw, FilterExpr):
        return raw
    if not isinstance(raw, Mapping):
        raise FilterSyntaxError(f"Filter must be an object, got {type(raw).__name__}")

    clauses: List[FilterExpr] = []
    for key, value in raw.items():
        key = str(key)
        if key.startswith("$"):
            clauses.append(_parse_combinator(key[1:], value))
        else:
            clauses.extend(_parse_field(key, value))

    if len(clauses) == 1:
        return clauses[0]
    return Combinator("and", tuple(clauses))


def _parse_combinator(kind: str, value: Any) -> FilterExpr:
    if kind not in COMBINATORS:
        raise FilterSyntaxError(f"Unsupported top-level operator '${kind}'")
    if not isinstance(value, (list, tuple)) or not value:
        raise FilterSyntaxError(f"'${kind}' requires a non-empty array of filters")
    return Combinator(kind, tuple(parse_filter(item) for item in value))


def _is_operator_mapping(value: Any) -> bool:
    if not isinstance(value, Mapping) or not value:
        return False
    keys = [str(k) for k in value]
    if any(k.startswith("$") for k in keys):
        return True
    return all(k in _BARE_KEYS for k in keys)


def _parse_field(field: str, value: Any) -> List[FilterExpr]:
    if not _is_operator_mapping(value):
        return [Condition(field, "eq", value)]

    ops = {str(k).lstrip("$"): v for k, v in value.items()}
    unknown = [k for k in ops if k not in _BARE_KEYS]
    if unknown:
        raise FilterSyntaxError(f"Unsupported operator '${unknown[0]}' on field '{field}'")

    options = ops.pop("options", "")
    if options and "regex" not in ops:
        raise FilterSyntaxError(f"'$options' without '$regex' on field '{field}'")

    out: List[FilterExpr] = []
    for op, operand in ops.items():
        if op == "not":
            if isinstance(operand, str):
                inner = (Condition(field, "regex", operand),)
            elif _is_operator_mapping(operand):
                inner = tuple(c for c in _parse_field(field, operand) if isinstance(c, Condition))
            else:
                raise FilterSyntaxError(f"'$not' on field '{field}' requires an operator object")
            out.append(Negation(field, inner))
        elif op == "elemMatch":
            if not isinstance(operand, Mapping):
                raise FilterSyntaxError(f"'$elemMatch' on field '{field}' requires an object")
            out.append(Condition(field, "elemMatch", parse_filter(operand)))
        elif op == "regex":
            out.append(Condition(field, "regex", operand, options=str(options or "")))
        else:
            out.append(Condition(field, op, operand))
    return out


# ========== Traversal ==========

def walk_conditions(expr: FilterExpr) -> Iterator[Condition]:
    """Yield every leaf condition; ``$elemMatch`` bodies are not descended."""
    if isinstance(expr, Condition):
        yield expr
    elif isinstance(expr, Negation):
        yield from expr.inner
    elif isinstance(expr, Combinator):
        for clause in expr.clauses:
            yield from walk_conditions(clause)


def field_names(expr: FilterExpr) -> List[str]:
    seen: List[str] = []
    for cond in walk_conditions(expr):
        if cond.field not in seen:
            seen.append(cond.field)
    return seen


def lookup_path(doc: Any, path: str) -> List[Any]:
    """Return every value reachable at dotted ``path`` (arrays fan out)."""
    current = [doc]
    for part in path.split("."):
        nxt: List[Any] = []
        for item in current:
            if isinstance(item, Mapping):
                if part in item:
                    nxt.append(item[part])
            elif isinstance(item, list):
                if part.isdigit():
                    idx = int(part)
                    if idx < len(item):
                        nxt.append(item[idx])
                else:
                    nxt.extend(el[part] for el in item if isinstance(el, Mapping) and part in el)
        current = nxt
    return current


def get_value(doc: Any, path: str, default: Any = None) -> Any:
    values = lookup_path(doc, path)
    return values[0] if values else default


# ========== Evaluation ==========

def matches(expr: FilterExpr, doc: Mapping[str, Any]) -> bool:
    if isinstance(expr, Combinator):
        if expr.kind == "and":
            return all(matches(c, doc) for c in expr.clauses)
        if expr.kind == "or":
            return any(matches(c, doc) for c in expr.clauses)
        return not any(matches(c, doc) for c in expr.clauses)
    if isinstance(expr, Negation):
        return not all(_match_condition(c, doc) for c in expr.inner)
    if isinstance(expr, Condition):
        return _match_condition(expr, doc)
    raise FilterSyntaxError(f"Unknown filter node {expr!r}")


def _any_value(values: List[Any], pred: Callable[[Any], bool]) -> bool:
    for value in values:
        if pred(value):
            return True
        if isinstance(value, list) and any(pred(el) for el in value):
            return True
    return False


def _equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _compare(left: Any, op: str, right: Any) -> bool:
    if left is None or right is None or isinstance(left, (list, dict)):
        return False
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    try:
        return _COMPARATORS[op](left, right)
    except TypeError:
        return False


def _require_array(cond: Condition) -> List[Any]:
    if not isinstance(cond.value, (list, tuple, set, frozenset)):
        raise FilterSyntaxError(f"'${cond.op}' on field '{cond.field}' requires an array")
    return list(cond.value)


def _compile_regex(pattern: Any, options: str) -> "re.Pattern[str]":
    flags = 0
    for ch in options or "":
        flags |= _REGEX_FLAGS.get(ch, 0)
    try:
        return re.compile(str(pattern), flags)
    except re.error as e:
        raise FilterSyntaxError(f"Invalid regex '{pattern}': {e}") from e


def _match_condition(cond: Condition, doc: Mapping[str, Any]) -> bool:
    values = lookup_path(doc, cond.field)
    op = cond.op

    if op == "eq":
        if cond.value is None and not values:
            return True
        return _any_value(values, lambda v: _equals(v, cond.value)) or any(
            _equals(v, cond.value) for v in values
        )
    if op == "ne":
        return not _match_condition(Condition(cond.field, "eq", cond.value), doc)
    if op == "in":
        options = _require_array(cond)
        if None in options and not values:
            return True
        return _any_value(values, lambda v: any(_equals(v, o) for o in options))
    if op == "nin":
        return not _match_condition(Condition(cond.field, "in", cond.value), doc)
    if op in _COMPARATORS:
        return _any_value(values, lambda v: _compare(v, op, cond.value))
    if op == "exists":
        return bool(values) == bool(cond.value)
    if op == "regex":
        pattern = _compile_regex(cond.value, cond.options)
        return _any_value(values, lambda v: isinstance(v, str) and pattern.search(v) is not None)
    if op == "all":
        wanted = _require_array(cond)
        return any(isinstance(v, list) and all(w in v for w in wanted) for v in values)
    if op == "size":
        return any(isinstance(v, list) and len(v) == cond.value for v in values)
    if op == "elemMatch":
        sub = cond.value
        return any(
            isinstance(v, list) and any(isinstance(el, Mapping) and matches(sub, el) for el in v)
            for v in values
        )
    raise FilterSyntaxError(f"Unsupported operator '${op}' on field '{cond.field}'")

