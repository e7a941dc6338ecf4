"""
In-memory evaluation of aggregation pipelines.

Supports the stages the planner is allowed to emit against the in-memory
datastore: ``$match``, ``$project``, ``$addFields``/``$set``, ``$group``,
``$sort``, ``$limit``, ``$skip``, ``$count`` and ``$unwind``.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from core.errors import ValidationError
from core.filters import get_value, lookup_path, matches, parse_filter

logger = logging.getLogger(__name__)

SortSpec = Union[Mapping[str, int], Sequence[Tuple[str, int]], None]


# ------------------------------------------------------------------
# Expressions
# ------------------------------------------------------------------
def _num(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Expected a number in expression, got {value!r}")
    return value


_ARITHMETIC: Dict[str, Callable[[List[Any]], Any]] = {
    "$add": lambda a: sum(_num(x) for x in a),
    "$subtract": lambda a: _num(a[0]) - _num(a[1]),
    "$multiply": lambda a: _product(a),
    "$divide": lambda a: None if _num(a[1]) == 0 else _num(a[0]) / _num(a[1]),
}


def _product(args: List[Any]) -> Any:
    out = 1
    for x in args:
        out *= _num(x)
    return out


def evaluate_expression(expr: Any, doc: Mapping[str, Any]) -> Any:
    """Evaluate an aggregation expression against ``doc``."""
    if isinstance(expr, str) and expr.startswith("$") and not expr.startswith("$$"):
        return get_value(doc, expr[1:])
    if isinstance(expr, list):
        return [evaluate_expression(e, doc) for e in expr]
    if not isinstance(expr, Mapping):
        return expr

    if len(expr) == 1:
        (op, arg), = expr.items()
        if op == "$literal":
            return arg
        if op in _ARITHMETIC:
            args = [evaluate_expression(a, doc) for a in (arg if isinstance(arg, list) else [arg])]
            if any(a is None for a in args):
                return None
            return _ARITHMETIC[op](args)
        if op == "$size":
            value = evaluate_expression(arg, doc)
            if not isinstance(value, list):
                raise ValidationError(f"$size requires an array, got {type(value).__name__}")
            return len(value)
        if op == "$ifNull":
            for candidate in arg:
                value = evaluate_expression(candidate, doc)
                if value is not None:
                    return value
            return None
        if op == "$concat":
            parts = [evaluate_expression(a, doc) for a in arg]
            return None if any(p is None for p in parts) else "".join(str(p) for p in parts)
        if op == "$toLower":
            value = evaluate_expression(arg, doc)
            return "" if value is None else str(value).lower()
        if op == "$toUpper":
            value = evaluate_expression(arg, doc)
            return "" if value is None else str(value).upper()
        if op.startswith("$"):
            raise ValidationError(f"Unsupported expression operator '{op}'")

    return {k: evaluate_expression(v, doc) for k, v in expr.items()}


# ------------------------------------------------------------------
# Projection / sorting helpers shared with the datastore
# ------------------------------------------------------------------
def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _delete_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    node: Any = doc
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, Mapping) else None
        if node is None:
            return
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def apply_projection(doc: Mapping[str, Any], projection: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Apply a Mongo-style projection; ``_id`` is kept unless excluded."""
    if not projection:
        return dict(doc)

    spec = dict(projection)
    keep_id = spec.pop("_id", 1) not in (0, False)
    inclusion = any(v not in (0, False) for v in spec.values())

    if inclusion:
        out: Dict[str, Any] = {}
        if keep_id and "_id" in doc:
            out["_id"] = doc["_id"]
        for path, rule in spec.items():
            if rule in (0, False):
                continue
            if rule in (1, True):
                values = lookup_path(doc, path)
                if values:
                    _set_path(out, path, copy.deepcopy(values[0]))
            else:
                _set_path(out, path, evaluate_expression(rule, doc))
        return out

    out = copy.deepcopy(dict(doc))
    for path in spec:
        _delete_path(out, path)
    if not keep_id:
        out.pop("_id", None)
    return out


def is_inclusion_projection(projection: Optional[Mapping[str, Any]]) -> bool:
    if not projection:
        return False
    return any(v not in (0, False) for k, v in projection.items() if k != "_id")


def _type_rank(value: Any) -> Tuple[int, Any]:
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (5, value)
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (6, str(value))


def normalize_sort(sort: SortSpec) -> List[Tuple[str, int]]:
    if not sort:
        return []
    items = sort.items() if isinstance(sort, Mapping) else sort
    out: List[Tuple[str, int]] = []
    for entry in items:
        field_name, direction = entry
        direction = -1 if str(direction).lower() in ("-1", "desc", "descending") else 1
        out.append((str(field_name), direction))
    return out


def sort_documents(docs: Iterable[Mapping[str, Any]], sort: SortSpec) -> List[Mapping[str, Any]]:
    ordered = list(docs)
    for field_name, direction in reversed(normalize_sort(sort)):
        ordered.sort(key=lambda d: _type_rank(get_value(d, field_name)), reverse=direction < 0)
    return ordered


# ------------------------------------------------------------------
# Stages
# ------------------------------------------------------------------
def _group(docs: List[Mapping[str, Any]], spec: Mapping[str, Any]) -> List[Dict[str, Any]]:
    if "_id" not in spec:
        raise ValidationError("$group requires an _id expression")
    groups: Dict[str, Dict[str, Any]] = {}
    members: Dict[str, List[Mapping[str, Any]]] = {}
    for doc in docs:
        key_value = evaluate_expression(spec["_id"], doc)
        key = repr(key_value)
        if key not in groups:
            groups[key] = {"_id": key_value}
            members[key] = []
        members[key].append(doc)

    for key, group in groups.items():
        rows = members[key]
        for out_field, acc in spec.items():
            if out_field == "_id":
                continue
            if not isinstance(acc, Mapping) or len(acc) != 1:
                raise ValidationError(f"Invalid accumulator for '{out_field}'")
            (op, arg), = acc.items()
            values = [evaluate_expression(arg, r) for r in rows]
            group[out_field] = _accumulate(op, values, out_field)
    return list(groups.values())


def _accumulate(op: str, values: List[Any], out_field: str) -> Any:
    numeric = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
    present = [v for v in values if v is not None]
    if op == "$sum":
        return sum(numeric)
    if op == "$avg":
        return sum(numeric) / len(numeric) if numeric else None
    if op == "$min":
        return min(present, key=_type_rank) if present else None
    if op == "$max":
        return max(present, key=_type_rank) if present else None
    if op == "$count":
        return len(values)
    if op == "$push":
        return values
    if op == "$addToSet":
        out: List[Any] = []
        for v in values:
            if v not in out:
                out.append(v)
        return out
    if op == "$first":
        return values[0] if values else None
    if op == "$last":
        return values[-1] if values else None
    raise ValidationError(f"Unsupported accumulator '{op}' for '{out_field}'")


def _unwind(docs: List[Mapping[str, Any]], spec: Any) -> List[Dict[str, Any]]:
    if isinstance(spec, str):
        spec = {"path": spec}
    path = str(spec.get("path", "")).lstrip("$")
    if not path:
        raise ValidationError("$unwind requires a path")
    keep_empty = bool(spec.get("preserveNullAndEmptyArrays", False))
    out: List[Dict[str, Any]] = []
    for doc in docs:
        value = get_value(doc, path)
        if isinstance(value, list) and value:
            for item in value:
                row = copy.deepcopy(dict(doc))
                _set_path(row, path, item)
                out.append(row)
        elif isinstance(value, list) or value is None:
            if keep_empty:
                out.append(dict(doc))
        else:
            out.append(dict(doc))
    return out


def run_pipeline(docs: Iterable[Mapping[str, Any]], pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Run ``pipeline`` over ``docs`` and return the resulting rows."""
    rows: List[Any] = [dict(d) for d in docs]
    for index, stage in enumerate(pipeline):
        if not isinstance(stage, Mapping) or len(stage) != 1:
            raise ValidationError(f"Pipeline stage {index} must be an object with exactly one operator")
        (name, spec), = stage.items()

        if name == "$match":
            expr = parse_filter(spec)
            rows = [r for r in rows if matches(expr, r)]
        elif name == "$project":
            rows = [apply_projection(r, spec) for r in rows]
        elif name in ("$addFields", "$set"):
            updated = []
            for r in rows:
                row = copy.deepcopy(r)
                for path, expr in spec.items():
                    _set_path(row, path, evaluate_expression(expr, r))
                updated.append(row)
            rows = updated
        elif name == "$group":
            rows = _group(rows, spec)
        elif name == "$sort":
            rows = [dict(r) for r in sort_documents(rows, spec)]
        elif name == "$limit":
            rows = rows[: int(spec)]
        elif name == "$skip":
            rows = rows[int(spec):]
        elif name == "$count":
            rows = [{str(spec): len(rows)}]
        elif name == "$unwind":
            rows = _unwind(rows, spec)
        else:
            raise ValidationError(f"Unsupported aggregation stage '{name}'")
    logger.debug(f"Pipeline of {len(pipeline)} stages produced {len(rows)} rows")
    return rows
