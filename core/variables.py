"""
Typed step-output references.

Plans refer to earlier step outputs either with a template string
(``"{{companies._id}}"``) or with ``{"$ref": "companies._id"}``.  Both forms
are bound once, when the plan is normalized, into :class:`StepOutputRef`
handles; execution then resolves handles by direct lookup in the results map
instead of re-parsing strings.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

from core.errors import VariableResolutionError

_TEMPLATE_RE = re.compile(r"\{\{\s*([A-Za-z_][\w\-]*)((?:\.[\w\-$]+)*)\s*\}\}")
_REF_KEY = "$ref"


@dataclass(frozen=True)
class StepOutputRef:
    variable: str
    path: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, dotted: str) -> "StepOutputRef":
        parts = [p for p in str(dotted).strip().split(".") if p]
        if not parts:
            raise VariableResolutionError(str(dotted), f"Invalid variable reference '{dotted}'")
        return cls(parts[0], tuple(parts[1:]))

    @property
    def dotted(self) -> str:
        return ".".join((self.variable,) + self.path)

    def to_template(self) -> str:
        return "{{" + self.dotted + "}}"


def bind_references(value: Any) -> Tuple[Any, List[str]]:
    """Replace reference forms in ``value`` with :class:`StepOutputRef`.

    Returns the bound value and the referenced variable names in first-seen
    order.
    """
    reads: List[str] = []

    def _bind(node: Any) -> Any:
        if isinstance(node, StepOutputRef):
            ref = node
        elif isinstance(node, str):
            m = _TEMPLATE_RE.search(node)
            if not m:
                return node
            ref = StepOutputRef.parse(m.group(1) + m.group(2))
        elif isinstance(node, Mapping):
            if set(node) == {_REF_KEY} and isinstance(node[_REF_KEY], str):
                ref = StepOutputRef.parse(node[_REF_KEY])
            else:
                return {k: _bind(v) for k, v in node.items()}
        elif isinstance(node, (list, tuple)):
            return [_bind(v) for v in node]
        else:
            return node

        if ref.variable not in reads:
            reads.append(ref.variable)
        return ref

    return _bind(value), reads


def _payload(result: Any) -> Any:
    # StepResult or a bare value
    return getattr(result, "data", result)


def resolve_reference(ref: StepOutputRef, results_by_variable: Mapping[str, Any]) -> Any:
    """Resolve ``ref`` against the stored step outputs.

    Resolution starts at the step's ``data``; a leading ``data`` segment is
    accepted and skipped.  A field applied to a list of records projects that
    field from every record.
    """
    if ref.variable not in results_by_variable:
        raise VariableResolutionError(ref.variable)

    value = _payload(results_by_variable[ref.variable])
    path = list(ref.path)
    if path and path[0] == "data":
        path = path[1:]

    for part in path:
        if isinstance(value, list):
            if part.isdigit():
                idx = int(part)
                if idx >= len(value):
                    raise VariableResolutionError(
                        ref.variable, f"Index {idx} out of range in '{ref.dotted}'"
                    )
                value = value[idx]
            else:
                value = [item[part] for item in value if isinstance(item, Mapping) and part in item]
        elif isinstance(value, Mapping):
            if part not in value:
                raise VariableResolutionError(
                    ref.variable, f"Path '{ref.dotted}' not found in output of '{ref.variable}'"
                )
            value = value[part]
        else:
            raise VariableResolutionError(
                ref.variable, f"Cannot read '{part}' from a {type(value).__name__} in '{ref.dotted}'"
            )
    return value


def resolve_value(value: Any, results_by_variable: Mapping[str, Any]) -> Any:
    """Return a copy of ``value`` with every handle replaced by its data."""
    if isinstance(value, StepOutputRef):
        return resolve_reference(value, results_by_variable)
    if isinstance(value, Mapping):
        return {k: resolve_value(v, results_by_variable) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, results_by_variable) for v in value]
    return value


def to_jsonable(value: Any) -> Any:
    """Render handles back to template strings (prompts, API responses)."""
    if isinstance(value, StepOutputRef):
        return value.to_template()
    if isinstance(value, Mapping):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value

