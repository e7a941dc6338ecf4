"""
JSONPath access to enrichment blobs, backed by ``jsonpath-ng``.

Typical expressions::

    $.data.employees_count        child keys (leading "$." optional)
    $.data.funding_rounds[0]      array index
    $.data.funding_rounds[*].amount
    $.data.'hq location'          quoted keys
    $..overview                   recursive descent

Lists are only entered through ``[n]`` or ``[*]``; a plain key never fans
out over a list.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, List

from jsonpath_ng import parse
from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.jsonpath import JSONPath

from core.errors import JsonPathError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=512)
def compile_path(expr: str) -> JSONPath:
    """Parse ``expr``; raises :class:`JsonPathError` when it is not a usable path."""
    if not isinstance(expr, str) or not expr.strip():
        raise JsonPathError("JSONPath expression must be a non-empty string")
    try:
        return parse(expr.strip())
    except JSONPathError as e:
        logger.debug(f"Rejected JSONPath {expr!r}: {e}")
        raise JsonPathError(f"Invalid JSONPath '{expr}': {e}") from e


def evaluate(doc: Any, expr: str) -> List[Any]:
    """Return every value matched by ``expr`` in ``doc`` (possibly empty)."""
    return [match.value for match in compile_path(expr).find(doc)]


def first_value(doc: Any, expr: str) -> Any:
    """First non-null match or ``None``."""
    for value in evaluate(doc, expr):
        if value is not None:
            return value
    return None
