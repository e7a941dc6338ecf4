"""
Context Builder

Derives the request scope: one required filter predicate per governed
collection.  Every data access conjoins that predicate through
:func:`merge_filters`, which applies the scope last so that no caller key can
override it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from core.errors import ScopeError

logger = logging.getLogger(__name__)

SESSION_SCOPED_COLLECTIONS = (
    "companies",
    "employees",
    "enrichments",
    "gtm_intelligence",
    "gtm_persona_intelligence",
)
GOVERNED_COLLECTIONS = SESSION_SCOPED_COLLECTIONS + ("sessions",)


@dataclass(frozen=True)
class ScopeContext:
    user_id: str
    session_id: Optional[str] = None
    icp_model_id: Optional[str] = None
    predicates: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def filter_for(self, collection: str) -> Dict[str, Any]:
        predicate = self.predicates.get(collection)
        if predicate is None:
            raise ScopeError(f"Collection '{collection}' is not governed by the request scope")
        return dict(predicate)

    def scoped(self, collection: str, caller_filter: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Effective filter for ``collection``: caller filter AND scope."""
        return merge_filters(self.filter_for(collection), caller_filter)

    def summary(self) -> str:
        parts = [f"user={self.user_id}"]
        if self.session_id:
            parts.append(f"session={self.session_id}")
        if self.icp_model_id:
            parts.append(f"icpModel={self.icp_model_id}")
        return (
            "Data scope: " + ", ".join(parts)
            + ". Every query is automatically restricted to this scope."
        )


def build_context(
    user_id: Optional[str],
    session_id: Optional[str] = None,
    icp_model_id: Optional[str] = None,
) -> ScopeContext:
    """Build the :class:`ScopeContext` for one request.

    Raises
    ------
    ScopeError
        If ``user_id`` is missing or blank.
    """
    if not user_id or not str(user_id).strip():
        raise ScopeError("Missing user identity: x-user-id is required")
    user_id = str(user_id).strip()

    base: Dict[str, Any] = {"userId": user_id}
    if icp_model_id:
        base["icpModelId"] = icp_model_id

    predicates: Dict[str, Mapping[str, Any]] = {}
    for collection in SESSION_SCOPED_COLLECTIONS:
        predicate = dict(base)
        if session_id:
            predicate["sessionId"] = session_id
        predicates[collection] = MappingProxyType(predicate)

    session_predicate = dict(base)
    if session_id:
        session_predicate["_id"] = session_id
    predicates["sessions"] = MappingProxyType(session_predicate)

    return ScopeContext(
        user_id=user_id,
        session_id=session_id or None,
        icp_model_id=icp_model_id or None,
        predicates=MappingProxyType(predicates),
    )


def merge_filters(
    scope_filter: Optional[Mapping[str, Any]],
    caller_filter: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Conjoin ``caller_filter`` with ``scope_filter``.

    Caller keys are applied first and scope keys last, so the scope value
    always wins on an overlapping key.  ``$and`` lists from both sides are
    concatenated.
    """
    caller = dict(caller_filter or {})
    scope = dict(scope_filter or {})
    caller_and = caller.pop("$and", None)
    scope_and = scope.pop("$and", None)

    merged: Dict[str, Any] = dict(caller)
    for key, value in scope.items():
        if key in merged and merged[key] != value:
            logger.warning(
                f"Caller filter tried to override scope key '{key}' "
                f"({merged[key]!r} -> {value!r}); scope value kept"
            )
        merged[key] = value

    clauses = _as_clause_list(caller_and) + _as_clause_list(scope_and)
    if clauses:
        merged["$and"] = clauses
    return merged


def _as_clause_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
