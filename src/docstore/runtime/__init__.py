"""
docstore runtime

Core components, leaves first:
- RecordStore: authoritative in-memory collections
- Query engine: directive pipeline over record lists
- RuleEngine: per-request authorization and field redaction
- IdentityProvider: sessions and users in the protected store
- CrudService: verb handlers tying the above together

The FastAPI adapter lives in ``docstore.runtime.app_factory``.

Example usage:
    >>> from docstore.runtime import CallContext, CrudService, RecordStore, RuleEngine
    >>> crud = CrudService(RecordStore(), rules=RuleEngine({"books": {".create": ["Guest"]}}))
    >>> crud.dispatch("POST", CallContext(), "books", [], body={"title": "Dune"})
"""

from docstore.runtime.context import CallContext
from docstore.runtime.crud_service import CrudService
from docstore.runtime.identity import IdentityProvider
from docstore.runtime.json_store import JsonStore
from docstore.runtime.query_engine import (
    QueryOptions,
    apply_query,
    narrow_records,
    parse_where,
    shape_records,
)
from docstore.runtime.record_store import RecordStore
from docstore.runtime.rule_engine import Role, RuleAction, RuleContext, RuleEngine
from docstore.runtime.util_service import UtilService

__all__ = [
    "CallContext",
    "CrudService",
    "IdentityProvider",
    "JsonStore",
    "QueryOptions",
    "RecordStore",
    "Role",
    "RuleAction",
    "RuleContext",
    "RuleEngine",
    "UtilService",
    "apply_query",
    "narrow_records",
    "parse_where",
    "shape_records",
]
