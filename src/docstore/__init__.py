"""
docstore - in-memory document store

A small document store served over a generic REST-like protocol:
- Record store: schemaless collections with system-managed fields
- Query engine: where / sortBy / offset / pageSize / distinct / count / select / load
- Rule engine: role, ownership and per-field access rules
- Identity provider: register / login / logout against a protected store
"""

from docstore._version import get_version as _get_version

__version__ = _get_version()

from docstore.errors import (
    AuthorizationError,
    ConflictError,
    CredentialError,
    NotFoundError,
    RequestError,
    RuleConfigError,
    ServiceError,
)

__all__ = [
    "AuthorizationError",
    "ConflictError",
    "CredentialError",
    "NotFoundError",
    "RequestError",
    "RuleConfigError",
    "ServiceError",
    "__version__",
]
