"""
Generic CRUD façade.

Maps a decoded call ``(method, collection, tokens, query, body)`` onto the
record store, running the query engine for reads and the rule engine on
every operation. Users live in the protected store and are only reachable
here through relation loads.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from docstore.errors import RequestError, ServiceError
from docstore.logging import get_logger
from docstore.runtime.context import CallContext
from docstore.runtime.identity import USERS_COLLECTION
from docstore.runtime.query_engine import QueryOptions, narrow_records, shape_records
from docstore.runtime.record_store import RecordStore
from docstore.runtime.rule_engine import RuleAction, RuleEngine
from docstore.values import Record

logger = get_logger("API")


class CrudService:
    """Uniform REST-like contract over any collection."""

    def __init__(
        self,
        store: RecordStore,
        protected_store: RecordStore | None = None,
        rules: RuleEngine | None = None,
    ):
        self.store = store
        self.protected_store = protected_store or RecordStore()
        self.rules = rules or RuleEngine()
        self._handlers: dict[str, Callable[..., Any]] = {
            "GET": self.get,
            "POST": self.post,
            "PUT": self.put,
            "PATCH": self.patch,
            "DELETE": self.delete,
        }

    def dispatch(
        self,
        method: str,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str] | None = None,
        body: Any = None,
    ) -> Any:
        """
        Route a call to the handler for its verb.

        Raises:
            RequestError: For an unsupported verb or a malformed call
        """
        handler = self._handlers.get(method.upper())
        if handler is None:
            raise RequestError(f"Method {method} is not supported")
        return handler(ctx, collection, tokens, query or {}, body)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _related(self, collection: str, record_id: str) -> Record:
        source = self.protected_store if collection == USERS_COLLECTION else self.store
        return source.get_one(collection, record_id)

    @contextmanager
    def _query_errors(self, collection: str) -> Iterator[None]:
        try:
            yield
        except ServiceError:
            raise
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Query on %s failed: %s", collection, e)
            raise RequestError(str(e)) from e

    @staticmethod
    def _validate(tokens: list[str]) -> None:
        if len(tokens) > 1:
            raise RequestError()

    @staticmethod
    def _require_collection(collection: str | None) -> str:
        if not collection:
            raise RequestError("Please, specify collection name")
        return collection

    @staticmethod
    def _require_id(tokens: list[str]) -> str:
        if len(tokens) != 1:
            raise RequestError("Missing entry ID")
        return tokens[0]

    @staticmethod
    def _payload(body: Any) -> dict[str, Any]:
        if not isinstance(body, Mapping):
            raise RequestError("Request body must be a JSON object")
        return dict(body)

    # =========================================================================
    # Verbs
    # =========================================================================

    def get(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str],
        body: Any = None,
    ) -> Any:
        """
        Read a collection list, a collection, or one record.

        With a ``where`` directive the whole collection is filtered and any
        id token is ignored. Rules are checked against the stored records
        before select and load reshape them; the resulting field redactions
        are applied to the response.
        """
        self._validate(tokens)

        if not collection:
            names = self.store.list_collections()
            self.rules.authorize_result(ctx, collection, names)
            return names

        with self._query_errors(collection):
            options = QueryOptions.from_params(query)
            if options.where is not None:
                data = self.store.get(collection)
            else:
                data = self.store.get(collection, tokens[0] if tokens else None)
            records = narrow_records(data, options)

        redaction = self.rules.authorize_read(ctx, collection, records)

        with self._query_errors(collection):
            result = shape_records(records, options, self._related)
        return redaction.apply(result)

    def post(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str],
        body: Any = None,
    ) -> Record:
        """Create a record owned by the caller."""
        logger.debug("Request body: %s", body)
        self._validate(tokens)
        if tokens:
            raise RequestError("Use PUT to update records")
        name = self._require_collection(collection)
        payload = self._payload(body)

        self.rules.authorize(ctx, RuleAction.CREATE, name, new_data=payload)

        payload.pop("_ownerId", None)
        if ctx.user_id is not None:
            payload["_ownerId"] = ctx.user_id
        try:
            return self.store.add(name, payload)
        except ValueError as e:
            raise RequestError() from e

    def _update(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        body: Any,
        write: Callable[[str, str, Mapping[str, Any]], Record],
    ) -> Record:
        logger.debug("Request body: %s", body)
        self._validate(tokens)
        record_id = self._require_id(tokens)
        name = self._require_collection(collection)

        existing = self.store.get_one(name, record_id)
        payload = self._payload(body)
        self.rules.authorize(ctx, RuleAction.UPDATE, name, data=existing, new_data=payload)

        try:
            return write(name, record_id, payload)
        except ValueError as e:
            raise RequestError() from e

    def put(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str],
        body: Any = None,
    ) -> Record:
        """Replace an existing record."""
        return self._update(ctx, collection, tokens, body, self.store.set)

    def patch(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str],
        body: Any = None,
    ) -> Record:
        """Merge fields into an existing record."""
        return self._update(ctx, collection, tokens, body, self.store.merge)

    def delete(
        self,
        ctx: CallContext,
        collection: str | None,
        tokens: list[str],
        query: Mapping[str, str],
        body: Any = None,
    ) -> Record:
        """Remove a record, returning its deletion stamp."""
        self._validate(tokens)
        record_id = self._require_id(tokens)
        name = self._require_collection(collection)

        existing = self.store.get_one(name, record_id)
        self.rules.authorize(ctx, RuleAction.DELETE, name, data=existing)
        return self.store.delete(name, record_id)
