"""Raw nested JSON document tree, addressed by path tokens.

No rules, no system fields except the ``_id`` stamped on POST.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from docstore.errors import RequestError
from docstore.logging import get_logger
from docstore.values import JsonValue, deep_copy

logger = get_logger("Store")


class JsonStore:
    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._lock = threading.Lock()
        self._root: dict[str, Any] = deep_copy(dict(data or {}))  # type: ignore[assignment]
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def _walk(self, tokens: list[str]) -> Any:
        node: Any = self._root
        for token in tokens:
            if not isinstance(node, dict) or token not in node:
                return None
            node = node[token]
        return node

    def get(self, tokens: list[str]) -> JsonValue:
        """The node at the path, or None."""
        with self._lock:
            return deep_copy(self._walk(tokens))

    def post(self, tokens: list[str], body: Any) -> JsonValue:
        """Store body under a fresh id below the path, creating nodes as needed."""
        if not isinstance(body, Mapping):
            raise RequestError("Request body must be a JSON object")
        logger.debug("Request body: %s", body)

        with self._lock:
            node: Any = self._root
            for token in tokens:
                if not isinstance(node, dict):
                    raise RequestError(f"Cannot create entries under {token!r}")
                node = node.setdefault(token, {})
            if not isinstance(node, dict):
                raise RequestError("Cannot create entries under a leaf value")

            new_id = self._id_factory()
            node[new_id] = {**deep_copy(dict(body)), "_id": new_id}  # type: ignore[dict-item]
            return deep_copy(node[new_id])

    def put(self, tokens: list[str], body: Any) -> JsonValue:
        """Replace an existing node. Returns the stored value, or None if absent."""
        if not tokens:
            raise RequestError("Missing entry path")
        logger.debug("Request body: %s", body)

        with self._lock:
            parent = self._walk(tokens[:-1])
            leaf = tokens[-1]
            if not isinstance(parent, dict) or leaf not in parent:
                return None
            parent[leaf] = deep_copy(body)
            return deep_copy(parent[leaf])

    def patch(self, tokens: list[str], body: Any) -> JsonValue:
        """Shallow-merge body into an existing object node."""
        if not isinstance(body, Mapping):
            raise RequestError("Request body must be a JSON object")
        logger.debug("Request body: %s", body)

        with self._lock:
            node = self._walk(tokens)
            if node is None:
                return None
            if not isinstance(node, dict):
                raise RequestError("Cannot merge into a leaf value")
            node.update(deep_copy(dict(body)))  # type: ignore[call-overload]
            return deep_copy(node)

    def delete(self, tokens: list[str]) -> JsonValue:
        """Remove and return the node at the path, or None if absent."""
        if not tokens:
            raise RequestError("Missing entry path")

        with self._lock:
            parent = self._walk(tokens[:-1])
            leaf = tokens[-1]
            if not isinstance(parent, dict) or leaf not in parent:
                return None
            return parent.pop(leaf)
