"""Per-call caller context handed to the CRUD façade and the rule engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CallContext(BaseModel):
    """
    Who is calling.

    ``user`` is the resolved user record (None for anonymous callers).
    ``is_admin`` is the admin override: it bypasses top-level rule denial
    but never property rules.
    """

    user: dict[str, Any] | None = None
    is_admin: bool = False
    access_token: str | None = Field(default=None, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> str | None:
        if self.user is None:
            return None
        user_id = self.user.get("_id")
        return str(user_id) if user_id is not None else None
