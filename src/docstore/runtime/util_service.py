"""Runtime switches, currently just response throttling."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Mapping
from typing import Any

from docstore.errors import RequestError
from docstore.logging import get_logger

logger = get_logger("API")

THROTTLE_MIN_SECONDS = 0.5
THROTTLE_MAX_SECONDS = 1.0


class UtilService:
    """
    Holds the util flags.

    ``GET /util/<flag>`` reads a flag, ``POST /util`` with ``{flag: value}``
    sets one or more flags.
    """

    def __init__(self, throttle: bool = False):
        self.flags: dict[str, Any] = {"throttle": throttle}

    @property
    def throttle(self) -> bool:
        return bool(self.flags.get("throttle"))

    def get(self, tokens: list[str]) -> Any:
        if not tokens:
            return dict(self.flags)
        return self.flags.get(tokens[0])

    def post(self, body: Any) -> dict[str, Any]:
        if not isinstance(body, Mapping):
            raise RequestError("Request body must be a JSON object")
        for key, value in body.items():
            logger.info("Setting util flag %s = %s", key, value)
            self.flags[key] = value
        return dict(self.flags)

    async def delay(self) -> None:
        """Sleep 500-1000 ms when throttling is on."""
        if self.throttle:
            await asyncio.sleep(random.uniform(THROTTLE_MIN_SECONDS, THROTTLE_MAX_SECONDS))
