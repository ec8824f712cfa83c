"""
Configuration for docstore.

Server settings come from ``DOCSTORE_*`` environment variables. The store
contents (seed records, protected users/sessions, the raw JSON tree and
the rules document) come from a spec file in JSON or TOML.
"""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

_TRUTHY = ("1", "true", "yes", "on")


class ServerSettings(BaseModel):
    """Process-level settings for the HTTP server."""

    host: str = "127.0.0.1"
    port: int = Field(default=3030, ge=0, le=65535)
    spec_path: Path | None = None
    log_dir: Path | None = Path(".docstore/logs")
    log_level: str = "INFO"
    throttle: bool = False
    auth_secret: str | None = Field(default=None, repr=False)

    @classmethod
    def from_env(cls, **overrides: Any) -> ServerSettings:
        """
        Build settings from the environment.

        Explicit keyword overrides win over environment values; ``None``
        overrides are ignored.
        """
        values: dict[str, Any] = {}
        if host := os.environ.get("DOCSTORE_HOST"):
            values["host"] = host
        if port := os.environ.get("DOCSTORE_PORT"):
            values["port"] = int(port)
        if spec := os.environ.get("DOCSTORE_SPEC"):
            values["spec_path"] = Path(spec)
        if "DOCSTORE_LOG_DIR" in os.environ:
            log_dir = os.environ["DOCSTORE_LOG_DIR"]
            values["log_dir"] = Path(log_dir) if log_dir else None
        if level := os.environ.get("DOCSTORE_LOG_LEVEL"):
            values["log_level"] = level.upper()
        if throttle := os.environ.get("DOCSTORE_THROTTLE"):
            values["throttle"] = throttle.lower() in _TRUTHY
        if secret := os.environ.get("DOCSTORE_SECRET"):
            values["auth_secret"] = secret

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class StoreSpec(BaseModel):
    """Initial store contents and rules."""

    model_config = ConfigDict(populate_by_name=True)

    identity: str = "username"
    seed_data: dict[str, dict[str, dict[str, Any]]] = Field(
        default_factory=dict, alias="seedData"
    )
    protected_data: dict[str, dict[str, dict[str, Any]]] = Field(
        default_factory=dict, alias="protectedData"
    )
    json_data: dict[str, Any] = Field(default_factory=dict, alias="jsonData")
    rules: dict[str, Any] = Field(default_factory=dict)


def load_store_spec(path: Path | str) -> StoreSpec:
    """
    Load a store spec from a ``.json`` or ``.toml`` file.

    Args:
        path: Spec file path

    Returns:
        Parsed StoreSpec

    Raises:
        ValueError: If the file type is unsupported or the document is invalid
    """
    spec_path = Path(path)
    suffix = spec_path.suffix.lower()

    try:
        if suffix == ".json":
            with open(spec_path, encoding="utf-8") as f:
                data = json.load(f)
        elif suffix == ".toml":
            with open(spec_path, "rb") as f:
                data = tomllib.load(f)
        else:
            raise ValueError(f"Unsupported spec file type: {spec_path.name}")
    except OSError as e:
        raise ValueError(f"Cannot read spec file {spec_path}: {e}") from e
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ValueError(f"Invalid spec file {spec_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Spec file {spec_path} must contain an object")

    try:
        return StoreSpec.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid spec file {spec_path}: {e}") from e
