import json
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import ConfigurationError


DEFAULT_APP_ID = "spire-rule-of-life"
DEFAULT_SESSION_FILE = ".spire-session"


class StoreConfig(BaseModel):
    """
    Connection bundle for the document store.

    Supplied either as one JSON value in SPIRE_STORE_CONFIG or as the
    individual DATABASE_URL / DATABASE_NAME / APP_ID / AUTH_SECRET variables.
    """
    database_url: str = Field(..., min_length=1, description="MongoDB connection string")
    database_name: str = Field(..., min_length=1, description="Database holding all collections")
    app_id: str = Field(DEFAULT_APP_ID, min_length=1, description="Namespace for every storage path")
    auth_secret: Optional[str] = Field(None, description="HS256 key used to verify bootstrap tokens")
    max_await_ms: int = Field(500, ge=10, le=60000, description="Change stream poll interval")

    @field_validator("database_url")
    @classmethod
    def mongodb_scheme(cls, url: str) -> str:
        if not url.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("must start with mongodb:// or mongodb+srv://")
        return url


def _describe(exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "config"
        problems.append(f"{field}: {err['msg']}")
    return "; ".join(problems)


def load_config(environ: Optional[Mapping[str, str]] = None) -> StoreConfig:
    """Build a StoreConfig from the environment or raise ConfigurationError."""
    env = os.environ if environ is None else environ
    raw = env.get("SPIRE_STORE_CONFIG")

    if raw:
        try:
            values = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"SPIRE_STORE_CONFIG is not valid JSON: {e.msg}") from e
        if not isinstance(values, dict):
            raise ConfigurationError("SPIRE_STORE_CONFIG must be a JSON object")
    else:
        values = {
            "database_url": env.get("DATABASE_URL"),
            "database_name": env.get("DATABASE_NAME"),
            "app_id": env.get("APP_ID") or DEFAULT_APP_ID,
            "auth_secret": env.get("AUTH_SECRET"),
        }
        values = {k: v for k, v in values.items() if v is not None}

    try:
        return StoreConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration required ({_describe(e)})") from e


def bootstrap_token(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    return env.get("INITIAL_AUTH_TOKEN") or None


def session_file(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return env.get("SPIRE_SESSION_FILE") or DEFAULT_SESSION_FILE
