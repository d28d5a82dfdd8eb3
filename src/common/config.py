from __future__ import annotations

import os
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError


DEFAULT_API_BASE_URL = "http://localhost:8000/api"

# Environment variable names
ENV_API_BASE_URL = "HIMS_API_BASE_URL"
ENV_API_TIMEOUT = "HIMS_API_TIMEOUT"
ENV_API_RETRIES = "HIMS_API_RETRIES"
ENV_API_RETRY_DELAY = "HIMS_API_RETRY_DELAY"
ENV_STORAGE_PLATFORM = "HIMS_STORAGE_PLATFORM"
ENV_STORAGE_DIR = "HIMS_STORAGE_DIR"
ENV_FERNET_KEY = "HIMS_FERNET_KEY"
ENV_STATE_BUCKET = "HIMS_STATE_BUCKET"
ENV_STATE_PREFIX = "HIMS_STATE_PREFIX"
ENV_EMBEDDED = "HIMS_EMBEDDED"
ENV_DEBUG = "HIMS_DEBUG"

_FIELDS: Dict[str, str] = {
    ENV_API_BASE_URL: "api_base_url",
    ENV_API_TIMEOUT: "api_timeout",
    ENV_API_RETRIES: "api_retries",
    ENV_API_RETRY_DELAY: "api_retry_delay",
    ENV_STORAGE_PLATFORM: "platform_hint",
    ENV_STORAGE_DIR: "storage_dir",
    ENV_FERNET_KEY: "fernet_key",
    ENV_STATE_BUCKET: "state_bucket",
    ENV_STATE_PREFIX: "state_prefix",
    ENV_EMBEDDED: "embedded",
    ENV_DEBUG: "debug",
}


def _getenv(environ: Mapping[str, str], name: str) -> Optional[str]:
    val = environ.get(name)
    return val if val not in (None, "") else None


class Settings(BaseModel):
    """
    Runtime configuration for the sync client and storage selection.

    Every field can come from a `HIMS_*` environment variable (see `from_env`);
    empty variables count as unset.
    """

    api_base_url: str = Field(default=DEFAULT_API_BASE_URL, description="Remote API root")
    api_timeout: float = Field(default=30.0, gt=0, description="Per-attempt request timeout (seconds)")
    api_retries: int = Field(default=3, ge=0, description="Maximum retries after the first attempt")
    api_retry_delay: float = Field(default=1.0, ge=0, description="Base delay for linear backoff (seconds)")
    platform_hint: Optional[str] = Field(default=None, description="Explicit storage platform hint")
    storage_dir: Optional[str] = Field(default=None, description="Directory for file/SQLite backends")
    fernet_key: Optional[str] = Field(default=None, description="Key for secure/remote encryption")
    state_bucket: Optional[str] = Field(default=None, description="S3 bucket for the remote backend")
    state_prefix: str = Field(default="hims", description="S3 key prefix for the remote backend")
    embedded: bool = Field(default=False, description="Force the embedded-desktop marker")
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        raw = {}
        for name, field in _FIELDS.items():
            val = _getenv(env, name)
            if val is not None:
                raw[field] = val
        try:
            return cls(**raw)
        except ValidationError as ve:
            raise RuntimeError(f"Invalid configuration: {ve}") from ve


__all__ = ["Settings", "DEFAULT_API_BASE_URL"]
