from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from ossclient.common.errors import ConfigurationError

ENV_FILE = Path(".env")

SUPPORTED_SIGNATURE_VERSIONS: tuple[str, ...] = ("v1", "v4")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


@dataclass(frozen=True)
class Credentials:
    """Access key material for one client instance."""

    access_key_id: str
    access_key_secret: str = field(repr=False)
    security_token: str | None = field(default=None, repr=False)
    region: str = ""
    endpoint: str = ""

    def ensure_usable(self, *, require_region: bool = False) -> None:
        """Refuse to sign with blank credentials or without an endpoint."""
        if not (self.access_key_id or "").strip():
            raise ConfigurationError("OSS access key id is required")
        if not (self.access_key_secret or "").strip():
            raise ConfigurationError("OSS access key secret is required")
        if not (self.endpoint or "").strip():
            raise ConfigurationError("OSS endpoint is required")
        if require_region and not (self.region or "").strip():
            raise ConfigurationError("OSS region is required for V4 signatures")


@dataclass
class Settings:
    OSS_ENDPOINT: str = ""
    OSS_REGION: str = ""
    OSS_BUCKET: str = ""
    OSS_ACCESS_KEY_ID: str | None = None
    OSS_ACCESS_KEY_SECRET: str | None = field(default=None, repr=False)
    OSS_SECURITY_TOKEN: str | None = field(default=None, repr=False)
    OSS_SIGNATURE_VERSION: str = "v4"
    OSS_SIGN_PAYLOAD: bool = False
    OSS_PATH_STYLE: bool = False
    OSS_REQUEST_TIMEOUT: float = 60.0
    OSS_PRESIGN_EXPIRES_SECONDS: int = 3600
    ENABLE_METRICS: bool = True
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        version = (self.OSS_SIGNATURE_VERSION or "").strip().lower()
        if version not in SUPPORTED_SIGNATURE_VERSIONS:
            raise ConfigurationError(
                f"OSS_SIGNATURE_VERSION must be one of {SUPPORTED_SIGNATURE_VERSIONS}, "
                f"got {self.OSS_SIGNATURE_VERSION!r}"
            )
        self.OSS_SIGNATURE_VERSION = version

    def credentials(self) -> Credentials:
        return Credentials(
            access_key_id=(self.OSS_ACCESS_KEY_ID or "").strip(),
            access_key_secret=(self.OSS_ACCESS_KEY_SECRET or "").strip(),
            security_token=self.OSS_SECURITY_TOKEN or None,
            region=self.OSS_REGION.strip(),
            endpoint=self.OSS_ENDPOINT.strip(),
        )

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            OSS_ENDPOINT=os.environ.get("OSS_ENDPOINT", cls.OSS_ENDPOINT),
            OSS_REGION=os.environ.get("OSS_REGION", cls.OSS_REGION),
            OSS_BUCKET=os.environ.get("OSS_BUCKET", cls.OSS_BUCKET),
            OSS_ACCESS_KEY_ID=os.environ.get("OSS_ACCESS_KEY_ID"),
            OSS_ACCESS_KEY_SECRET=os.environ.get("OSS_ACCESS_KEY_SECRET"),
            OSS_SECURITY_TOKEN=os.environ.get("OSS_SECURITY_TOKEN"),
            OSS_SIGNATURE_VERSION=os.environ.get(
                "OSS_SIGNATURE_VERSION", cls.OSS_SIGNATURE_VERSION
            ),
            OSS_SIGN_PAYLOAD=_as_bool(
                os.environ.get("OSS_SIGN_PAYLOAD"), cls.OSS_SIGN_PAYLOAD
            ),
            OSS_PATH_STYLE=_as_bool(os.environ.get("OSS_PATH_STYLE"), cls.OSS_PATH_STYLE),
            OSS_REQUEST_TIMEOUT=float(
                os.environ.get("OSS_REQUEST_TIMEOUT", cls.OSS_REQUEST_TIMEOUT)
            ),
            OSS_PRESIGN_EXPIRES_SECONDS=int(
                os.environ.get(
                    "OSS_PRESIGN_EXPIRES_SECONDS", cls.OSS_PRESIGN_EXPIRES_SECONDS
                )
            ),
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
