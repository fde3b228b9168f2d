from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from account.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the account service."""

    account_api_url: str = env_field("/api/account", "ACCOUNT_API_URL")
    database_url: str = env_field(
        "postgresql://localhost:5432/account", "DATABASE_URL"
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/account", "SHARED_FS_ROOT")
    image_base_url: str = env_field(
        "http://localhost:8080/images",
        "IMAGE_BASE_URL",
        description="Public URL prefix under which stored profile images are served",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic testing behaviors: in-memory revocation store, ephemeral keys, no request timeout.",
    )
    priv_key_file: str | None = env_field(None, "PRIV_KEY_FILE")
    pub_key_file: str | None = env_field(None, "PUB_KEY_FILE")
    refresh_secret: str | None = env_field(None, "REFRESH_SECRET")
    id_token_exp_seconds: int = env_field(
        15 * 60,
        "ID_TOKEN_EXP",
        description="Identity token lifetime in seconds",
    )
    refresh_token_exp_seconds: int = env_field(
        3 * 24 * 60 * 60,
        "REFRESH_TOKEN_EXP",
        description="Refresh token lifetime in seconds",
    )
    handler_timeout_seconds: float = env_field(5.0, "HANDLER_TIMEOUT")
    store_timeout_seconds: float = env_field(
        2.0,
        "STORE_TIMEOUT",
        description="Upper bound for a single revocation store call",
    )
    max_body_bytes: int = env_field(4 * 1024 * 1024, "MAX_BODY_BYTES")
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("id_token_exp_seconds", "refresh_token_exp_seconds")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("token lifetimes must be positive")
        return value

    @field_validator("handler_timeout_seconds", "store_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @field_validator("account_api_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        value = "/" + value.strip("/")
        return "" if value == "/" else value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _ensure_refresh_secret(self) -> "Settings":
        if self.refresh_secret:
            return self
        if not self.test_mode:
            raise ValueError("REFRESH_SECRET is required outside TEST_MODE")
        self.refresh_secret = secrets.token_urlsafe(48)
        logger.warning(
            "refresh_secret_generated",
            message="REFRESH_SECRET not set; using an ephemeral secret for this process",
        )
        return self


@dataclass(frozen=True)
class SigningKeys:
    private_key: RSAPrivateKey
    public_key: RSAPublicKey
    refresh_secret: str


def _read_pem(path: str, label: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise RuntimeError(f"could not read {label} pem file: {path}") from exc


def load_signing_keys(settings: Settings) -> SigningKeys:
    """Load the RSA key pair and refresh secret used to sign session tokens.

    Outside TEST_MODE both PEM files are mandatory. In TEST_MODE a missing
    private key file yields an ephemeral key pair valid for this process only.
    """
    from account.service.tokens import (
        generate_private_key,
        load_private_key,
        load_public_key,
    )

    if settings.priv_key_file:
        private_key = load_private_key(
            _read_pem(settings.priv_key_file, "private key")
        )
        if settings.pub_key_file:
            public_key = load_public_key(
                _read_pem(settings.pub_key_file, "public key")
            )
        else:
            public_key = private_key.public_key()
    elif settings.test_mode:
        logger.warning(
            "signing_key_generated",
            message="PRIV_KEY_FILE not set; generated an ephemeral RSA key pair",
        )
        private_key = generate_private_key()
        public_key = private_key.public_key()
    else:
        raise RuntimeError(
            "PRIV_KEY_FILE and PUB_KEY_FILE are required; set TEST_MODE=true to use ephemeral keys"
        )

    return SigningKeys(
        private_key=private_key,
        public_key=public_key,
        refresh_secret=settings.refresh_secret or "",
    )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
