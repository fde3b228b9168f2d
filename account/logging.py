"""Structured logging for the account service.

Every entry carries the request's correlation id and, once the authorization
gate has admitted a caller, that caller's ``user_id``. Credentials never reach
the output: password, secret and authorization fields are masked, email
addresses keep only their domain, and any value shaped like a signed JWT is
replaced by a short fingerprint under whatever key it appears.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_CREDENTIAL_KEYS = ("password", "secret", "authorization")
_SIGNED_TOKEN = re.compile(r"eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def start_request_context(request_id: Optional[str] = None) -> str:
    """Reset per-request log context and return the request's correlation id."""
    structlog.contextvars.clear_contextvars()
    return set_correlation_id(request_id)


def bind_request_user(user_id: str) -> None:
    """Attach the authenticated caller to every later entry of this request."""
    structlog.contextvars.bind_contextvars(user_id=user_id)


def token_fingerprint(token: str) -> str:
    """Stable, non-reversible stand-in for a signed token in log output."""
    return "jwt:" + hashlib.sha256(token.encode()).hexdigest()[:12]


def _mask_email(value: str) -> str:
    _, sep, domain = value.partition("@")
    return f"***@{domain}" if sep else "***"


def _scrub(value: Any) -> Any:
    if isinstance(value, str) and "eyJ" in value:
        return _SIGNED_TOKEN.sub(lambda m: token_fingerprint(m.group(0)), value)
    return value


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        lowered = key.lower()
        if any(part in lowered for part in _CREDENTIAL_KEYS):
            event_dict[key] = "***"
        elif lowered == "email" and isinstance(value, str):
            event_dict[key] = _mask_email(value)
        else:
            event_dict[key] = _scrub(value)
    return event_dict


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_credentials,
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _LEVELS.get(level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", True) and not _env_flag("LOG_DEV_MODE", False),
)


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def mask_url_password(url: Optional[str]) -> Optional[str]:
    """``redis://:hunter2@cache:6379/0`` -> ``redis://:***@cache:6379/0``"""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        password = parsed.password
    except ValueError:
        return "***"
    if not password:
        return url
    userinfo, _, hostinfo = parsed.netloc.rpartition("@")
    user = userinfo.partition(":")[0]
    return parsed._replace(netloc=f"{user}:***@{hostinfo}").geturl()
