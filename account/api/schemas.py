from __future__ import annotations

import re
import unicodedata
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from account.storage.models import TokenPair, User


class ErrorBody(BaseModel):
    """Error body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null


class ErrorEnvelope(BaseModel):
    error: ErrorBody
    request_id: Optional[str] = None


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password_length(value: str) -> str:
    if len(value) < 6:
        raise ValueError("password must be at least 6 characters")
    if len(value) > 30:
        raise ValueError("password must be at most 30 characters")
    return value


def _validate_website(value: str) -> str:
    value = value.strip()
    if not value:
        return ""
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("website must be an absolute http(s) URL")
    return value


class AuthRequest(BaseModel):
    """Credentials for signup and signin."""

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _validate_auth_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return _validate_password_length(value)


class TokensRequest(BaseModel):
    refresh_token: str = Field(..., alias="refreshToken", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class DetailsRequest(BaseModel):
    name: str = Field(default="", max_length=50)
    email: str
    website: str = ""

    @field_validator("email")
    @classmethod
    def _validate_details_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("website")
    @classmethod
    def _validate_details_website(cls, value: str) -> str:
        return _validate_website(value)


class TokenPairBody(BaseModel):
    id_token: str = Field(..., alias="idToken")
    refresh_token: str = Field(..., alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairBody":
        return cls(**pair.to_wire())


class TokensResponse(BaseModel):
    tokens: TokenPairBody


class UserBody(BaseModel):
    uid: str
    email: str
    name: str = ""
    image_url: str = Field(default="", alias="imageUrl")
    website: str = ""

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_user(cls, user: User) -> "UserBody":
        return cls(**user.public_dict())


class UserResponse(BaseModel):
    user: UserBody


class MessageResponse(BaseModel):
    message: str


class ImageResponse(BaseModel):
    image_url: str = Field(..., alias="imageUrl")
    message: str = "success"

    model_config = ConfigDict(populate_by_name=True)
