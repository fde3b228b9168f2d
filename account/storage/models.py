from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional


@dataclass
class User:
    uid: str
    email: str
    # credential hash; never serialized into tokens or responses
    password: str = field(default="", repr=False)
    name: str = ""
    image_url: str = ""
    website: str = ""

    @classmethod
    def new(cls, email: str, password: str = "") -> "User":
        return cls(uid=str(uuid.uuid4()), email=email, password=password)

    def public_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "email": self.email,
            "name": self.name,
            "imageUrl": self.image_url,
            "website": self.website,
        }

    @classmethod
    def from_public_dict(cls, data: Dict[str, Any]) -> "User":
        """Rebuild a user from its serialized claim form; the credential stays empty."""
        return cls(
            uid=str(data["uid"]),
            email=str(data.get("email") or ""),
            name=str(data.get("name") or ""),
            image_url=str(data.get("imageUrl") or ""),
            website=str(data.get("website") or ""),
        )


@dataclass(frozen=True)
class RefreshToken:
    """A refresh token together with the handle used to revoke it."""

    id: str
    uid: str
    ss: str = field(repr=False)
    expires_in: Optional[timedelta] = None


@dataclass(frozen=True)
class IDToken:
    ss: str = field(repr=False)


@dataclass(frozen=True)
class TokenPair:
    id_token: IDToken
    refresh_token: RefreshToken

    def to_wire(self) -> Dict[str, str]:
        return {"idToken": self.id_token.ss, "refreshToken": self.refresh_token.ss}
