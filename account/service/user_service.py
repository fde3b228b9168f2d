from __future__ import annotations

import posixpath
import uuid
from typing import Optional, Protocol
from urllib.parse import urlparse

from account.logging import get_logger
from account.service.errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
)
from account.service.passwords import hash_password, verify_password
from account.storage.errors import ConstraintViolation
from account.storage.models import User

logger = get_logger(__name__)


class UserRepository(Protocol):
    def create(self, user: User) -> User: ...

    def find_by_id(self, uid: str) -> Optional[User]: ...

    def find_by_email(self, email: str) -> Optional[User]: ...

    def update(self, user: User) -> Optional[User]: ...

    def update_image(self, uid: str, image_url: str) -> Optional[User]: ...


class ImageRepository(Protocol):
    def update_profile(self, obj_name: str, data: bytes, content_type: str) -> str: ...

    def delete_profile(self, obj_name: str) -> None: ...


def object_name_from_url(image_url: str) -> str:
    """Object name for a profile image: reuse the stored one, or mint a new UUID."""
    if not image_url:
        return str(uuid.uuid4())
    try:
        parsed = urlparse(image_url)
    except ValueError as exc:
        logger.error("image_url_parse_failed", image_url=image_url, error=str(exc))
        raise InternalError() from exc
    name = posixpath.basename(parsed.path.rstrip("/"))
    if not name:
        logger.error("image_url_without_object", image_url=image_url)
        raise InternalError()
    return name


class UserService:
    """Account records, credentials and profile images."""

    def __init__(self, users: UserRepository, images: ImageRepository) -> None:
        self.users = users
        self.images = images

    def get(self, uid: str) -> User:
        user = self.users.find_by_id(uid)
        if not user:
            raise NotFoundError("user not found", detail={"uid": uid})
        return user

    def signup(self, email: str, password: str) -> User:
        user = User.new(email=email, password=hash_password(password))
        try:
            created = self.users.create(user)
        except ConstraintViolation as exc:
            logger.info("signup_duplicate_email", email=email)
            raise ConflictError("email already exists", detail=exc.detail) from exc
        logger.info("user_signed_up", user_id=created.uid)
        return created

    def signin(self, email: str, password: str) -> User:
        # unknown email and wrong password are reported identically
        user = self.users.find_by_email(email)
        if not user or not verify_password(user.password, password):
            logger.info("signin_rejected", email=email)
            raise AuthorizationError("invalid email and password combination")
        return user

    def update_details(
        self, uid: str, *, email: str, name: str = "", website: str = ""
    ) -> User:
        current = self.get(uid)
        current.email = email
        current.name = name
        current.website = website
        try:
            updated = self.users.update(current)
        except ConstraintViolation as exc:
            raise ConflictError("email already exists", detail=exc.detail) from exc
        if not updated:
            raise NotFoundError("user not found", detail={"uid": uid})
        return updated

    def set_profile_image(self, uid: str, data: bytes, content_type: str) -> User:
        user = self.get(uid)
        obj_name = object_name_from_url(user.image_url)
        try:
            image_url = self.images.update_profile(obj_name, data, content_type)
        except OSError as exc:
            logger.error(
                "profile_image_upload_failed", user_id=uid, obj_name=obj_name, error=str(exc)
            )
            raise InternalError() from exc
        updated = self.users.update_image(uid, image_url)
        if not updated:
            raise NotFoundError("user not found", detail={"uid": uid})
        return updated

    def clear_profile_image(self, uid: str) -> None:
        user = self.get(uid)
        if not user.image_url:
            return
        obj_name = object_name_from_url(user.image_url)
        try:
            self.images.delete_profile(obj_name)
        except OSError as exc:
            logger.error(
                "profile_image_delete_failed", user_id=uid, obj_name=obj_name, error=str(exc)
            )
            raise InternalError() from exc
        self.users.update_image(uid, "")
