from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile

from account.api.auth_gate import require_user
from account.api.schemas import (
    AuthRequest,
    DetailsRequest,
    ImageResponse,
    MessageResponse,
    TokenPairBody,
    TokensRequest,
    TokensResponse,
    UserBody,
    UserResponse,
)
from account.logging import get_logger
from account.service.errors import BadRequestError, PayloadTooLargeError
from account.service.runtime import get_runtime
from account.storage.models import User

logger = get_logger(__name__)

router = APIRouter()

_ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png"}


@router.get("/me", response_model=UserResponse, tags=["account"])
async def me(principal: User = Depends(require_user)):
    """Return the current user's stored record."""
    runtime = get_runtime()
    user = runtime.user_service.get(principal.uid)
    return UserResponse(user=UserBody.from_user(user))


@router.post("/signup", response_model=TokensResponse, status_code=201, tags=["auth"])
async def signup(body: AuthRequest):
    """Create an account and open its first session.

    Raises:
        409: If the email is already registered
    """
    runtime = get_runtime()
    user = runtime.user_service.signup(body.email, body.password)
    pair = await runtime.tokens.issue_pair(user)
    return TokensResponse(tokens=TokenPairBody.from_pair(pair))


@router.post("/signin", response_model=TokensResponse, tags=["auth"])
async def signin(body: AuthRequest):
    """Open an additional session; existing sessions stay valid."""
    runtime = get_runtime()
    user = runtime.user_service.signin(body.email, body.password)
    pair = await runtime.tokens.issue_pair(user)
    return TokensResponse(tokens=TokenPairBody.from_pair(pair))


@router.post("/signout", response_model=MessageResponse, tags=["auth"])
async def signout(principal: User = Depends(require_user)):
    runtime = get_runtime()
    await runtime.tokens.signout(principal.uid)
    return MessageResponse(message="user signed out successfully!")


@router.post("/tokens", response_model=TokensResponse, tags=["auth"])
async def tokens(body: TokensRequest):
    """Exchange a refresh token for a new pair; the presented token is consumed."""
    runtime = get_runtime()
    refresh = runtime.tokens.validate_refresh(body.refresh_token)
    user = runtime.user_service.get(refresh.uid)
    pair = await runtime.tokens.issue_pair(user, refresh.id)
    return TokensResponse(tokens=TokenPairBody.from_pair(pair))


@router.post("/image", response_model=ImageResponse, tags=["account"])
async def upload_image(
    request: Request,
    image_file: Optional[UploadFile] = File(None, alias="imageFile"),
    principal: User = Depends(require_user),
):
    runtime = get_runtime()
    max_bytes = max(1, runtime.settings.max_body_bytes)
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError(f"max request body size is {max_bytes} bytes")
    if image_file is None:
        raise BadRequestError("must include an imageFile")
    if image_file.content_type not in _ALLOWED_IMAGE_TYPES:
        logger.info(
            "profile_image_type_rejected",
            user_id=principal.uid,
            content_type=image_file.content_type,
        )
        raise BadRequestError("imageFile must be 'image/jpeg' or 'image/png'")
    contents = await image_file.read(max_bytes + 1)
    if len(contents) > max_bytes:
        raise PayloadTooLargeError(f"max request body size is {max_bytes} bytes")
    user = runtime.user_service.set_profile_image(
        principal.uid, contents, image_file.content_type
    )
    return ImageResponse(image_url=user.image_url, message="success")


@router.delete("/image", response_model=MessageResponse, tags=["account"])
async def delete_image(principal: User = Depends(require_user)):
    runtime = get_runtime()
    runtime.user_service.clear_profile_image(principal.uid)
    return MessageResponse(message="success")


@router.put("/details", response_model=UserResponse, tags=["account"])
async def update_details(
    body: DetailsRequest, principal: User = Depends(require_user)
):
    runtime = get_runtime()
    user = runtime.user_service.update_details(
        principal.uid, email=body.email, name=body.name, website=body.website
    )
    return UserResponse(user=UserBody.from_user(user))
