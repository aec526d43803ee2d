from typing import Any, Dict, Optional
import hmac
import logging

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from core.errors import (
    EXPIRED_SESSION,
    Conflict,
    NotFound,
    PersistenceError,
    TokenExpired,
    TokenInvalid,
    Unauthorized,
    UpstreamAssetError,
    ValidationError,
)
from core.security import (
    MAX_PASSWORD_BYTES,
    REFRESH,
    TokenIssuer,
    get_password_hash,
    password_too_long,
    verify_password,
)
from db.repository import UserRepository
from schemas.user_schema import ChangePasswordRequest
from services.asset_service import AssetStore
from utils.timing import timeit

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def normalize_identity(value: Optional[str]) -> str:
    """Usernames and emails are stored trimmed and lower-cased."""
    return (value or "").strip().lower()


def _check_email(email: str) -> None:
    try:
        _email_adapter.validate_python(email)
    except PydanticValidationError:
        raise ValidationError("Email address is not valid")


@timeit("register_user")
async def register_user(
    username: Optional[str],
    full_name: Optional[str],
    email: Optional[str],
    password: Optional[str],
    avatar_path: Optional[str],
    cover_path: Optional[str],
    repo: UserRepository,
    assets: AssetStore,
) -> Dict[str, Any]:
    """Create a user with uploaded avatar (required) and cover (optional) images."""
    if any(not (field or "").strip() for field in (username, full_name, email, password)):
        raise ValidationError("All fields are required")
    username = normalize_identity(username)
    email = normalize_identity(email)
    _check_email(email)
    if password_too_long(password):
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    if await repo.find_by_identity(username=username, email=email):
        raise Conflict("User with this username or email already exists")

    if not avatar_path:
        raise ValidationError("Avatar image must be provided")
    try:
        avatar_url = await assets.upload(avatar_path, folder="avatars")
    except UpstreamAssetError:
        raise UpstreamAssetError("Avatar image upload failed. Retry")

    cover_url = ""
    if cover_path:
        try:
            cover_url = await assets.upload(cover_path, folder="covers")
        except UpstreamAssetError:
            raise UpstreamAssetError("Cover image upload failed. Retry")

    hashed_password = await run_in_threadpool(get_password_hash, password)
    user_id = await repo.create({
        "username": username,
        "email": email,
        "full_name": full_name.strip(),
        "password": hashed_password,
        "avatar": avatar_url,
        "cover_image": cover_url,
    })

    created = await repo.find_by_id(user_id)
    if not created:
        logger.error(f"User {user_id} was inserted but could not be read back")
        raise PersistenceError("Something went wrong while registering the user")
    logger.info(f"Registered user {user_id}")
    return created


@timeit("login_user")
async def login_user(
    username: Optional[str],
    email: Optional[str],
    password: Optional[str],
    repo: UserRepository,
    issuer: TokenIssuer,
) -> Dict[str, Any]:
    """Verify credentials, issue a fresh token pair and store the refresh token.

    Storing the new refresh token overwrites any previous one, which ends a
    session opened elsewhere.
    """
    username = normalize_identity(username)
    email = normalize_identity(email)
    if not (username or email) or not password:
        raise ValidationError("Username or email and password are required")

    user = await repo.find_by_identity(username=username, email=email, include_secrets=True)
    if not user:
        raise NotFound("User does not exist")
    if not await run_in_threadpool(verify_password, password, user.get("password")):
        raise Unauthorized("Invalid user credentials")

    tokens = issuer.issue_pair(user)
    await repo.set_refresh_token(user["id"], tokens["refresh_token"])

    logged_in = await repo.find_by_id(user["id"])
    if not logged_in:
        logger.error(f"User {user['id']} disappeared during login")
        raise PersistenceError("Something went wrong while logging in")
    logger.info(f"User {user['id']} logged in")
    return {"user": logged_in, **tokens}


@timeit("refresh_access_token")
async def refresh_access_token(
    presented: Optional[str],
    repo: UserRepository,
    issuer: TokenIssuer,
) -> Dict[str, str]:
    """Exchange a refresh token for a new pair, invalidating the presented one."""
    if not presented:
        raise Unauthorized("Unauthorized request")
    try:
        claims = issuer.verify(presented, REFRESH)
    except TokenExpired:
        raise Unauthorized("Refresh token has expired")
    except TokenInvalid:
        raise Unauthorized("Invalid refresh token")

    user = await repo.find_by_id(claims["sub"], include_secrets=True)
    if not user:
        raise Unauthorized("Invalid refresh token", reason=EXPIRED_SESSION)
    stored = user.get("refresh_token") or ""
    if not hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8")):
        logger.warning(f"Superseded refresh token presented for user {user['id']}")
        raise Unauthorized("Refresh token is expired or used", reason=EXPIRED_SESSION)

    tokens = issuer.issue_pair(user)
    # Conditional write: a concurrent refresh with the same token loses here
    if not await repo.swap_refresh_token(user["id"], presented, tokens["refresh_token"]):
        logger.warning(f"Refresh token for user {user['id']} rotated concurrently")
        raise Unauthorized("Refresh token is expired or used", reason=EXPIRED_SESSION)
    return tokens


async def logout_user(user_id: str, repo: UserRepository) -> None:
    await repo.clear_refresh_token(user_id)
    logger.info(f"User {user_id} logged out")


@timeit("change_password")
async def change_password(user_id: str, password_request: ChangePasswordRequest, repo: UserRepository) -> None:
    """Change user password.

    Existing access and refresh tokens stay valid afterwards.
    """
    old = password_request.old_password
    new = password_request.new_password
    confirm = password_request.confirm_password
    if not old or not new or not confirm:
        raise ValidationError("All fields are required")
    if new != confirm:
        raise ValidationError("New password and confirm password must match")
    if new == old:
        raise ValidationError("New password must be different from old password")
    if password_too_long(new):
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    user = await repo.find_by_id(user_id, include_secrets=True)
    if not user:
        raise NotFound("User not found")
    if not await run_in_threadpool(verify_password, old, user.get("password")):
        raise Unauthorized("Invalid old password")

    hashed_password = await run_in_threadpool(get_password_hash, new)
    if not await repo.update_password(user_id, hashed_password):
        raise NotFound("User not found")
    logger.info(f"User {user_id} changed password")


async def update_account(
    user_id: str,
    email: Optional[str],
    full_name: Optional[str],
    repo: UserRepository,
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if email and email.strip():
        fields["email"] = normalize_identity(email)
    if full_name and full_name.strip():
        fields["full_name"] = full_name.strip()
    if not fields:
        raise ValidationError("At least one of email or fullName is required")

    if "email" in fields:
        owner = await repo.find_by_identity(email=fields["email"])
        if owner and owner["id"] != str(user_id):
            raise Conflict("Email already registered")

    updated = await repo.update_fields(user_id, fields)
    if not updated:
        raise NotFound("User not found")
    return updated


async def _replace_image(
    user_id: str,
    local_path: Optional[str],
    field: str,
    folder: str,
    label: str,
    repo: UserRepository,
    assets: AssetStore,
) -> Dict[str, Any]:
    if not local_path:
        raise ValidationError(f"{label} is missing")
    try:
        url = await assets.upload(local_path, folder=folder)
    except UpstreamAssetError:
        raise UpstreamAssetError(f"{label} upload failed. Retry")
    updated = await repo.update_fields(user_id, {field: url})
    if not updated:
        raise NotFound("User not found")
    return updated


async def update_avatar(user_id: str, local_path: Optional[str], repo: UserRepository, assets: AssetStore):
    return await _replace_image(user_id, local_path, "avatar", "avatars", "Avatar image", repo, assets)


async def update_cover(user_id: str, local_path: Optional[str], repo: UserRepository, assets: AssetStore):
    return await _replace_image(user_id, local_path, "cover_image", "covers", "Cover image", repo, assets)
