from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import settings
from core.errors import TokenExpired, TokenInvalid, Unauthorized
from core.security import ACCESS, TokenIssuer, token_issuer
from db.repository import UserRepository, get_user_repository
from services.asset_service import AssetStore, get_asset_store
import logging

logger = logging.getLogger(__name__)

# Shows the bearer scheme in OpenAPI; the cookie is checked first
bearer_scheme = HTTPBearer(auto_error=False)


def get_token_issuer() -> TokenIssuer:
    return token_issuer


def get_repository() -> UserRepository:
    return get_user_repository()


def get_assets() -> AssetStore:
    return get_asset_store()


def extract_access_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials] = None) -> Optional[str]:
    token = request.cookies.get(settings.ACCESS_COOKIE_NAME)
    if token:
        return token
    if credentials is not None and credentials.scheme.lower() == "bearer" and credentials.credentials:
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    repo: UserRepository = Depends(get_repository),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> dict:
    """Resolve the calling user from the access token or reject the request."""
    token = extract_access_token(request, credentials)
    if not token:
        raise Unauthorized("Unauthorized request")
    try:
        payload = issuer.verify(token, ACCESS)
    except TokenExpired:
        raise Unauthorized("Access token has expired")
    except TokenInvalid:
        raise Unauthorized("Invalid access token")

    # Fresh lookup so deleted accounts and profile edits are reflected
    user = await repo.find_by_id(payload["sub"])
    if not user:
        logger.info(f"Access token for missing user {payload['sub']}")
        raise Unauthorized("Invalid access token")
    request.state.user = user
    return user
