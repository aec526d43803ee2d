from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from api.dependencies import get_assets, get_current_user, get_repository, get_token_issuer
from core.config import settings
from core.security import TokenIssuer
from db.repository import UserRepository
from schemas.user_schema import RefreshTokenRequest, Token, UserLogin, to_public
from services.asset_service import AssetStore
from services.user_service import login_user, logout_user, refresh_access_token, register_user
from utils.responses import api_response, clear_auth_cookies, set_auth_cookies
from utils.uploads import discard_temp, save_temp_upload

router = APIRouter()


def _token_payload(tokens: dict) -> dict:
    return Token.model_validate(tokens).model_dump(by_alias=True)


@router.post("/register", status_code=201)
async def register(
    username: Optional[str] = Form(None),
    full_name: Optional[str] = Form(None, alias="fullName"),
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    avatar_image: Optional[UploadFile] = File(None, alias="avatarImage"),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    repo: UserRepository = Depends(get_repository),
    assets: AssetStore = Depends(get_assets),
):
    avatar_path = await save_temp_upload(avatar_image)
    cover_path = await save_temp_upload(cover_image)
    try:
        user = await register_user(username, full_name, email, password, avatar_path, cover_path, repo, assets)
    finally:
        discard_temp(avatar_path, cover_path)
    return api_response(to_public(user), "User registered successfully", status_code=201)


@router.post("/login")
async def login(
    credentials: UserLogin,
    repo: UserRepository = Depends(get_repository),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    result = await login_user(credentials.username, credentials.email, credentials.password, repo, issuer)
    response = api_response(
        {"user": to_public(result["user"]), **_token_payload(result)},
        "User logged in successfully",
    )
    return set_auth_cookies(response, result["access_token"], result["refresh_token"])


@router.post("/logout")
async def logout(
    current_user: dict = Depends(get_current_user),
    repo: UserRepository = Depends(get_repository),
):
    await logout_user(current_user["id"], repo)
    return clear_auth_cookies(api_response({}, "User has been logged out"))


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    body: Optional[RefreshTokenRequest] = None,
    repo: UserRepository = Depends(get_repository),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    presented = request.cookies.get(settings.REFRESH_COOKIE_NAME) or (body.refresh_token if body else None)
    tokens = await refresh_access_token(presented, repo, issuer)
    response = api_response(
        _token_payload(tokens),
        "Tokens refreshed successfully",
    )
    return set_auth_cookies(response, tokens["access_token"], tokens["refresh_token"])
