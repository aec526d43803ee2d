from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from api.dependencies import get_assets, get_current_user, get_repository
from db.repository import UserRepository
from schemas.user_schema import ChangePasswordRequest, UserUpdate, to_public
from services.asset_service import AssetStore
from services.user_service import change_password, update_account, update_avatar, update_cover
from utils.responses import api_response
from utils.uploads import discard_temp, save_temp_upload

router = APIRouter()


@router.get("/get-current-user")
async def read_current_user(current_user: dict = Depends(get_current_user)):
    # The gate already re-read the user from storage
    return api_response(to_public(current_user), "Successfully fetched user data")


@router.post("/change-password")
async def change_password_endpoint(
    data: ChangePasswordRequest,
    current_user: dict = Depends(get_current_user),
    repo: UserRepository = Depends(get_repository),
):
    await change_password(current_user["id"], data, repo)
    return api_response({}, "Password changed successfully")


@router.patch("/update-account")
async def update_account_endpoint(
    data: UserUpdate,
    current_user: dict = Depends(get_current_user),
    repo: UserRepository = Depends(get_repository),
):
    user = await update_account(current_user["id"], data.email, data.full_name, repo)
    return api_response(to_public(user), "Account details updated successfully")


@router.patch("/update-user-avatar")
async def update_avatar_endpoint(
    avatar_image: Optional[UploadFile] = File(None, alias="avatarImage"),
    current_user: dict = Depends(get_current_user),
    repo: UserRepository = Depends(get_repository),
    assets: AssetStore = Depends(get_assets),
):
    local_path = await save_temp_upload(avatar_image)
    try:
        user = await update_avatar(current_user["id"], local_path, repo, assets)
    finally:
        discard_temp(local_path)
    return api_response(to_public(user), "Avatar image updated successfully")


@router.patch("/update-user-cover")
async def update_cover_endpoint(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    current_user: dict = Depends(get_current_user),
    repo: UserRepository = Depends(get_repository),
    assets: AssetStore = Depends(get_assets),
):
    local_path = await save_temp_upload(cover_image)
    try:
        user = await update_cover(current_user["id"], local_path, repo, assets)
    finally:
        discard_temp(local_path)
    return api_response(to_public(user), "Cover image updated successfully")
