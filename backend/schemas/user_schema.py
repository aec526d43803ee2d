from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class User(CamelModel):
    """Public projection of a user record; never carries password or refresh token."""
    id: str
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserLogin(CamelModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshTokenRequest(CamelModel):
    refresh_token: Optional[str] = None


class ChangePasswordRequest(CamelModel):
    old_password: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


class UserUpdate(CamelModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None


class Token(CamelModel):
    access_token: str
    refresh_token: str


def to_public(user: dict) -> dict:
    """Serialize a stored user dict into the camelCase API shape."""
    return User.model_validate(user).model_dump(mode="json", by_alias=True)
