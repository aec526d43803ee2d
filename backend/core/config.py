from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class TokenConfig:
    """Signing material for access and refresh tokens, fixed at startup."""
    access_secret: str
    refresh_secret: str
    algorithm: str
    access_ttl: timedelta
    refresh_ttl: timedelta


class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "Blog Platform API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_V1_STR: str = "/api/v1"

    # Token settings
    ACCESS_TOKEN_SECRET: str
    REFRESH_TOKEN_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 10
    BCRYPT_ROUNDS: int = 12

    # Cookie settings
    ACCESS_COOKIE_NAME: str = "accessToken"
    REFRESH_COOKIE_NAME: str = "refreshToken"
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "lax"

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # MongoDB
    USE_MONGO: bool = True
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "blog_platform"

    # Asset storage (S3 when configured, local directory otherwise)
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_S3_BUCKET: str = ""
    AWS_S3_REGION: str = "us-east-1"
    LOCAL_UPLOADS_DIR: str = "uploads"
    TEMP_UPLOAD_DIR: str = "public/temp"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7

    class Config:
        env_file = ".env"
        case_sensitive = True

    def token_config(self) -> TokenConfig:
        return TokenConfig(
            access_secret=self.ACCESS_TOKEN_SECRET,
            refresh_secret=self.REFRESH_TOKEN_SECRET,
            algorithm=self.ALGORITHM,
            access_ttl=timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=self.REFRESH_TOKEN_EXPIRE_DAYS),
        )

def validate_settings(s: Settings) -> Settings:
    """Reject configurations the token issuer cannot run with."""
    if not s.ACCESS_TOKEN_SECRET:
        raise ValueError("ACCESS_TOKEN_SECRET environment variable is required")
    if not s.REFRESH_TOKEN_SECRET:
        raise ValueError("REFRESH_TOKEN_SECRET environment variable is required")
    if s.ACCESS_TOKEN_SECRET == s.REFRESH_TOKEN_SECRET:
        raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")
    if s.ACCESS_TOKEN_EXPIRE_MINUTES <= 0 or s.REFRESH_TOKEN_EXPIRE_DAYS <= 0:
        raise ValueError("Token lifetimes must be positive")
    return s

# Create and validate settings instance
settings = validate_settings(Settings())
