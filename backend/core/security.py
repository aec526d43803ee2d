from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from core.config import settings, TokenConfig
from core.errors import TokenExpired, TokenInvalid
import logging

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

ACCESS = "access"
REFRESH = "refresh"

# bcrypt only reads the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72


def password_too_long(password: Optional[str]) -> bool:
    return len((password or "").encode("utf-8")) > MAX_PASSWORD_BYTES


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash; an unusable hash never matches.

    No stored hash was made from more than MAX_PASSWORD_BYTES, so a longer
    plaintext is a mismatch rather than a truncated comparison.
    """
    if not hashed_password or password_too_long(plain_password):
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        logger.warning(f"Password hash could not be checked: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Generate password hash"""
    if password_too_long(password):
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")
    return pwd_context.hash(password)


class TokenIssuer:
    """Signs and verifies access and refresh tokens.

    Access and refresh tokens use different secrets and lifetimes, so a token
    of one kind never verifies as the other even before the ``type`` claim
    is checked.
    """

    def __init__(self, config: TokenConfig):
        self.config = config

    def _secret(self, kind: str) -> str:
        if kind == ACCESS:
            return self.config.access_secret
        if kind == REFRESH:
            return self.config.refresh_secret
        raise ValueError(f"Unknown token kind: {kind}")

    def _encode(self, claims: Dict[str, Any], kind: str) -> str:
        now = datetime.now(timezone.utc)
        ttl = self.config.access_ttl if kind == ACCESS else self.config.refresh_ttl
        to_encode = dict(claims)
        to_encode.update({
            "type": kind,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + ttl,
        })
        return jwt.encode(to_encode, self._secret(kind), algorithm=self.config.algorithm)

    def issue_access(self, user: Dict[str, Any]) -> str:
        """Create JWT access token"""
        return self._encode(
            {
                "sub": str(user["id"]),
                "username": user.get("username"),
                "email": user.get("email"),
                "full_name": user.get("full_name"),
            },
            ACCESS,
        )

    def issue_refresh(self, user_id: str) -> str:
        """Create JWT refresh token"""
        return self._encode({"sub": str(user_id)}, REFRESH)

    def issue_pair(self, user: Dict[str, Any]) -> Dict[str, str]:
        return {
            "access_token": self.issue_access(user),
            "refresh_token": self.issue_refresh(user["id"]),
        }

    def verify(self, token: str, kind: str = ACCESS) -> Dict[str, Any]:
        """Verify and decode a token of the given kind.

        Raises TokenExpired when the signature is good but the token is past
        expiry, TokenInvalid for everything else.
        """
        if not token:
            raise TokenInvalid("Token is empty")
        try:
            payload = jwt.decode(token, self._secret(kind), algorithms=[self.config.algorithm])
        except ExpiredSignatureError as e:
            raise TokenExpired(f"{kind.capitalize()} token has expired") from e
        except JWTError as e:
            logger.debug(f"JWT decode failed: {e}")
            raise TokenInvalid(f"Invalid {kind} token") from e
        if payload.get("type") != kind:
            raise TokenInvalid(f"Invalid {kind} token")
        if not payload.get("sub"):
            raise TokenInvalid(f"Invalid {kind} token")
        return payload


token_issuer = TokenIssuer(settings.token_config())
