import logging
import asyncio
from typing import Any, Dict, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
import certifi
from core.config import settings

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"

# (field, index name); both back the username/email uniqueness rule
USER_INDEXES = (
    ("username", "u_username"),
    ("email", "u_email"),
)

INDEX_ATTEMPTS = 5

_mongo_client: Optional[AsyncIOMotorClient] = None
_mongo_db: Optional[AsyncIOMotorDatabase] = None


def _client_options(uri: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "serverSelectionTimeoutMS": 30000,
        "connectTimeoutMS": 20000,
        "socketTimeoutMS": 20000,
    }
    is_srv = uri.startswith("mongodb+srv://")
    # Atlas and other TLS endpoints get the certifi CA bundle
    if is_srv or "mongodb.net" in uri:
        options.update({"tls": True, "tlsCAFile": certifi.where(), "retryWrites": True})
    if is_srv:
        options["directConnection"] = False
    return options


def get_mongo_db() -> Optional[AsyncIOMotorDatabase]:
    """Return the shared database handle, creating the client on first use.

    None means Mongo is disabled or unconfigured; callers fall back to the
    in-memory store.
    """
    global _mongo_client, _mongo_db
    if not settings.USE_MONGO:
        return None
    if _mongo_db is not None:
        return _mongo_db
    if not settings.MONGO_URI:
        logger.warning("USE_MONGO=true but MONGO_URI is not set")
        return None
    _mongo_client = AsyncIOMotorClient(settings.MONGO_URI, **_client_options(settings.MONGO_URI))
    _mongo_db = _mongo_client[settings.MONGO_DB]
    logger.info(f"Mongo client created for database {settings.MONGO_DB}")
    return _mongo_db


def get_users_collection() -> Optional[AsyncIOMotorCollection]:
    db = get_mongo_db()
    return None if db is None else db[USERS_COLLECTION]


def close_mongo_client() -> None:
    global _mongo_client, _mongo_db
    if _mongo_client is not None:
        _mongo_client.close()
    _mongo_client = None
    _mongo_db = None


async def ping_mongo() -> bool:
    db = get_mongo_db()
    if db is None:
        return False
    await db.command({"ping": 1})
    return True


async def init_mongo_indexes() -> bool:
    """Create the unique user indexes, waiting out primary election on startup."""
    users = get_users_collection()
    if users is None:
        return False
    for attempt in range(1, INDEX_ATTEMPTS + 1):
        try:
            await ping_mongo()
            for field, name in USER_INDEXES:
                await users.create_index(field, unique=True, name=name)
            return True
        except Exception as e:
            wait_s = min(2 ** attempt, 15)
            logger.warning(f"Mongo not ready (attempt {attempt}): {e}; retrying in {wait_s}s")
            await asyncio.sleep(wait_s)
    logger.error("Mongo index initialization failed after retries")
    return False
