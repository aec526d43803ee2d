"""
User record storage.

MongoUserRepository is the production backend (Motor); MemoryUserRepository
keeps the same contract in process for local development without a Mongo
URI and for the test suite. Reads return plain dicts keyed by ``id`` with the
secret fields stripped unless ``include_secrets`` is requested.
"""
import logging
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from core.config import settings
from core.errors import Conflict, PersistenceError
from db.mongodb import get_users_collection

logger = logging.getLogger(__name__)

SECRET_FIELDS = ("password", "refresh_token")
SAFE_PROJECTION = {field: 0 for field in SECRET_FIELDS}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _strip_secrets(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in doc.items() if k not in SECRET_FIELDS}


def _identity_clauses(username: Optional[str], email: Optional[str]) -> list:
    clauses = []
    if username:
        clauses.append({"username": username})
    if email:
        clauses.append({"email": email})
    return clauses


class UserRepository:
    async def find_by_id(self, user_id: str, include_secrets: bool = False) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find_by_identity(self, username: Optional[str] = None, email: Optional[str] = None,
                               include_secrets: bool = False) -> Optional[Dict[str, Any]]:
        """Return the first user matching the username OR the email."""
        raise NotImplementedError

    async def create(self, doc: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def set_refresh_token(self, user_id: str, token: Optional[str]) -> None:
        raise NotImplementedError

    async def swap_refresh_token(self, user_id: str, expected: str, new: str) -> bool:
        """Replace the stored refresh token only if it still equals ``expected``."""
        raise NotImplementedError

    async def clear_refresh_token(self, user_id: str) -> None:
        await self.set_refresh_token(user_id, None)

    async def update_password(self, user_id: str, hashed_password: str) -> bool:
        raise NotImplementedError

    async def update_fields(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Set profile fields and return the updated record without secrets."""
        raise NotImplementedError


@contextmanager
def _translate_errors(action: str):
    try:
        yield
    except DuplicateKeyError as e:
        raise Conflict("User with this username or email already exists") from e
    except PyMongoError as e:
        logger.error(f"Mongo error while {action}: {e}")
        raise PersistenceError("Database operation failed") from e


class MongoUserRepository(UserRepository):
    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def _oid(user_id: str) -> Optional[ObjectId]:
        if isinstance(user_id, ObjectId):
            return user_id
        if not user_id or not ObjectId.is_valid(str(user_id)):
            return None
        return ObjectId(str(user_id))

    @staticmethod
    def _to_user(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        user = dict(doc)
        user["id"] = str(user.pop("_id"))
        return user

    async def find_by_id(self, user_id, include_secrets=False):
        oid = self._oid(user_id)
        if oid is None:
            return None
        projection = None if include_secrets else SAFE_PROJECTION
        with _translate_errors("reading user by id"):
            doc = await self.collection.find_one({"_id": oid}, projection)
        return self._to_user(doc)

    async def find_by_identity(self, username=None, email=None, include_secrets=False):
        clauses = _identity_clauses(username, email)
        if not clauses:
            return None
        projection = None if include_secrets else SAFE_PROJECTION
        with _translate_errors("reading user by identity"):
            doc = await self.collection.find_one({"$or": clauses}, projection)
        return self._to_user(doc)

    async def create(self, doc):
        now = _now()
        record = dict(doc)
        record.setdefault("refresh_token", None)
        record["created_at"] = now
        record["updated_at"] = now
        with _translate_errors("creating user"):
            result = await self.collection.insert_one(record)
        return str(result.inserted_id)

    async def set_refresh_token(self, user_id, token):
        oid = self._oid(user_id)
        if oid is None:
            return
        with _translate_errors("writing refresh token"):
            await self.collection.update_one(
                {"_id": oid},
                {"$set": {"refresh_token": token, "updated_at": _now()}},
            )

    async def swap_refresh_token(self, user_id, expected, new):
        oid = self._oid(user_id)
        if oid is None or not expected:
            return False
        with _translate_errors("rotating refresh token"):
            doc = await self.collection.find_one_and_update(
                {"_id": oid, "refresh_token": expected},
                {"$set": {"refresh_token": new, "updated_at": _now()}},
                projection={"_id": 1},
            )
        return doc is not None

    async def update_password(self, user_id, hashed_password):
        oid = self._oid(user_id)
        if oid is None:
            return False
        with _translate_errors("updating password"):
            result = await self.collection.update_one(
                {"_id": oid},
                {"$set": {"password": hashed_password, "updated_at": _now()}},
            )
        return result.matched_count > 0

    async def update_fields(self, user_id, fields):
        oid = self._oid(user_id)
        if oid is None:
            return None
        changes = {k: v for k, v in fields.items() if k not in SECRET_FIELDS}
        changes["updated_at"] = _now()
        with _translate_errors("updating user"):
            doc = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                projection=SAFE_PROJECTION,
                return_document=ReturnDocument.AFTER,
            )
        return self._to_user(doc)


class MemoryUserRepository(UserRepository):
    """Process-local user store with the same uniqueness rules as the Mongo indexes."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}

    def _view(self, doc: Optional[Dict[str, Any]], include_secrets: bool) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        copy = deepcopy(doc)
        return copy if include_secrets else _strip_secrets(copy)

    async def find_by_id(self, user_id, include_secrets=False):
        return self._view(self.users.get(str(user_id)), include_secrets)

    async def find_by_identity(self, username=None, email=None, include_secrets=False):
        clauses = _identity_clauses(username, email)
        for doc in self.users.values():
            if any(doc.get(k) == v for clause in clauses for k, v in clause.items()):
                return self._view(doc, include_secrets)
        return None

    async def create(self, doc):
        for existing in self.users.values():
            if existing.get("username") == doc.get("username") or existing.get("email") == doc.get("email"):
                raise Conflict("User with this username or email already exists")
        now = _now()
        user_id = str(ObjectId())
        record = deepcopy(doc)
        record.setdefault("refresh_token", None)
        record.update({"id": user_id, "created_at": now, "updated_at": now})
        self.users[user_id] = record
        return user_id

    async def set_refresh_token(self, user_id, token):
        doc = self.users.get(str(user_id))
        if doc is not None:
            doc["refresh_token"] = token
            doc["updated_at"] = _now()

    async def swap_refresh_token(self, user_id, expected, new):
        # No await between the compare and the set, so this is atomic on the loop
        doc = self.users.get(str(user_id))
        if doc is None or not expected or doc.get("refresh_token") != expected:
            return False
        doc["refresh_token"] = new
        doc["updated_at"] = _now()
        return True

    async def update_password(self, user_id, hashed_password):
        doc = self.users.get(str(user_id))
        if doc is None:
            return False
        doc["password"] = hashed_password
        doc["updated_at"] = _now()
        return True

    async def update_fields(self, user_id, fields):
        doc = self.users.get(str(user_id))
        if doc is None:
            return None
        email = fields.get("email")
        if email and any(u.get("email") == email and uid != str(user_id) for uid, u in self.users.items()):
            raise Conflict("User with this username or email already exists")
        doc.update({k: v for k, v in fields.items() if k not in SECRET_FIELDS})
        doc["updated_at"] = _now()
        return self._view(doc, include_secrets=False)


_user_repository: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    global _user_repository
    if _user_repository is not None:
        return _user_repository
    users = get_users_collection()
    if settings.USE_MONGO and users is not None:
        _user_repository = MongoUserRepository(users)
    else:
        logger.warning("Mongo not configured; using in-memory user store")
        _user_repository = MemoryUserRepository()
    return _user_repository
