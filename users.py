"""User accounts: registration, profile and address book.

Every write goes through the `User` schema so the single-default-address
rule is applied on each save.
"""

from typing import Any, Dict, List, Optional

import structlog
from pymongo.database import Database

from auth import AuthGate, Principal
from database import create_document, doc_to_public, oid
from errors import Conflict, NotFound
from schemas import Address, User, utcnow

logger = structlog.get_logger(__name__)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """The short user shape returned next to tokens."""
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role") or "user",
    }


class UserService:
    def __init__(self, db: Database, auth: AuthGate):
        self.db = db
        self.auth = auth

    def _load(self, user_id: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"_id": oid(user_id, "User")})
        if not user:
            raise NotFound("User not found")
        return user

    def _save(self, user: Dict[str, Any]) -> Dict[str, Any]:
        fields = {k: v for k, v in user.items() if k in User.model_fields}
        validated = User(**fields).model_dump()
        validated["updated_at"] = utcnow()
        self.db["user"].update_one({"_id": user["_id"]}, {"$set": validated})
        user.update(validated)
        return doc_to_public(user)

    def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        role: str = "user",
    ) -> Dict[str, Any]:
        email = email.lower()
        if self.db["user"].find_one({"email": email}):
            raise Conflict("User already exists")
        user = User(
            name=name,
            email=email,
            password_hash=self.auth.hash_password(password),
            phone=phone,
            role=role if role in ("user", "admin") else "user",
        )
        uid = create_document(self.db, "user", user)
        logger.info("User registered", user_id=uid, role=user.role)
        return self._load(uid)

    def profile(self, principal: Principal) -> Dict[str, Any]:
        return doc_to_public(self._load(principal.id))

    def update_profile(
        self,
        principal: Principal,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        addresses: Optional[List[Address]] = None,
    ) -> Dict[str, Any]:
        user = self._load(principal.id)
        if name:
            user["name"] = name
        if phone:
            user["phone"] = phone
        if addresses is not None:
            user["addresses"] = [a.model_dump() for a in addresses]
        return self._save(user)

    def add_address(self, principal: Principal, address: Address) -> Dict[str, Any]:
        user = self._load(principal.id)
        addresses = user.get("addresses") or []
        if not addresses:
            address.is_default = True
        elif address.is_default:
            for existing in addresses:
                existing["is_default"] = False
        addresses.append(address.model_dump())
        user["addresses"] = addresses
        return self._save(user)

    def set_default_address(self, principal: Principal, address_id: str) -> Dict[str, Any]:
        user = self._load(principal.id)
        addresses = user.get("addresses") or []
        if not any(a["id"] == address_id for a in addresses):
            raise NotFound("Address not found")
        for address in addresses:
            address["is_default"] = address["id"] == address_id
        return self._save(user)

    def ensure_admin(self, email: str, password: str) -> None:
        email = email.lower()
        if self.db["user"].find_one({"email": email}):
            return
        admin = User(name="Admin", email=email, password_hash=self.auth.hash_password(password), role="admin")
        create_document(self.db, "user", admin)
        logger.info("Seeded admin account", email=email)
