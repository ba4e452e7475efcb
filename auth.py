"""Bearer-token authentication and role checks.

Access tokens carry ``{id, email, role, type, exp}``; refresh tokens carry
``{id, type, exp}`` and may be signed with a separate secret. A token alone
is never trusted: the user it names is looked up on every request, so a
deleted or demoted account loses access on the next call.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict
from pymongo.database import Database

from config import Settings
from errors import Forbidden, Unauthenticated
from schemas import Role

logger = structlog.get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


class Principal(BaseModel):
    """The authenticated caller, passed explicitly to every protected operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: Role = "user"
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def principal_from_user(user: Dict[str, Any]) -> Principal:
    return Principal(
        id=str(user["_id"]),
        email=user["email"],
        role=user.get("role") or "user",
        name=user.get("name"),
    )


class AuthGate:
    def __init__(self, settings: Settings, db: Database):
        self.settings = settings
        self.db = db
        self.pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=settings.bcrypt_rounds,
        )

    # -- passwords -----------------------------------------------------------

    def hash_password(self, password: str) -> str:
        return self.pwd_context.hash(password)

    def verify_password(self, plain: str, hashed: Optional[str]) -> bool:
        if not hashed:
            return False
        return self.pwd_context.verify(plain, hashed)

    # -- tokens --------------------------------------------------------------

    def _encode(self, claims: Dict[str, Any], secret: str, minutes: int) -> str:
        to_encode = dict(claims)
        to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        return jwt.encode(to_encode, secret, algorithm=self.settings.jwt_algorithm)

    def create_access_token(self, user: Dict[str, Any]) -> str:
        claims = {
            "id": str(user["_id"]),
            "email": user["email"],
            "role": user.get("role") or "user",
            "type": ACCESS,
        }
        return self._encode(claims, self.settings.jwt_secret, self.settings.access_token_expire_minutes)

    def create_refresh_token(self, user: Dict[str, Any]) -> str:
        claims = {"id": str(user["_id"]), "type": REFRESH}
        return self._encode(claims, self.settings.refresh_secret, self.settings.refresh_token_expire_minutes)

    def decode(self, token: str, kind: str = ACCESS) -> Dict[str, Any]:
        secret = self.settings.jwt_secret if kind == ACCESS else self.settings.refresh_secret
        try:
            payload = jwt.decode(token, secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError:
            raise Unauthenticated("Invalid token")
        if payload.get("type") != kind or not payload.get("id"):
            raise Unauthenticated("Invalid token")
        return payload

    def _load_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.db["user"].find_one({"_id": ObjectId(user_id)})
        except InvalidId:
            return None

    # -- request gate --------------------------------------------------------

    @staticmethod
    def token_from_header(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    def authenticate(self, authorization: Optional[str]) -> Principal:
        token = self.token_from_header(authorization)
        if not token:
            raise Unauthenticated("Access denied. No token provided.")
        return self.principal_for_token(token)

    def principal_for_token(self, token: str) -> Principal:
        payload = self.decode(token, ACCESS)
        user = self._load_user(payload["id"])
        if not user:
            logger.info("Token for unknown user rejected", user_id=payload["id"])
            raise Unauthenticated("Invalid token - User not found")
        return principal_from_user(user)

    def login(self, email: str, password: str) -> Tuple[str, str, Dict[str, Any]]:
        user = self.db["user"].find_one({"email": email.lower()})
        if not user or not self.verify_password(password, user.get("password_hash")):
            logger.info("Login rejected", email=email)
            raise Unauthenticated("Invalid credentials")
        now = datetime.now(timezone.utc)
        self.db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
        user["last_login"] = now
        logger.info("User logged in", user_id=str(user["_id"]))
        return self.create_access_token(user), self.create_refresh_token(user), user

    def refresh(self, refresh_token: str) -> Tuple[str, Dict[str, Any]]:
        """Exchange a refresh token for a new access token.

        Refresh tokens are not rotated and there is no revocation list, so a
        leaked refresh token stays usable until it expires.
        """
        try:
            payload = self.decode(refresh_token, REFRESH)
        except Unauthenticated:
            raise Unauthenticated("Invalid or expired refresh token")
        user = self._load_user(payload["id"])
        if not user:
            raise Unauthenticated("Invalid or expired refresh token")
        return self.create_access_token(user), user

    @staticmethod
    def require_admin(principal: Principal) -> Principal:
        if not principal.is_admin:
            raise Forbidden("Access denied. Admin privileges required.")
        return principal


class DebugAuthGate(AuthGate):
    """Development gate that treats every request as the debug admin."""

    debug_principal = Principal(id="debug-admin-id", email="admin@example.com", role="admin", name="Debug Admin")

    def authenticate(self, authorization: Optional[str]) -> Principal:
        return self.debug_principal


def build_auth_gate(settings: Settings, db: Database) -> AuthGate:
    if settings.auth_debug_bypass:
        logger.warning("Authentication bypass enabled; every request is treated as admin")
        return DebugAuthGate(settings, db)
    return AuthGate(settings, db)


# ----------------------------------------------------------------------------
# FastAPI dependencies
# ----------------------------------------------------------------------------

def get_auth(request: Request) -> AuthGate:
    return request.app.state.auth


def current_principal(request: Request, auth: AuthGate = Depends(get_auth)) -> Principal:
    return auth.authenticate(request.headers.get("Authorization"))


def admin_principal(principal: Principal = Depends(current_principal)) -> Principal:
    return AuthGate.require_admin(principal)
