from typing import Any, Dict, Optional

import bcrypt
import structlog
from fastapi import Depends, Header, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from errors import ForbiddenError, UnauthorizedError

logger = structlog.get_logger()

TOKEN_COOKIE = "authToken"
TOKEN_SALT = "auth-token-v1"
ADMIN_ROLE = "admin"
USER_ROLE = "user"


# -----------------------------
# Passwords
# -----------------------------

def _pw_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_pw_bytes(password), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_pw_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        return False


# -----------------------------
# Tokens
# -----------------------------

def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt=TOKEN_SALT)


def create_token(session: Dict[str, Any], secret: str) -> str:
    return _serializer(secret).dumps(session)


def verify_token(token: str, secret: str, max_age: int) -> Dict[str, Any]:
    try:
        payload = _serializer(secret).loads(token, max_age=max_age)
    except SignatureExpired as e:
        raise UnauthorizedError("Token expired") from e
    except BadSignature as e:
        raise UnauthorizedError("Invalid token") from e
    if not isinstance(payload, dict) or not payload.get("id"):
        raise UnauthorizedError("Invalid token")
    return payload


def session_for(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "full_name": user.get("full_name"),
        "role": user.get("role", USER_ROLE),
    }


# -----------------------------
# Guards (FastAPI dependencies)
# -----------------------------

def _read_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    token = request.cookies.get(TOKEN_COOKIE)
    if token:
        return token
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def get_current_user(request: Request, authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    token = _read_token(request, authorization)
    if not token:
        raise UnauthorizedError("Missing token")
    settings = request.app.state.settings
    try:
        return verify_token(token, settings.auth_secret, settings.token_max_age)
    except UnauthorizedError as e:
        logger.warning("token_rejected", reason=e.message, path=request.url.path)
        raise


def get_optional_user(request: Request, authorization: Optional[str] = Header(default=None)) -> Optional[Dict[str, Any]]:
    token = _read_token(request, authorization)
    if not token:
        return None
    settings = request.app.state.settings
    try:
        return verify_token(token, settings.auth_secret, settings.token_max_age)
    except UnauthorizedError:
        return None


def get_current_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != ADMIN_ROLE:
        raise ForbiddenError("Admin access required")
    return user


def is_admin(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user) and user.get("role") == ADMIN_ROLE
