import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db, oid

# Security/JWT setup
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(60 * 24)))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
MIN_PASSWORD_LENGTH = 6

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

PUBLIC_USER_FIELDS = ("name", "email", "address", "city", "state", "postal_code", "country", "is_admin")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "iat": issued,
        "exp": issued + timedelta(minutes=JWT_EXPIRES_MIN),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Not authenticated")


def public_user(user: dict) -> dict:
    """Session projection of a user document; never includes the password hash."""
    out = {"id": str(user["_id"])}
    for field in PUBLIC_USER_FIELDS:
        out[field] = user.get(field, False if field == "is_admin" else None)
    return out


def start_session(response: Response, user: dict) -> str:
    token = create_token(user)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=JWT_EXPIRES_MIN * 60,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )
    return token


def end_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, httponly=True, secure=COOKIE_SECURE, samesite="lax")


def _session_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE_NAME)


def get_current_user(request: Request,
                     credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                     db: Database = Depends(get_db)) -> dict:
    """The authenticated user document, from the session cookie or a bearer token."""
    token = _session_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(token)
    user_oid = oid(payload.get("sub"))
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def can_access_order(user: dict, order: dict) -> bool:
    return order.get("user_id") == str(user["_id"]) or bool(user.get("is_admin"))
