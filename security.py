import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Header
from pymongo.database import Database

from database import get_db, is_obj_id, to_obj_id
from errors import AuthenticationFailed, NotFound, PermissionDenied
from schemas import ROLE_ADMIN

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = 7
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def create_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS))
    return jwt.encode({"_id": str(user_id), "exp": expire}, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationFailed("Invalid token")


# Dependencies

def require_sign_in(authorization: Optional[str] = Header(None)) -> dict:
    """Verify the raw token in the Authorization header and return the identity `{_id}`."""
    if not authorization:
        raise AuthenticationFailed("Authorization header required")
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    payload = decode_token(token)
    user_id = payload.get("_id")
    if not user_id:
        raise AuthenticationFailed("Invalid token")
    return {"_id": user_id}


def require_admin(identity: dict = Depends(require_sign_in), db: Database = Depends(get_db)) -> dict:
    user = None
    if is_obj_id(identity["_id"]):
        user = db["user"].find_one({"_id": to_obj_id(identity["_id"])})
    if not user:
        raise NotFound("User not found")
    if user.get("role") != ROLE_ADMIN:
        raise PermissionDenied("Insufficient permissions. Admin access required.")
    return user
