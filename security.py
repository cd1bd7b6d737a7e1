import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from bson.objectid import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import get_settings
from database import USERS, get_db
from errors import AuthenticationError, PermissionDeniedError

PBKDF2_ITERATIONS = 260_000
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    try:
        _, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def validate_password(password: Optional[str]) -> List[str]:
    """Returns the list of problems with a password; empty when acceptable."""
    if not password:
        return ["Password is required"]
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Password cannot be longer than {PASSWORD_MAX_LENGTH} characters")
    return problems


def create_token(payload: dict) -> str:
    settings = get_settings()
    exp = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expires_days)
    to_encode = {
        **payload,
        "exp": exp,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired. Please login again.")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token. Please login again.")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access denied. No token provided.")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token. Please login again.")
    user = db[USERS].find_one({"_id": ObjectId(user_id)}, {"passwordHash": 0})
    if not user:
        raise AuthenticationError("Token is no longer valid. User not found.")
    if not user.get("isActive", True):
        raise AuthenticationError("User account is deactivated.")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("isAdmin"):
        raise PermissionDeniedError()
    return user
