import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

DEFAULT_SECRET = "devsecret-change-me-in-production"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_SECRET)
JWT_ALGO = "HS256"
JWT_EXPIRES_HOURS = float(os.getenv("JWT_EXPIRES_HOURS", "24"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

if JWT_SECRET == DEFAULT_SECRET:
    logger.warning("JWT_SECRET is not set, using the development secret")

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "isAdmin": bool(user.get("isAdmin", False)),
    }


def create_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    issued = datetime.now(timezone.utc)
    exp = issued + (expires_delta if expires_delta is not None else timedelta(hours=JWT_EXPIRES_HOURS))
    to_encode = {
        "userId": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "isAdmin": bool(user.get("isAdmin", False)),
        "iat": issued,
        "exp": exp,
    }
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=401,
            detail="Token expired",
            headers={"WWW-Authenticate": 'Bearer error="invalid_token", error_description="expired"'},
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": 'Bearer error="invalid_token"'},
        )


async def get_token_claims(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="No token, authorization denied",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = decode_token(credentials.credentials)
    if not claims.get("userId"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return claims


async def require_admin(claims: dict = Depends(get_token_claims)) -> dict:
    if claims.get("isAdmin") is not True:
        raise HTTPException(status_code=403, detail="Admin access required")
    return claims
