# auth.py
import os
import uuid
from typing import Optional

import redis
from fastapi import Depends, HTTPException, Request, Response, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from db import get_db, User
from cache import get_redis, set_session, get_session, SESSION_TTL_SECONDS

# --- Config ---
SESSION_COOKIE_NAME = "jyotish_session"
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "").strip().lower() in ("1", "true", "yes", "y", "t")
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


# --- Password helpers ---
def _bcrypt_input(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def get_password_hash(password: str) -> str:
    return pwd_ctx.hash(_bcrypt_input(password))


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_ctx.verify(_bcrypt_input(plain_password), hashed_password)
    except ValueError:
        return False


# --- Sessions ---
def create_session(r: redis.Redis, user_id: int) -> str:
    session_id = str(uuid.uuid4())
    set_session(r, user_id, session_id)
    return session_id


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        httponly=True,
        secure=SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
        max_age=SESSION_TTL_SECONDS,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def session_id_from_request(request: Request) -> Optional[str]:
    """Cookie first; API clients may send `Authorization: Bearer <session id>`."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if sid:
        return sid
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


# --- FastAPI dependencies ---
def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
    r: redis.Redis = Depends(get_redis),
) -> Optional[User]:
    sid = session_id_from_request(request)
    if not sid:
        return None
    user_id = get_session(r, sid)
    if not user_id:
        return None
    return db.get(User, user_id)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user
