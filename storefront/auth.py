from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import APIRouter, Cookie, Depends, Response
from sqlalchemy import insert, select
from sqlalchemy.engine import Connection

from storefront import config
from storefront.database import get_db, users, utcnow
from storefront.errors import AccessDenied, AuthenticationRequired, InvalidRequest
from storefront.logger import get_logger
from storefront.schemas import LoginRequest, MessageResponse, RegisterRequest, User, UserResponse

_logger = get_logger(__name__)

router = APIRouter(prefix="/_api/auth", tags=["auth"])


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_session_token(user_id: int) -> str:
    payload = {
        "sub": str(user_id),
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(days=config.SESSION_TTL_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def set_session_cookie(response: Response, user_id: int) -> None:
    response.set_cookie(
        config.SESSION_COOKIE_NAME,
        create_session_token(user_id),
        max_age=config.SESSION_TTL_DAYS * 24 * 3600,
        httponly=True,
        samesite="lax",
        secure=config.SESSION_COOKIE_SECURE,
    )


def _user_id_from_token(token: str) -> Optional[int]:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
        return int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError):
        return None


def _load_user(conn: Connection, user_id: int) -> Optional[User]:
    row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    return User.from_row(row) if row else None


def get_optional_user(
    conn: Connection = Depends(get_db),
    session: Optional[str] = Cookie(None, alias=config.SESSION_COOKIE_NAME),
) -> Optional[User]:
    if not session:
        return None
    user_id = _user_id_from_token(session)
    if user_id is None:
        return None
    return _load_user(conn, user_id)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationRequired()
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        _logger.info(f"Access denied for user {user.id} with role {user.role}")
        raise AccessDenied()
    return user


@router.post("/login_with_password", response_model=UserResponse)
def login(body: LoginRequest, response: Response, conn: Connection = Depends(get_db)):
    row = conn.execute(select(users).where(users.c.email == body.email)).mappings().first()
    if not row or not verify_password(body.password, row["password_hash"]):
        raise AuthenticationRequired("Invalid credentials")
    set_session_cookie(response, row["id"])
    _logger.info(f"User {row['id']} logged in")
    return UserResponse(user=User.from_row(row))


@router.post("/register_with_password", response_model=UserResponse)
def register(body: RegisterRequest, response: Response, conn: Connection = Depends(get_db)):
    existing = conn.execute(select(users.c.id).where(users.c.email == body.email)).first()
    if existing:
        raise InvalidRequest("Email already registered")
    now = utcnow()
    result = conn.execute(
        insert(users).values(
            email=body.email,
            display_name=body.display_name,
            role="user",
            password_hash=hash_password(body.password),
            created_at=now,
            updated_at=now,
        )
    )
    conn.commit()
    user = _load_user(conn, result.inserted_primary_key[0])
    set_session_cookie(response, user.id)
    _logger.info(f"Registered user {user.id}")
    return UserResponse(user=user)


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(config.SESSION_COOKIE_NAME, httponly=True, samesite="lax")
    return MessageResponse(success=True, message="Logged out successfully")


@router.get("/session", response_model=UserResponse)
def session(user: User = Depends(get_current_user)):
    return UserResponse(user=user)
