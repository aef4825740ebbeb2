from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from config import settings
from db.database import get_db
from db.models import User

security = HTTPBearer(auto_error=False)

DEFAULT_COOKIE_NAME = "learning_plan_session"
# bcrypt only looks at the first 72 bytes of a password.
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class SessionClaims:
    user_id: int
    token_version: int


def normalize_username(username: str) -> str:
    return " ".join((username or "").strip().split()).lower()


def hash_password(password: str) -> str:
    raw = (password or "").encode()
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    raw = (password or "").encode()
    if not hashed or len(raw) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(raw, hashed.encode())


def session_cookie_name() -> str:
    return (settings.AUTH_COOKIE_NAME or "").strip() or DEFAULT_COOKIE_NAME


def _session_ttl() -> timedelta:
    return timedelta(hours=max(int(settings.JWT_EXPIRY_HOURS), 1))


def create_token(user_id: int, token_version: int = 0) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "tv": int(token_version or 0),
        "iat": issued,
        "exp": issued + _session_ttl(),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def read_claims(token: str) -> SessionClaims:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid session token")
    try:
        return SessionClaims(user_id=int(payload["sub"]), token_version=int(payload.get("tv", 0)))
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Invalid session token")


def issue_session(response: Response, user: User) -> str:
    """Mint a token for the user and mirror it into the session cookie."""
    token = create_token(user.id, token_version=user.token_version)
    samesite = (settings.AUTH_COOKIE_SAMESITE or "lax").strip().lower()
    response.set_cookie(
        key=session_cookie_name(),
        value=token,
        httponly=bool(settings.AUTH_COOKIE_HTTPONLY),
        secure=bool(settings.AUTH_COOKIE_SECURE),
        samesite=samesite if samesite in {"strict", "lax", "none"} else "lax",  # type: ignore[arg-type]
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
        max_age=int(_session_ttl().total_seconds()),
    )
    return token


def end_session(response: Response, db: Session, user: User | None) -> None:
    """Drop the cookie and, for a known user, revoke every token issued so far."""
    response.delete_cookie(
        key=session_cookie_name(),
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
    )
    if user is not None:
        user.token_version = int(user.token_version or 0) + 1
        db.commit()


def _presented_token(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    # An explicit bearer header wins over the cookie.
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(session_cookie_name()) or None


def _resolve_user(db: Session, token: str) -> User:
    claims = read_claims(token)
    user = db.query(User).filter(User.id == claims.user_id).first()
    if not user:
        raise _unauthorized("User not found")
    if claims.token_version != int(user.token_version or 0):
        raise _unauthorized("Session invalidated. Please sign in again.")
    return user


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = _presented_token(request, credentials)
    if not token:
        raise _unauthorized("Not authenticated")
    user = _resolve_user(db, token)
    request.state.user_id = user.id
    return user


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User | None:
    token = _presented_token(request, credentials)
    if not token:
        return None
    try:
        return _resolve_user(db, token)
    except HTTPException:
        return None
