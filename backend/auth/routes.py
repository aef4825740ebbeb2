from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from auth.models import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from auth.utils import (
    end_session,
    get_current_user,
    get_optional_user,
    hash_password,
    issue_session,
    normalize_username,
    verify_password,
)
from config import settings
from db.database import get_db
from db.models import User, UserSettings
from utils.datetime_utils import resolve_timezone

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    normalized_username = normalize_username(req.username)
    if len(normalized_username) < 3:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username must be at least 3 characters")

    if db.query(User).filter(User.username_normalized == normalized_username).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")

    try:
        password_hash = hash_password(req.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    user = User(
        username=" ".join(req.username.strip().split()),
        username_normalized=normalized_username,
        password_hash=password_hash,
        display_name=req.display_name,
        token_version=0,
    )
    db.add(user)
    db.flush()

    tz_name = (req.timezone or "").strip()
    db.add(
        UserSettings(
            user_id=user.id,
            timezone=resolve_timezone(tz_name).key if tz_name else settings.DEFAULT_TIMEZONE,
        )
    )
    db.commit()
    return TokenResponse(access_token=issue_session(response, user))


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, response: Response, db: Session = Depends(get_db)):
    normalized_username = normalize_username(req.username)
    user = db.query(User).filter(User.username_normalized == normalized_username).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(access_token=issue_session(response, user))


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(
    response: Response,
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    end_session(response, db, user)
    return {"status": "ok"}
