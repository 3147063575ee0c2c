from fastapi import APIRouter, Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.orm import Session
from servixing.db.session import get_db
from servixing.schemas.auth import LoginRequest, TokenPair
from servixing.models.user import User
from servixing.core.errors import RateLimitError
from servixing.core.security import verify_password, create_access_token, create_refresh_token, decode_token
from servixing.api.deps import Principal, client_ip, get_current_principal, get_rate_limiter
from servixing.services.rate_limit import RateLimiter

router = APIRouter(tags=["auth"])


@router.post("/auth/login", response_model=TokenPair)
def login(body: LoginRequest, req: Request, db: Session = Depends(get_db), limiter: RateLimiter = Depends(get_rate_limiter)):
    if not limiter.hit(f"login:{client_ip(req)}"):
        raise RateLimitError()
    user = db.query(User).filter(User.email == body.email.strip().lower()).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenPair(
        access_token=create_access_token(user.id, user.role),
        refresh_token=create_refresh_token(user.id, user.role),
    )


@router.post("/auth/refresh", response_model=TokenPair)
def refresh(refresh_token: str, db: Session = Depends(get_db)):
    try:
        payload = decode_token(refresh_token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return TokenPair(
        access_token=create_access_token(user.id, user.role),
        refresh_token=create_refresh_token(user.id, user.role),
    )


@router.get("/auth/me")
def me(principal: Principal = Depends(get_current_principal)):
    return {
        "id": principal.user_id,
        "email": principal.email,
        "role": principal.role.value,
    }
