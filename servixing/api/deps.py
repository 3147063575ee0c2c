from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from servixing.db.session import get_db
from servixing.core.security import decode_token
from servixing.models.enums import Role
from servixing.models.user import User
from servixing.core.errors import RateLimitError
from servixing.services.rate_limit import RateLimiter, NullRateLimiter

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN, Role.SUPER_ADMIN)


def get_current_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    try:
        role = Role(user.role)
    except ValueError:
        raise HTTPException(status_code=403, detail="Forbidden")
    return Principal(user_id=user.id, email=user.email, role=role)


def require_roles(*roles: Role):
    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal
    return _guard


require_admin = require_roles(Role.ADMIN, Role.SUPER_ADMIN)


def get_rate_limiter(request: Request) -> RateLimiter:
    return getattr(request.app.state, "rate_limiter", None) or NullRateLimiter()


def client_ip(req: Request) -> str:
    forwarded = req.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return req.client.host if req.client else "anonymous"


def rate_limit(scope: str, limit: int, window_seconds: int):
    """Dependency that spends one attempt of ``scope`` for the caller's IP."""
    def _guard(req: Request, limiter: RateLimiter = Depends(get_rate_limiter)) -> None:
        if not limiter.hit(f"{scope}:{client_ip(req)}", limit=limit, window_seconds=window_seconds):
            raise RateLimitError("Too many requests")
    return _guard
