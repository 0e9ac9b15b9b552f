from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from fastapi import Depends, HTTPException, Request
from app.core_settings import get_settings
from app.domain.errors import CheckoutError
from app.infrastructure.payment_gateway import PaymentGateway, StripeGateway
from app.infrastructure.rate_limit import RateLimiter
from app.security import decode_access_token
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "

@dataclass
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

def get_current_user_optional(request: Request) -> Optional[CurrentUser]:
    """Resolve the caller from a bearer token; None means guest."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token_data = decode_access_token(auth_header.split(" ", 1)[1])
    if not token_data or not token_data.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = CurrentUser(id=str(token_data["sub"]), role=token_data.get("role", "user"))
    set_request_context(user_id=user.id)
    return user

def get_current_user(user: Optional[CurrentUser] = Depends(get_current_user_optional)) -> CurrentUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user

def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin required")
    return user

def get_payment_gateway() -> PaymentGateway:
    return StripeGateway(get_settings().STRIPE_SECRET_KEY)

@lru_cache
def get_rate_limiter() -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        redis_url=settings.REDIS_URL,
    )

def rate_limited(
    request: Request,
    user: Optional[CurrentUser] = Depends(get_current_user_optional),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    identifier = user.id if user else (request.client.host if request.client else "anonymous")
    if not limiter.hit(f"{request.url.path}:{identifier}"):
        raise HTTPException(status_code=429, detail="Too many requests")

def to_http(error: CheckoutError) -> HTTPException:
    return HTTPException(
        status_code=error.status_code,
        detail={"success": False, "code": error.code, "error": error.message},
    )
