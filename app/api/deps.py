"""
Shared FastAPI dependencies: current user, admin guard, external clients.
"""
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ForbiddenError, UnauthorizedError
from app.db.session import get_db
from app.models.user import User
from app.services.auth.tokens import TokenService
from app.services.circuit_breaker import get_circuit_breaker
from app.services.oauth.google import GoogleOAuthClient, is_rejection
from app.services.payments.gateway import MidtransClient, is_business_rejection
from app.services.payments.service import PaymentService


@lru_cache
def get_token_service() -> TokenService:
    return TokenService()


@lru_cache
def get_midtrans_client() -> MidtransClient:
    return MidtransClient(
        server_key=settings.midtrans_server_key,
        is_production=settings.midtrans_is_production,
        timeout=settings.midtrans_timeout,
        breaker=get_circuit_breaker("midtrans", exclude=[is_business_rejection]),
    )


@lru_cache
def get_google_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        callback_url=settings.google_callback_url,
        timeout=settings.oauth_timeout,
        breaker=get_circuit_breaker("google_oauth", exclude=[is_rejection]),
    )


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: MidtransClient = Depends(get_midtrans_client),
) -> PaymentService:
    return PaymentService(
        db,
        gateway=gateway,
        server_key=settings.midtrans_server_key,
        expiry_minutes=settings.payment_expiry_minutes,
    )


def get_current_user(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing bearer token")
    claims = tokens.verify(authorization[7:].strip())
    user = db.get(User, claims["sub"])
    if user is None:
        raise UnauthorizedError("User no longer exists")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user
