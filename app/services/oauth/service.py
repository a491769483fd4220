"""
OAuthService — sign-in and account linking through identity providers.

Policy:
- one provider identity belongs to at most one local user
- a provider email that already belongs to another local user is a
  conflict; accounts are never merged or duplicated
- the last linked account cannot be unlinked (it is the only way to sign in)
"""
import logging
import re
import secrets
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, UnauthorizedError, UpstreamError, ValidationError
from app.models.oauth_account import OAuthAccount
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.oauth.google import GoogleOAuthClient
from app.services.oauth.profile import OAuthProfile, is_valid_provider, normalize_oauth_data
from app.services.oauth.state import OAuthState, validate_state_token

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    user: User
    account: OAuthAccount
    linked: bool  # True when an existing user linked a provider, False for sign-in


class OAuthService:
    def __init__(self, db: Session, google: GoogleOAuthClient | None = None):
        self.db = db
        self.google = google

    # ------------------------------------------------------------------
    # Provider flow
    # ------------------------------------------------------------------

    def _client_for(self, provider: str) -> GoogleOAuthClient:
        if not is_valid_provider(provider):
            raise ValidationError(errors=[f"Unsupported OAuth provider: {provider}"])
        if provider != "google" or self.google is None or not self.google.is_configured:
            raise ValidationError(errors=[f"OAuth provider {provider} is not configured"])
        return self.google

    def build_authorization_url(self, provider: str, state: str) -> str:
        return self._client_for(provider).build_auth_url(state)

    def handle_callback(self, code: str, state: str, provider: str = "google") -> tuple[OAuthProfile, OAuthState]:
        client = self._client_for(provider)
        oauth_state = validate_state_token(state, provider)
        if oauth_state is None:
            raise UnauthorizedError("Invalid or expired state token")
        if not code:
            raise ValidationError(errors=["Authorization code is required"])

        tokens = client.exchange_code(code)
        info = client.fetch_user_info(tokens["access_token"])
        profile = normalize_oauth_data(info, tokens["access_token"], tokens.get("refresh_token"))
        logger.info("oauth_callback_successful", extra={"provider": provider, "user_id": oauth_state.user_id})
        return profile, oauth_state

    def complete_callback(self, code: str, state: str, provider: str = "google") -> CallbackResult:
        profile, oauth_state = self.handle_callback(code, state, provider)
        if oauth_state.linking_mode:
            if not oauth_state.user_id:
                raise UnauthorizedError("Linking state carries no user")
            account = self.link_account(oauth_state.user_id, provider, profile)
            user = self.db.get(User, oauth_state.user_id)
            return CallbackResult(user=user, account=account, linked=True)
        user, account = self.login_or_register(provider, profile)
        return CallbackResult(user=user, account=account, linked=False)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _find_account(self, provider: str, provider_user_id: str) -> OAuthAccount | None:
        return (
            self.db.query(OAuthAccount)
            .filter(
                OAuthAccount.provider == provider,
                OAuthAccount.provider_user_id == provider_user_id,
            )
            .one_or_none()
        )

    def _refresh_tokens(self, account: OAuthAccount, profile: OAuthProfile) -> None:
        account.email = profile.email
        account.display_name = profile.display_name
        account.picture = profile.picture
        account.access_token = profile.access_token
        if profile.refresh_token:
            account.refresh_token = profile.refresh_token
        self.db.add(account)
        self.db.flush()

    def login_or_register(self, provider: str, profile: OAuthProfile) -> tuple[User, OAuthAccount]:
        account = self._find_account(provider, profile.provider_user_id)
        if account:
            self._refresh_tokens(account, profile)
            user = self.db.get(User, account.user_id)
            logger.info("oauth_login", extra={"provider": provider, "user_id": account.user_id})
            return user, account

        owner = self.db.query(User).filter(User.email == profile.email).one_or_none()
        if owner is not None:
            raise ConflictError(
                f"An account with this email already exists; sign in and link {provider} from your profile"
            )

        user = User(
            email=profile.email,
            username=self._unique_username(profile.email),
            full_name=profile.display_name,
            avatar=profile.picture,
            is_verified=profile.email_verified,
            role="student",
        )
        try:
            with self.db.begin_nested():
                self.db.add(user)
                self.db.flush()
                account = self._new_account(user.id, provider, profile)
        except IntegrityError:
            # concurrent first sign-in with the same identity
            account = self._find_account(provider, profile.provider_user_id)
            if account is None:
                raise ConflictError("An account with this email already exists")
            return self.db.get(User, account.user_id), account

        logger.info("oauth_user_registered", extra={"provider": provider, "user_id": user.id})
        AuditService(self.db).log(
            actor_type="user",
            actor_id=user.id,
            action="oauth_user_registered",
            entity_type="user",
            entity_id=user.id,
            payload={"provider": provider},
        )
        return user, account

    def link_account(self, user_id: str, provider: str, profile: OAuthProfile) -> OAuthAccount:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        account = self._find_account(provider, profile.provider_user_id)
        if account is not None:
            if account.user_id != user_id:
                raise ConflictError(f"This {provider} account is already linked to another user")
            self._refresh_tokens(account, profile)
            return account

        owner = self.db.query(User).filter(User.email == profile.email).one_or_none()
        if owner is not None and owner.id != user_id:
            raise ConflictError(f"The {provider} email belongs to another account")

        existing = (
            self.db.query(OAuthAccount)
            .filter(OAuthAccount.user_id == user_id, OAuthAccount.provider == provider)
            .one_or_none()
        )
        if existing is not None:
            raise ConflictError(f"A different {provider} account is already linked")

        try:
            with self.db.begin_nested():
                account = self._new_account(user_id, provider, profile)
        except IntegrityError:
            raise ConflictError(f"This {provider} account is already linked to another user")

        logger.info("oauth_account_linked", extra={"provider": provider, "user_id": user_id})
        AuditService(self.db).log(
            actor_type="user",
            actor_id=user_id,
            action="oauth_account_linked",
            entity_type="oauth_account",
            entity_id=account.id,
            payload={"provider": provider},
        )
        return account

    def get_account(self, user_id: str, provider: str) -> OAuthAccount:
        account = (
            self.db.query(OAuthAccount)
            .filter(OAuthAccount.user_id == user_id, OAuthAccount.provider == provider)
            .one_or_none()
        )
        if account is None:
            raise NotFoundError(f"{provider} account is not linked to this user")
        return account

    def refresh_account_token(self, user_id: str, provider: str) -> OAuthAccount:
        """Trade the stored refresh token for a new access token."""
        client = self._client_for(provider)
        account = self.get_account(user_id, provider)
        if not account.refresh_token:
            raise ValidationError(errors=[f"{provider} account has no refresh token"])

        tokens = client.refresh_access_token(account.refresh_token)
        if not tokens.get("access_token"):
            raise UpstreamError("Identity provider returned no access token")
        account.access_token = tokens["access_token"]
        if tokens.get("refresh_token"):
            account.refresh_token = tokens["refresh_token"]
        self.db.add(account)
        self.db.flush()
        logger.info("oauth_token_refreshed", extra={"provider": provider, "user_id": user_id})
        return account

    def unlink_account(self, user_id: str, provider: str) -> None:
        account = self.get_account(user_id, provider)

        linked = self.db.query(func.count(OAuthAccount.id)).filter(OAuthAccount.user_id == user_id).scalar()
        if linked <= 1:
            raise ConflictError("Cannot unlink the only linked account")

        self.db.delete(account)
        self.db.flush()
        logger.info("oauth_account_unlinked", extra={"provider": provider, "user_id": user_id})
        self._revoke(provider, account.access_token)
        AuditService(self.db).log(
            actor_type="user",
            actor_id=user_id,
            action="oauth_account_unlinked",
            entity_type="oauth_account",
            entity_id=account.id,
            payload={"provider": provider},
        )

    def get_linked_accounts(self, user_id: str) -> list[OAuthAccount]:
        return (
            self.db.query(OAuthAccount)
            .filter(OAuthAccount.user_id == user_id)
            .order_by(OAuthAccount.connected_at)
            .all()
        )

    def get_oauth_statistics(self) -> dict:
        rows = (
            self.db.query(OAuthAccount.provider, func.count(OAuthAccount.id))
            .group_by(OAuthAccount.provider)
            .all()
        )
        users = self.db.query(func.count(func.distinct(OAuthAccount.user_id))).scalar() or 0
        by_provider = {provider: count for provider, count in rows}
        return {
            "total_linked_accounts": sum(by_provider.values()),
            "users_with_oauth": users,
            "by_provider": by_provider,
        }

    def _revoke(self, provider: str, access_token: str | None) -> None:
        if not access_token or provider != "google" or self.google is None or not self.google.is_configured:
            return
        try:
            self.google.revoke_token(access_token)
        except UpstreamError as e:
            # the local link is already gone; a stale provider grant expires on its own
            logger.warning("oauth_token_revoke_failed", extra={"provider": provider, "error": e.message})

    def _new_account(self, user_id: str, provider: str, profile: OAuthProfile) -> OAuthAccount:
        account = OAuthAccount(
            user_id=user_id,
            provider=provider,
            provider_user_id=profile.provider_user_id,
            email=profile.email,
            display_name=profile.display_name,
            picture=profile.picture,
            access_token=profile.access_token,
            refresh_token=profile.refresh_token,
            connected_at=profile.connected_at,
        )
        self.db.add(account)
        self.db.flush()
        return account

    def _unique_username(self, email: str) -> str:
        base = re.sub(r"[^a-z0-9_]", "", email.split("@", 1)[0].lower()) or "user"
        candidate = base
        while self.db.query(User.id).filter(User.username == candidate).first() is not None:
            candidate = f"{base}{secrets.randbelow(100000)}"
        return candidate
