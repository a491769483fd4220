from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_google_client, get_token_service, require_admin
from app.db.session import get_db
from app.models.user import User
from app.schemas.oauth import AuthorizeOut, LoginOut, OAuthAccountOut, TokenRefreshOut, UserOut
from app.services.auth.tokens import TokenService
from app.services.oauth.google import GoogleOAuthClient
from app.services.oauth.service import OAuthService
from app.services.oauth.state import generate_state_token


router = APIRouter(prefix="/oauth", tags=["oauth"])


def _service(db: Session, google: GoogleOAuthClient) -> OAuthService:
    return OAuthService(db, google=google)


@router.get("/accounts", response_model=list[OAuthAccountOut])
def linked_accounts(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    google: GoogleOAuthClient = Depends(get_google_client),
):
    return _service(db, google).get_linked_accounts(user.id)


@router.get("/statistics")
def oauth_statistics(
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
    google: GoogleOAuthClient = Depends(get_google_client),
) -> dict:
    return _service(db, google).get_oauth_statistics()


@router.get("/{provider}/authorize", response_model=AuthorizeOut)
def authorize(
    provider: str,
    db: Session = Depends(get_db),
    google: GoogleOAuthClient = Depends(get_google_client),
):
    """Start sign-in. The state token is self-contained; nothing is stored."""
    state = generate_state_token(provider)
    url = _service(db, google).build_authorization_url(provider, state)
    return AuthorizeOut(authorization_url=url, state=state)


@router.get("/{provider}/link", response_model=AuthorizeOut)
def authorize_link(
    provider: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    google: GoogleOAuthClient = Depends(get_google_client),
):
    state = generate_state_token(provider, user_id=user.id, linking_mode=True)
    url = _service(db, google).build_authorization_url(provider, state)
    return AuthorizeOut(authorization_url=url, state=state)


@router.get("/{provider}/callback", response_model=LoginOut)
def callback(
    provider: str,
    code: str = Query(""),
    state: str = Query(""),
    db: Session = Depends(get_db),
    google: GoogleOAuthClient = Depends(get_google_client),
    tokens: TokenService = Depends(get_token_service),
):
    result = _service(db, google).complete_callback(code, state, provider)
    db.commit()
    return LoginOut(
        access_token=tokens.issue(result.user.id, result.user.role),
        user=UserOut.model_validate(result.user),
        linked=result.linked,
    )


@router.post("/{provider}/refresh", response_model=TokenRefreshOut)
def refresh_token(
    provider: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    google: GoogleOAuthClient = Depends(get_google_client),
):
    account = _service(db, google).refresh_account_token(user.id, provider)
    db.commit()
    return TokenRefreshOut(provider=provider, access_token=account.access_token)


@router.delete("/{provider}", status_code=204)
def unlink(
    provider: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    google: GoogleOAuthClient = Depends(get_google_client),
) -> None:
    _service(db, google).unlink_account(user.id, provider)
    db.commit()
