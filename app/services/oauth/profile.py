"""Normalisation of identity-provider profiles into one shape."""
from dataclasses import dataclass, field
from datetime import datetime, timezone

from app.core.errors import ValidationError

SUPPORTED_PROVIDERS = ("google", "github", "facebook")


@dataclass
class OAuthProfile:
    provider_user_id: str
    email: str
    display_name: str
    picture: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    email_verified: bool = False
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def is_valid_provider(provider) -> bool:
    return isinstance(provider, str) and provider.lower() in SUPPORTED_PROVIDERS


def extract_email(profile: dict) -> str | None:
    emails = profile.get("emails")
    if isinstance(emails, list) and emails:
        first = emails[0]
        value = first.get("value") if isinstance(first, dict) else first
        if value:
            return str(value)
    raw = profile.get("_json") or {}
    return raw.get("email") or profile.get("email") or None


def extract_display_name(profile: dict) -> str:
    if profile.get("displayName"):
        return profile["displayName"]
    raw = profile.get("_json") or {}
    if raw.get("name"):
        return raw["name"]
    name = profile.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    if isinstance(name, dict):
        full = f"{name.get('givenName') or ''} {name.get('familyName') or ''}".strip()
        if full:
            return full
    given = f"{profile.get('given_name') or ''} {profile.get('family_name') or ''}".strip()
    return given or "User"


def extract_picture(profile: dict) -> str | None:
    photos = profile.get("photos")
    if isinstance(photos, list) and photos:
        first = photos[0]
        value = first.get("value") if isinstance(first, dict) else first
        if value:
            return str(value)
    raw = profile.get("_json") or {}
    return raw.get("picture") or profile.get("picture") or None


def extract_provider_id(profile: dict) -> str | None:
    value = profile.get("id")
    if value:
        return str(value)
    raw = profile.get("_json") or {}
    sub = raw.get("sub") or profile.get("sub")
    return str(sub) if sub else None


def normalize_oauth_data(
    profile: dict,
    access_token: str | None = None,
    refresh_token: str | None = None,
) -> OAuthProfile:
    email = extract_email(profile)
    provider_user_id = extract_provider_id(profile)
    if not email or not provider_user_id:
        raise ValidationError(errors=["Missing required OAuth data"])
    raw = profile.get("_json") or {}
    verified = profile.get("verified_email", profile.get("email_verified", raw.get("email_verified", False)))
    return OAuthProfile(
        provider_user_id=provider_user_id,
        email=email.strip().lower(),
        display_name=extract_display_name(profile),
        picture=extract_picture(profile),
        access_token=access_token,
        refresh_token=refresh_token,
        email_verified=bool(verified),
    )
