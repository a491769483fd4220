import pytest

from app.core.errors import ValidationError
from app.services.oauth.profile import (
    extract_display_name,
    extract_email,
    extract_picture,
    is_valid_provider,
    normalize_oauth_data,
)

GOOGLE_USERINFO = {
    "id": "10987654321",
    "email": "Siti.Rahma@Example.com",
    "verified_email": True,
    "name": "Siti Rahma",
    "given_name": "Siti",
    "family_name": "Rahma",
    "picture": "https://lh3.googleusercontent.com/a/photo",
}


class TestExtractors:
    def test_email_prefers_emails_list(self):
        assert extract_email({"emails": [{"value": "a@example.com"}], "email": "b@example.com"}) == "a@example.com"
        assert extract_email({"_json": {"email": "c@example.com"}}) == "c@example.com"
        assert extract_email({}) is None

    def test_display_name_fallbacks(self):
        assert extract_display_name({"displayName": "Budi"}) == "Budi"
        assert extract_display_name({"_json": {"name": "Ani"}}) == "Ani"
        assert extract_display_name({"name": {"givenName": "Dewi", "familyName": "Lestari"}}) == "Dewi Lestari"
        assert extract_display_name({"given_name": "Rudi"}) == "Rudi"
        assert extract_display_name({}) == "User"

    def test_picture(self):
        assert extract_picture({"photos": [{"value": "https://p/1"}]}) == "https://p/1"
        assert extract_picture({"picture": "https://p/2"}) == "https://p/2"
        assert extract_picture({}) is None

    @pytest.mark.parametrize("provider,expected", [("google", True), ("GitHub", True), ("twitter", False), (None, False)])
    def test_provider_names(self, provider, expected):
        assert is_valid_provider(provider) is expected


class TestNormalize:
    def test_google_userinfo(self):
        profile = normalize_oauth_data(GOOGLE_USERINFO, "access-1", "refresh-1")
        assert profile.provider_user_id == "10987654321"
        assert profile.email == "siti.rahma@example.com"
        assert profile.display_name == "Siti Rahma"
        assert profile.picture == GOOGLE_USERINFO["picture"]
        assert profile.email_verified is True
        assert profile.access_token == "access-1"
        assert profile.refresh_token == "refresh-1"

    @pytest.mark.parametrize("missing", ["id", "email"])
    def test_missing_required_fields(self, missing):
        info = {k: v for k, v in GOOGLE_USERINFO.items() if k != missing}
        with pytest.raises(ValidationError) as exc_info:
            normalize_oauth_data(info)
        assert exc_info.value.errors == ["Missing required OAuth data"]
