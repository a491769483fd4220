import pytest

from app.core.errors import UnauthorizedError
from app.services.auth.tokens import TokenService

SECRET = "token-secret-key-0123456789"


class TestTokenService:
    def test_issue_and_verify(self):
        service = TokenService(secret_key=SECRET, ttl_seconds=3600)
        data = service.verify(service.issue("user-1", "admin"))
        assert data == {"sub": "user-1", "role": "admin"}

    def test_expired(self):
        token = TokenService(secret_key=SECRET).issue("user-1", "student")
        with pytest.raises(UnauthorizedError, match="expired"):
            TokenService(secret_key=SECRET, ttl_seconds=-1).verify(token)

    def test_signed_with_another_key(self):
        token = TokenService(secret_key="some-other-secret-key-42").issue("user-1", "student")
        with pytest.raises(UnauthorizedError, match="Invalid"):
            TokenService(secret_key=SECRET).verify(token)

    @pytest.mark.parametrize("token", ["", None, "garbage"])
    def test_missing_or_garbage(self, token):
        with pytest.raises(UnauthorizedError):
            TokenService(secret_key=SECRET).verify(token)
