"""
Bearer tokens for the API. Signed, timestamped payloads (itsdangerous);
nothing is stored server-side.
"""
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings
from app.core.errors import UnauthorizedError

TOKEN_SALT = "api-access"


class TokenService:
    def __init__(self, secret_key: str | None = None, ttl_seconds: int | None = None) -> None:
        self.serializer = URLSafeTimedSerializer(secret_key or settings.auth_secret_key, salt=TOKEN_SALT)
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.auth_token_ttl_seconds

    def issue(self, user_id: str, role: str) -> str:
        return self.serializer.dumps({"sub": user_id, "role": role})

    def verify(self, token: str) -> dict:
        """Return {"sub", "role"} or raise UnauthorizedError."""
        if not token:
            raise UnauthorizedError("Missing access token")
        try:
            data = self.serializer.loads(token, max_age=self.ttl_seconds)
        except SignatureExpired:
            raise UnauthorizedError("Access token expired")
        except BadData:
            raise UnauthorizedError("Invalid access token")
        if not isinstance(data, dict) or not data.get("sub"):
            raise UnauthorizedError("Invalid access token")
        return data
