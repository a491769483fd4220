"""
Google OAuth 2.0 client (authorization-code flow) over httpx.
"""
import logging
import time
from urllib.parse import urlencode

import httpx
import pybreaker

from app.core.errors import UpstreamError, UpstreamTimeoutError
from app.utils.metrics import oauth_requests_total


logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
SCOPES = ("openid", "profile", "email")


def is_rejection(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and not exc.retryable


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        callback_url: str,
        timeout: float = 10.0,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None
        self.breaker = breaker or pybreaker.CircuitBreaker(exclude=[is_rejection])

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, transport=self._transport)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.callback_url)

    def build_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict:
        """Authorization code -> {"access_token", "refresh_token"?, "expires_in", ...}."""
        data = self._call(
            "exchange_code",
            "POST",
            TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.callback_url,
                "grant_type": "authorization_code",
            },
        )
        if not data.get("access_token"):
            raise UpstreamError("Identity provider returned no access token")
        return data

    def fetch_user_info(self, access_token: str) -> dict:
        return self._call(
            "fetch_user_info",
            "GET",
            USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    def refresh_access_token(self, refresh_token: str) -> dict:
        if not refresh_token:
            raise UpstreamError("Refresh token is required")
        return self._call(
            "refresh_token",
            "POST",
            TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )

    def revoke_token(self, token: str) -> None:
        self._call("revoke_token", "POST", REVOKE_URL, data={"token": token})

    def _call(
        self,
        operation: str,
        method: str,
        url: str,
        data: dict | None = None,
        headers: dict | None = None,
    ) -> dict:
        start = time.time()
        try:
            result = self.breaker.call(self._send, method, url, data, headers)
        except pybreaker.CircuitBreakerError:
            oauth_requests_total.labels(operation=operation, status="circuit_open").inc()
            raise UpstreamError("Identity provider temporarily unavailable", retryable=True)
        except httpx.TimeoutException as e:
            oauth_requests_total.labels(operation=operation, status="timeout").inc()
            logger.error("oauth_timeout", extra={"provider": "google", "operation": operation, "error": str(e)})
            raise UpstreamTimeoutError("Identity provider timed out") from e
        except httpx.HTTPError as e:
            oauth_requests_total.labels(operation=operation, status="error").inc()
            logger.error("oauth_transport_error", extra={"provider": "google", "operation": operation, "error": str(e)})
            raise UpstreamError("Identity provider unreachable", retryable=True) from e
        except UpstreamError as e:
            oauth_requests_total.labels(operation=operation, status="rejected").inc()
            logger.warning(
                "oauth_request_failed",
                extra={"provider": "google", "operation": operation, "error": e.message, "status_code": e.upstream_status},
            )
            raise
        oauth_requests_total.labels(operation=operation, status="success").inc()
        logger.info(
            "oauth_request_completed",
            extra={"provider": "google", "operation": operation, "latency_ms": int((time.time() - start) * 1000)},
        )
        return result

    def _send(self, method: str, url: str, data: dict | None, headers: dict | None) -> dict:
        resp = self.client.request(method, url, data=data, headers=headers)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.status_code >= 500:
            raise UpstreamError(
                f"Identity provider error ({resp.status_code})",
                retryable=True,
                upstream_status=resp.status_code,
            )
        if resp.status_code >= 400:
            detail = body.get("error_description") or body.get("error") or "request rejected"
            raise UpstreamError(f"Identity provider rejected the request: {detail}", upstream_status=resp.status_code)
        return body
