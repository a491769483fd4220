"""
Midtrans client wrapper using httpx sync client.

Snap API issues checkout tokens; Core API reads and mutates transactions.
Every call goes through a circuit breaker. Definitive rejections (bad
request, unknown transaction, illegal state) do not count as outages.
"""
import logging
import time

import httpx
import pybreaker

from app.core.errors import GatewayError, GatewayTimeoutError, GatewayUnavailableError
from app.utils.metrics import gateway_request_duration_seconds, gateway_requests_total


logger = logging.getLogger(__name__)

SNAP_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1"
SNAP_PRODUCTION_URL = "https://app.midtrans.com/snap/v1"
CORE_SANDBOX_URL = "https://api.sandbox.midtrans.com/v2"
CORE_PRODUCTION_URL = "https://api.midtrans.com/v2"

# Core API reports "expired" with 407 in the body; it is a status, not an error.
EXPIRED_STATUS_CODE = "407"


def is_business_rejection(exc: BaseException) -> bool:
    return isinstance(exc, GatewayError) and not exc.retryable


class MidtransClient:
    """Sync Midtrans client. Safe to use from API workers and Celery tasks."""

    def __init__(
        self,
        server_key: str,
        is_production: bool = False,
        timeout: float = 15.0,
        breaker: pybreaker.CircuitBreaker | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._server_key = server_key
        self._snap_url = SNAP_PRODUCTION_URL if is_production else SNAP_SANDBOX_URL
        self._core_url = CORE_PRODUCTION_URL if is_production else CORE_SANDBOX_URL
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None
        self.breaker = breaker or pybreaker.CircuitBreaker(exclude=[is_business_rejection])

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self._timeout,
                auth=(self._server_key, ""),
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _record_request(self, operation: str, status: str, duration: float) -> None:
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_transaction(self, parameter: dict) -> dict:
        """Snap checkout. Returns {"token", "redirect_url"}."""
        data = self._call("create_transaction", "POST", f"{self._snap_url}/transactions", parameter)
        if not data.get("token") or not data.get("redirect_url"):
            raise GatewayError("Payment gateway returned no checkout token")
        return data

    def get_status(self, order_id: str) -> dict:
        return self._call("get_status", "GET", f"{self._core_url}/{order_id}/status")

    def cancel(self, order_id: str) -> dict:
        return self._call("cancel", "POST", f"{self._core_url}/{order_id}/cancel")

    def refund(self, order_id: str, parameter: dict) -> dict:
        return self._call("refund", "POST", f"{self._core_url}/{order_id}/refund", parameter)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _call(self, operation: str, method: str, url: str, payload: dict | None = None) -> dict:
        start = time.time()
        try:
            data = self.breaker.call(self._send, method, url, payload)
        except pybreaker.CircuitBreakerError:
            self._record_request(operation, "circuit_open", time.time() - start)
            logger.warning("gateway_circuit_open", extra={"operation": operation})
            raise GatewayUnavailableError()
        except httpx.TimeoutException as e:
            self._record_request(operation, "timeout", time.time() - start)
            logger.error("gateway_timeout", extra={"operation": operation, "error": str(e)})
            raise GatewayTimeoutError() from e
        except httpx.HTTPError as e:
            self._record_request(operation, "error", time.time() - start)
            logger.error("gateway_transport_error", extra={"operation": operation, "error": str(e)})
            raise GatewayError("Payment gateway unreachable", retryable=True) from e
        except GatewayError as e:
            self._record_request(operation, "rejected" if not e.retryable else "error", time.time() - start)
            logger.warning(
                "gateway_request_failed",
                extra={"operation": operation, "error": e.message, "status_code": e.upstream_status},
            )
            raise
        self._record_request(operation, "success", time.time() - start)
        return data

    def _send(self, method: str, url: str, payload: dict | None) -> dict:
        resp = self.client.request(method, url, json=payload)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if resp.status_code >= 500:
            raise GatewayError(
                _error_message(data, f"Payment gateway error ({resp.status_code})"),
                retryable=True,
                upstream_status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise GatewayError(
                _error_message(data, f"Payment gateway rejected the request ({resp.status_code})"),
                upstream_status=resp.status_code,
            )

        # Core API answers 200 and puts the real outcome in the body.
        body_code = str(data.get("status_code") or "")
        if body_code.startswith("5"):
            raise GatewayError(
                _error_message(data, "Payment gateway error"),
                retryable=True,
                upstream_status=int(body_code) if body_code.isdigit() else None,
            )
        if body_code.startswith("4") and body_code != EXPIRED_STATUS_CODE:
            raise GatewayError(
                _error_message(data, "Payment gateway rejected the request"),
                upstream_status=int(body_code) if body_code.isdigit() else None,
            )
        return data


def _error_message(data: dict, default: str) -> str:
    messages = data.get("error_messages")
    if isinstance(messages, list) and messages:
        return "; ".join(str(m) for m in messages)
    return str(data.get("status_message") or default)
