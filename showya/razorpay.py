"""Razorpay access through the official SDK.

Only the calls Showya needs are wrapped: orders and payments (v1), refunds
(v1), and Route linked accounts with their stakeholders, products and
documents (v2). SDK errors surface as :class:`~showya.errors.RazorpayError`
carrying the provider's description, plus the HTTP status and offending field
read back from the response that produced them.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable
from urllib.parse import urlsplit

import razorpay
import requests

from .config import settings
from .errors import RazorpayError

logger = logging.getLogger("uvicorn.error")

DASHBOARD_ONBOARDING_URL = (
    "https://dashboard.razorpay.com/app/route-accounts/{account_id}/onboarding"
)

_SDK_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
)
_DEFAULT_STATUS = {
    razorpay.errors.BadRequestError: 400,
    razorpay.errors.GatewayError: 502,
    razorpay.errors.ServerError: 500,
}


def dashboard_onboarding_url(account_id: str) -> str:
    return DASHBOARD_ONBOARDING_URL.format(account_id=account_id)


def verify_webhook_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check the ``X-Razorpay-Signature`` header against the raw request body."""
    if not signature or not secret:
        return False
    try:
        razorpay.Client().utility.verify_webhook_signature(
            body.decode("utf-8"), signature, secret
        )
    except (razorpay.errors.SignatureVerificationError, UnicodeDecodeError):
        return False
    return True


def verify_payment_signature(
    order_id: str, payment_id: str, signature: str | None, secret: str
) -> bool:
    """Check the signature handed to the browser by Checkout."""
    if not signature or not secret:
        return False
    try:
        razorpay.Client(auth=("", secret)).utility.verify_payment_signature(
            {
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            }
        )
    except razorpay.errors.SignatureVerificationError:
        return False
    return True


def is_dev_origin(origin: str | None) -> bool:
    if not origin:
        return False
    host = urlsplit(origin).hostname or origin
    return any(
        host == pattern or host.endswith(f".{pattern}")
        for pattern in settings.dev_origin_patterns
    )


def credentials_for(origin: str | None = None) -> tuple[str, str]:
    """Return the key pair to use, preferring test keys for local origins."""
    if (
        is_dev_origin(origin)
        and settings.razorpay_key_id_test
        and settings.razorpay_key_secret_test
    ):
        return settings.razorpay_key_id_test, settings.razorpay_key_secret_test
    return settings.razorpay_key_id, settings.razorpay_key_secret


def _error_details(response: requests.Response | None) -> tuple[int | None, str | None, dict]:
    if response is None:
        return None, None, {}
    try:
        payload = response.json()
    except ValueError:
        return response.status_code, None, {}
    if not isinstance(payload, dict):
        return response.status_code, None, {}
    error = payload.get("error")
    field = error.get("field") if isinstance(error, dict) else None
    return response.status_code, field, payload


class RazorpayClient:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
        retry_delay: float = 0.8,
    ) -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.retry_delay = retry_delay
        self.timeout = timeout or settings.http_timeout_seconds
        self._last_response: requests.Response | None = None
        self._sdk = razorpay.Client(
            session=session or requests.Session(),
            auth=(key_id, key_secret),
            base_url=(base_url or settings.razorpay_api_base).rstrip("/"),
        )
        self._sdk.session.hooks["response"].append(self._remember_response)

    @classmethod
    def from_settings(
        cls, *, origin: str | None = None, session: requests.Session | None = None
    ) -> "RazorpayClient":
        key_id, key_secret = credentials_for(origin)
        return cls(key_id, key_secret, session=session)

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def close(self) -> None:
        self._sdk.session.close()

    def __enter__(self) -> "RazorpayClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _remember_response(self, response: requests.Response, *args, **kwargs) -> None:
        self._last_response = response

    def _call(self, label: str, method: Callable[..., Any], *args, **kwargs) -> Any:
        """Run one SDK call and translate its failures into ``RazorpayError``."""
        self._last_response = None
        kwargs.setdefault("timeout", self.timeout)
        try:
            return method(*args, **kwargs)
        except _SDK_ERRORS as exc:
            status, field, payload = _error_details(self._last_response)
            error = RazorpayError(
                str(exc) or type(exc).__name__,
                status=status or _DEFAULT_STATUS[type(exc)],
                field=field,
                payload=payload,
            )
        except requests.RequestException as exc:
            if self._last_response is None:
                logger.error("Razorpay %s failed: %s", label, exc)
                raise RazorpayError(f"Could not reach Razorpay: {exc}") from exc
            # Non-JSON error bodies fail inside the SDK while it decodes them.
            error = RazorpayError(
                self._last_response.text or f"HTTP {self._last_response.status_code}",
                status=self._last_response.status_code,
            )
        logger.warning(
            "Razorpay %s returned %s: %s", label, error.status, error.description
        )
        raise error

    @staticmethod
    def _idempotent(idempotency_key: str | None) -> dict[str, Any]:
        if not idempotency_key:
            return {}
        return {"headers": {"X-Razorpay-Idempotency": idempotency_key}}

    # Orders and payments

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: dict[str, Any],
        transfers: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }
        if transfers:
            payload["transfers"] = transfers
        return self._call("order.create", self._sdk.order.create, payload)

    def fetch_order(self, order_id: str) -> dict[str, Any]:
        return self._call("order.fetch", self._sdk.order.fetch, order_id)

    def list_orders(self, *, start: int, end: int, count: int = 100) -> list[dict[str, Any]]:
        body = self._call(
            "order.all", self._sdk.order.all, {"from": start, "to": end, "count": count}
        )
        return list(body.get("items") or [])

    def list_order_payments(self, order_id: str) -> list[dict[str, Any]]:
        body = self._call("order.payments", self._sdk.order.payments, order_id)
        return list(body.get("items") or [])

    def refund_payment(
        self, payment_id: str, *, amount: int, notes: dict[str, Any]
    ) -> dict[str, Any]:
        return self._call(
            "payment.refund",
            self._sdk.payment.refund,
            payment_id,
            {"amount": amount, "speed": "normal", "reverse_all": 1, "notes": notes},
        )

    # Route linked accounts

    def create_account(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._call("account.create", self._sdk.account.create, payload)

    def fetch_account(self, account_id: str) -> dict[str, Any]:
        return self._call("account.fetch", self._sdk.account.fetch, account_id)

    def update_account(
        self,
        account_id: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "account.edit",
            self._sdk.account.edit,
            account_id,
            payload,
            **self._idempotent(idempotency_key),
        )

    def list_stakeholders(self, account_id: str) -> list[dict[str, Any]]:
        body = self._call("stakeholder.all", self._sdk.stakeholder.all, account_id)
        return list(body.get("items") or [])

    def create_stakeholder(
        self, account_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return self._call(
            "stakeholder.create", self._sdk.stakeholder.create, account_id, payload
        )

    def update_stakeholder(
        self, account_id: str, stakeholder_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return self._call(
            "stakeholder.edit",
            self._sdk.stakeholder.edit,
            account_id,
            stakeholder_id,
            payload,
        )

    def list_products(self, account_id: str) -> list[dict[str, Any]]:
        body = self._call(
            "product.list", self._sdk.get, f"/v2/accounts/{account_id}/products", {}
        )
        return list(body.get("items") or [])

    def request_product(
        self,
        account_id: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "product.request",
            self._sdk.product.requestProductConfiguration,
            account_id,
            payload,
            **self._idempotent(idempotency_key),
        )

    def fetch_product(self, account_id: str, product_id: str) -> dict[str, Any]:
        return self._call("product.fetch", self._sdk.product.fetch, account_id, product_id)

    def update_product(
        self,
        account_id: str,
        product_id: str,
        payload: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        return self._call(
            "product.edit",
            self._sdk.product.edit,
            account_id,
            product_id,
            payload,
            **self._idempotent(idempotency_key),
        )

    def upload_stakeholder_document(
        self,
        account_id: str,
        stakeholder_id: str,
        *,
        document_type: str,
        sub_type: str,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> dict[str, Any]:
        """Upload one KYC document, retrying once on a provider 5xx."""
        path = f"/v2/accounts/{account_id}/stakeholders/{stakeholder_id}/documents"
        form = {"document_type": document_type, sub_type: "true"}

        def upload() -> dict[str, Any]:
            return self._call(
                "stakeholder.document",
                self._sdk.request,
                "post",
                path,
                data=form,
                files={"file": (filename, content, mime_type)},
            )

        try:
            return upload()
        except RazorpayError as exc:
            if not exc.status or exc.status < 500:
                raise
            logger.info("Retrying %s upload after %s", document_type, exc.status)
            time.sleep(self.retry_delay)
        return upload()
