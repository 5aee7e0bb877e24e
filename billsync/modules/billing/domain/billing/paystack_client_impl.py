"""Paystack API client implementation."""

from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from billsync.shared.core.exceptions import (
    ConfigurationError,
    PaystackAPIError,
    PaystackDuplicateSubscriptionError,
)

from . import paystack_shared as shared


def _provider_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text[:200]


class PaystackClient:
    """Async wrapper for Paystack operations."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        secret_key = secret_key or shared.settings.PAYSTACK_SECRET_KEY
        if not secret_key:
            raise ConfigurationError("PAYSTACK_SECRET_KEY not configured")

        self.base_url = (base_url or shared.settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = float(shared.settings.PAYSTACK_HTTP_TIMEOUT_SECONDS)
        self.headers: dict[str, str] = {
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        from billsync.shared.core.http import get_http_client

        client = get_http_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}/{endpoint}",
                headers=self.headers,
                json=data,
                params=params,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, dict):
                raise PaystackAPIError(
                    "Invalid Paystack response payload type",
                    details={"endpoint": endpoint},
                )
            return payload
        except httpx.HTTPStatusError as exc:
            message = _provider_message(exc.response)
            shared.logger.error(
                "paystack_api_error",
                endpoint=endpoint,
                status_code=exc.response.status_code,
                error=message,
            )
            details = {"endpoint": endpoint, "status_code": exc.response.status_code}
            if exc.response.status_code in (400, 409) and "already" in message.lower():
                raise PaystackDuplicateSubscriptionError(message, details=details) from exc
            raise PaystackAPIError(message, details=details) from exc
        except httpx.HTTPError as exc:
            shared.logger.error("paystack_api_error", endpoint=endpoint, error=str(exc))
            raise PaystackAPIError(str(exc), details={"endpoint": endpoint}) from exc

    async def initialize_transaction(
        self,
        email: str,
        amount_subunits: int,
        plan_code: Optional[str],
        callback_url: Optional[str],
        metadata: dict[str, Any],
        currency: Optional[str] = None,
    ) -> dict[str, Any]:
        """Initialize a transaction to start a subscription."""
        data: dict[str, Any] = {
            "email": email,
            "amount": amount_subunits,
            "metadata": metadata,
        }
        if callback_url:
            data["callback_url"] = callback_url
        if plan_code:
            data["plan"] = plan_code
        if currency:
            data["currency"] = currency

        return await self._request("POST", "transaction/initialize", data)

    async def create_subscription(
        self,
        customer_code: str,
        plan_code: str,
        authorization_code: str,
        start_date: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create a provider-side subscription from a reusable authorization.
        Raises PaystackDuplicateSubscriptionError when it already exists.
        """
        data: dict[str, Any] = {
            "customer": customer_code,
            "plan": plan_code,
            "authorization": authorization_code,
        }
        if start_date:
            data["start_date"] = start_date
        payload = await self._request("POST", "subscription", data)
        return payload.get("data") or {}

    async def fetch_customer(self, customer_code: str) -> dict[str, Any]:
        payload = await self._request("GET", f"customer/{customer_code}")
        return payload.get("data") or {}

    async def list_customer_subscriptions(self, customer_id: int | str) -> list[dict[str, Any]]:
        payload = await self._request(
            "GET", "subscription", params={"customer": customer_id}
        )
        rows = payload.get("data") or []
        return [row for row in rows if isinstance(row, dict)]

    async def disable_subscription(self, code: str, token: str) -> dict[str, Any]:
        """Cancel a subscription."""
        data = {"code": code, "token": token}
        return await self._request("POST", "subscription/disable", data)

    async def get_manage_link(self, code: str) -> Optional[str]:
        payload = await self._request("GET", f"subscription/{code}/manage/link")
        link = (payload.get("data") or {}).get("link")
        return str(link) if link else None

    async def _lookup_once(
        self, customer_code: str, plan_code: str
    ) -> Optional[dict[str, Any]]:
        try:
            customer = await self.fetch_customer(customer_code)
            customer_id = customer.get("id")
            if customer_id is None:
                shared.logger.warning(
                    "paystack_customer_id_missing", customer_code=customer_code
                )
                return None
            subscriptions = await self.list_customer_subscriptions(customer_id)
        except PaystackAPIError:
            # Counted as an empty attempt; the error itself is logged by _request.
            return None
        return select_subscription_for_plan(subscriptions, plan_code)

    async def find_subscription(
        self,
        customer_code: str,
        plan_code: str,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Fallback lookup for a subscription code missing from a webhook payload.

        Paystack indexes new subscriptions with a short lag, so an empty answer
        is retried a bounded number of times. None means "not yet available".
        """
        if max_retries is None:
            max_retries = int(shared.settings.PAYSTACK_LOOKUP_MAX_RETRIES)
        if retry_delay is None:
            retry_delay = float(shared.settings.PAYSTACK_LOOKUP_RETRY_DELAY_SECONDS)

        def _log_empty_attempt(retry_state: Any) -> None:
            shared.logger.info(
                "paystack_subscription_lookup_retry",
                customer_code=customer_code,
                plan_code=plan_code,
                attempt=retry_state.attempt_number,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(1 + max(0, max_retries)),
            wait=wait_fixed(max(0.0, retry_delay)),
            retry=retry_if_result(lambda result: result is None),
            before_sleep=_log_empty_attempt,
            retry_error_callback=lambda retry_state: None,
        )
        result = await retrying(self._lookup_once, customer_code, plan_code)
        if result is None:
            shared.logger.warning(
                "paystack_subscription_lookup_exhausted",
                customer_code=customer_code,
                plan_code=plan_code,
                attempts=1 + max(0, max_retries),
            )
        return result


def select_subscription_for_plan(
    subscriptions: list[dict[str, Any]], plan_code: str
) -> Optional[dict[str, Any]]:
    """Matching plan only; active before anything else, newest first."""
    matching = [row for row in subscriptions if shared.plan_code_of(row) == plan_code]
    if not matching:
        return None

    def _sort_key(row: dict[str, Any]) -> tuple[int, float]:
        status = str(row.get("status") or "").lower()
        created = shared.parse_paystack_datetime(row.get("createdAt") or row.get("created_at"))
        return (
            0 if status == "active" else 1,
            -(created.timestamp() if created else 0.0),
        )

    return sorted(matching, key=_sort_key)[0]
