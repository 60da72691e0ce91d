"""Nordigen / GoCardless Bank Account Data HTTP client"""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Dict, Optional

import httpx

from banking_monitor.config import settings
from banking_monitor.domain.exceptions import ProviderAPIError
from banking_monitor.infrastructure.observability.metrics import (
    provider_failures_counter,
    provider_latency_histogram,
)

logger = logging.getLogger(__name__)


class NordigenClient:
    """
    Async client for the PSD2 account data API.

    Handles the token lifecycle (create, refresh, expiry margin) so callers
    never see credentials. Retry strategy per call:
    - 5xx responses, timeouts and network errors: exponential backoff,
      base * 2^(attempt-1), at most `max_retries` attempts
    - 401: drop the cached token, acquire a new one, retry once
    - other 4xx: fail immediately
    """

    def __init__(
        self,
        base_url: str | None = None,
        secret_id: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.nordigen_base_url).rstrip("/")
        self.secret_id = secret_id if secret_id is not None else settings.nordigen_secret_id
        self.secret_key = secret_key if secret_key is not None else settings.nordigen_secret_key
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = max_retries or settings.provider_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.provider_backoff_base
        self.refresh_margin = settings.token_refresh_margin_seconds
        self._transport = transport

        self._access_token: Optional[str] = None
        self._access_expires_at = 0.0
        self._refresh_token: Optional[str] = None
        self._refresh_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # Accounts

    async def get_requisition(self, requisition_id: str) -> Dict[str, Any]:
        """Requisition status and the provider account ids it grants"""
        return await self._request("GET", f"/requisitions/{requisition_id}/", endpoint="requisition")

    async def get_account(self, account_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/accounts/{account_id}/", endpoint="account")

    async def get_account_details(self, account_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/accounts/{account_id}/details/", endpoint="account_details")

    async def get_account_balances(self, account_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/accounts/{account_id}/balances/", endpoint="account_balances")

    async def get_account_transactions(
        self,
        account_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Booked and pending transactions, optionally limited to a date window"""
        params = {}
        if date_from:
            params["date_from"] = date_from.isoformat()
        if date_to:
            params["date_to"] = date_to.isoformat()
        return await self._request(
            "GET", f"/accounts/{account_id}/transactions/", endpoint="account_transactions", params=params
        )

    async def health_check(self) -> bool:
        """True when a valid access token can be obtained"""
        try:
            async with self._client() as client:
                await self._get_access_token(client)
            return True
        except ProviderAPIError as e:
            logger.warning(f"Provider health check failed: {e}")
            return False

    # Authentication

    async def create_token(self, client: httpx.AsyncClient) -> str:
        data = await self._token_call(
            client, "/token/new/", {"secret_id": self.secret_id, "secret_key": self.secret_key}
        )
        self._refresh_token = data["refresh"]
        self._refresh_expires_at = time.monotonic() + data.get("refresh_expires", 0)
        return self._store_access_token(data)

    async def _refresh_access_token(self, client: httpx.AsyncClient) -> str:
        data = await self._token_call(client, "/token/refresh/", {"refresh": self._refresh_token})
        return self._store_access_token(data)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        # Concurrent account workers share one token exchange
        async with self._token_lock:
            now = time.monotonic()
            if self._access_token and self._access_expires_at > now + self.refresh_margin:
                return self._access_token

            if self._refresh_token and self._refresh_expires_at > now + self.refresh_margin:
                try:
                    return await self._refresh_access_token(client)
                except ProviderAPIError as e:
                    logger.info(f"Token refresh failed, requesting new token: {e}")

            return await self.create_token(client)

    def _store_access_token(self, data: Dict[str, Any]) -> str:
        self._access_token = data["access"]
        self._access_expires_at = time.monotonic() + data.get("access_expires", 0)
        return self._access_token

    def _clear_access_token(self) -> None:
        self._access_token = None
        self._access_expires_at = 0.0

    async def _token_call(self, client: httpx.AsyncClient, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ProviderAPIError(f"Provider token request timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ProviderAPIError(_error_message(e.response), status_code=e.response.status_code) from e
        except httpx.RequestError as e:
            raise ProviderAPIError(f"Provider token request failed: {e}") from e
        except (KeyError, ValueError) as e:
            raise ProviderAPIError(f"Invalid token response from provider: {e}") from e

    # Transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Authenticated request with retry.

        Raises:
            ProviderAPIError: On non-retryable errors or once retries are exhausted
        """
        attempt = 0
        auth_retried = False
        async with self._client() as client:
            while True:
                token = await self._get_access_token(client)
                try:
                    with provider_latency_histogram.labels(endpoint=endpoint).time():
                        response = await client.request(
                            method,
                            path,
                            params=params,
                            headers={"Authorization": f"Bearer {token}"},
                        )
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    provider_failures_counter.labels(reason=f"http_{status}").inc()
                    if status == 401 and not auth_retried:
                        auth_retried = True
                        self._clear_access_token()
                        continue
                    if status < 500:
                        raise ProviderAPIError(_error_message(e.response), status_code=status) from e
                    error = ProviderAPIError(_error_message(e.response), status_code=status)

                except httpx.TimeoutException as e:
                    provider_failures_counter.labels(reason="timeout").inc()
                    error = ProviderAPIError(f"Provider timeout after {self.timeout}s on {endpoint}")
                    error.__cause__ = e

                except httpx.RequestError as e:
                    provider_failures_counter.labels(reason="network").inc()
                    error = ProviderAPIError(f"Provider request failed on {endpoint}: {e}")
                    error.__cause__ = e

                except ValueError as e:
                    raise ProviderAPIError(f"Invalid JSON from provider on {endpoint}") from e

                attempt += 1
                if attempt >= self.max_retries:
                    raise error

                backoff = self.backoff_base * (2 ** (attempt - 1))
                logger.info(
                    "Retrying provider call",
                    extra={"endpoint": endpoint, "attempt": attempt, "backoff_seconds": backoff},
                )
                await asyncio.sleep(backoff)


def _error_message(response: httpx.Response) -> str:
    """Provider error text from detail/summary/message, else the status code"""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("detail", "summary", "message"):
            if data.get(key):
                return str(data[key])
    return f"Provider API error: {response.status_code}"
