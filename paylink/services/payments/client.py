# paylink/services/payments/client.py
"""Shared HTTP plumbing for payment provider APIs"""

from typing import Any, Dict, Optional

import httpx

from paylink.core.exception import PaymentProviderError
from paylink.core.logging import logger


class ProviderClient:
    """HTTP client for one provider API"""

    provider = "provider"

    def __init__(
        self,
        base_url: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _auth(self) -> Optional[httpx.Auth]:
        return None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                auth=self._auth(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """
        Make an HTTP request to the provider.

        Any HTTP error status is a definitive failure. Timeouts and
        transport errors leave the outcome unknown.
        """
        try:
            response = await self.client.request(
                method=method,
                url=endpoint,
                json=data,
                params=params,
            )
        except httpx.RequestError as e:
            logger.error(f"{self.provider} request error on {endpoint}: {e!r}")
            raise PaymentProviderError(
                f"Failed to reach {self.provider}: {e.__class__.__name__}",
                provider=self.provider,
                status_code=None,
                definitive=False,
            ) from e

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {"message": response.text[:200]}

        if response.status_code >= 400:
            logger.warning(f"{self.provider} {endpoint} -> HTTP {response.status_code}")
            raise PaymentProviderError(
                body.get("message") or body.get("responseMessage") or "Unknown error",
                provider=self.provider,
                status_code=response.status_code,
                definitive=True,
                details=body if isinstance(body, dict) else {"body": body},
            )

        return body if isinstance(body, dict) else {"data": body}

    async def get(self, endpoint: str, params: Optional[Dict] = None) -> Dict[str, Any]:
        """GET request"""
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, data: Optional[Dict] = None) -> Dict[str, Any]:
        """POST request"""
        return await self._request("POST", endpoint, data=data)
