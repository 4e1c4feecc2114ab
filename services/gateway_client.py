"""
Midtrans Gateway Client.

Async HTTP client for the Midtrans Snap API (payment sessions) and
Core API (status, cancel, refund).
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from config import MidtransConfig
from .exceptions import GatewayError

logger = logging.getLogger(__name__)

# Core API reports failures in the body's status_code; 407 is an expired
# transaction, which is still a valid status answer.
CORE_API_ACCEPTED_CODES = {407}


class MidtransClient:
    """
    Client for outbound calls to the Midtrans gateway.

    Features:
    - HTTP Basic auth with the merchant server key
    - Shared aiohttp session with a total request timeout
    - Uniform GatewayError for network failures and error answers
    """

    def __init__(
        self,
        config: MidtransConfig,
        session: Optional[aiohttp.ClientSession] = None,
        snap_url: Optional[str] = None,
        core_api_url: Optional[str] = None
    ):
        """
        Initialize the client.

        Args:
            config: Midtrans credentials and endpoints
            session: Optional externally managed session
            snap_url: Override for the Snap API base URL
            core_api_url: Override for the Core API base URL
        """
        self.config = config
        self._session = session
        self._owns_session = session is None
        self.snap_url = (snap_url or config.snap_url).rstrip('/')
        self.core_api_url = (core_api_url or config.core_api_url).rstrip('/')
        self._auth = aiohttp.BasicAuth(config.server_key, '')

    async def start(self) -> None:
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )
            self._owns_session = True
        env = 'production' if self.config.is_production else 'sandbox'
        logger.info(f"Midtrans client started ({env})")

    async def stop(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send a request to the gateway and decode its JSON answer.

        Raises:
            GatewayError: On network failure, timeout, non-2xx response
                or a Core API error body
        """
        if not self._session:
            raise GatewayError("Gateway client not started")

        headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        }

        try:
            async with self._session.request(
                method,
                url,
                json=payload,
                headers=headers,
                auth=self._auth
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {'raw': await response.text()}

                if not 200 <= response.status < 300:
                    raise GatewayError(
                        f"Gateway returned HTTP {response.status}",
                        status=response.status,
                        detail=_error_detail(body)
                    )

        except aiohttp.ClientError as e:
            logger.error(f"Network error calling gateway {method} {url}: {e}")
            raise GatewayError("Gateway unreachable", detail=str(e)) from e
        except asyncio.TimeoutError as e:
            logger.error(f"Timeout calling gateway {method} {url}")
            raise GatewayError("Gateway request timed out") from e

        if not isinstance(body, dict):
            raise GatewayError("Unexpected gateway response", detail=str(body))

        return body

    async def _core_request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        body = await self._request(method, f"{self.core_api_url}{path}", payload)

        status_code = body.get('status_code')
        if status_code is not None:
            try:
                code = int(status_code)
            except (TypeError, ValueError):
                code = 0
            if code >= 400 and code not in CORE_API_ACCEPTED_CODES:
                raise GatewayError(
                    body.get('status_message') or f"Gateway returned status {code}",
                    status=code,
                    detail=_error_detail(body)
                )

        return body

    async def create_transaction(self, parameter: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a Snap payment session.

        Args:
            parameter: Snap transaction parameter

        Returns:
            Gateway answer with `token` and `redirect_url`
        """
        body = await self._request('POST', f"{self.snap_url}/transactions", parameter)

        if not body.get('token'):
            raise GatewayError("Gateway did not return a Snap token", detail=_error_detail(body))

        return body

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Get the gateway's status object for an order or transaction ID."""
        return await self._core_request('GET', f"/{quote(order_id, safe='')}/status")

    async def cancel(self, order_id: str) -> Dict[str, Any]:
        """Cancel a transaction that has not settled yet."""
        return await self._core_request('POST', f"/{quote(order_id, safe='')}/cancel")

    async def refund(self, order_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Refund a settled transaction.

        Args:
            order_id: Order or transaction ID
            params: Refund body (refund_key, amount, reason)
        """
        return await self._core_request('POST', f"/{quote(order_id, safe='')}/refund", params)


def _error_detail(body: Any) -> str:
    if isinstance(body, dict):
        messages = body.get('error_messages')
        if isinstance(messages, list) and messages:
            return '; '.join(str(m) for m in messages)
        if body.get('status_message'):
            return str(body['status_message'])
    return str(body)
