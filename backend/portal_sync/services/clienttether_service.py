"""ClientTether API integration - read endpoints used by the tenant sync."""

import httpx
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from portal_sync.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ApiResponse:
    """
    Uniform success/error envelope.

    Entity methods never raise for HTTP-level failures; they return an
    envelope with ``error`` set instead. ``status_code`` is None for
    network failures.
    """
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_network_error(self) -> bool:
        return self.error is not None and self.status_code is None


def _query(**params: Optional[str]) -> Dict[str, str]:
    return {key: value for key, value in params.items() if value}


class ClientTetherService:
    """Typed request wrapper around the ClientTether REST API."""

    def __init__(
        self,
        access_token: str,
        web_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize with tenant credentials.

        Args:
            access_token: Sent on every request as X-Access-Token
            web_key: Sent as X-Web-Key only when present
            api_url: Base URL (defaults to CLIENTTETHER_API_URL)
            timeout: Per-request timeout in seconds
            http_client: Shared client, mostly for tests; one is opened per
                request when omitted
        """
        self.api_url = (api_url or settings.CLIENTTETHER_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CLIENTTETHER_TIMEOUT_SECONDS
        self.http_client = http_client
        self.headers = {
            "Content-Type": "application/json",
            "X-Access-Token": access_token,
        }
        if web_key:
            self.headers["X-Web-Key"] = web_key

    async def _send(self, client: httpx.AsyncClient, endpoint: str, params: Dict[str, str]) -> httpx.Response:
        return await client.get(
            f"{self.api_url}{endpoint}",
            headers=self.headers,
            params=params,
            timeout=self.timeout
        )

    async def request(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> ApiResponse:
        """GET an endpoint and wrap the outcome in an ApiResponse."""
        params = params or {}
        try:
            if self.http_client is not None:
                response = await self._send(self.http_client, endpoint, params)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._send(client, endpoint, params)
        except httpx.HTTPError as e:
            logger.warning(f"ClientTether network error on {endpoint}: {e!r}")
            return ApiResponse(error=f"Network Error: {e!r}")

        if not response.is_success:
            return ApiResponse(
                error=f"API Error: {response.status_code} - {response.text}",
                status_code=response.status_code
            )

        if not response.content:
            return ApiResponse(data=None, status_code=response.status_code)

        try:
            return ApiResponse(data=response.json(), status_code=response.status_code)
        except ValueError as e:
            return ApiResponse(
                error=f"API Error: {response.status_code} - invalid JSON ({e})",
                status_code=response.status_code
            )

    async def get_leads(self, modified_since: Optional[str] = None) -> ApiResponse:
        """List leads, optionally only those modified since a timestamp."""
        return await self.request("/leads", _query(modified_since=modified_since))

    async def get_opportunities(self, modified_since: Optional[str] = None) -> ApiResponse:
        """List opportunities."""
        return await self.request("/opportunities", _query(modified_since=modified_since))

    async def get_notes(
        self,
        contact_id: Optional[str] = None,
        since: Optional[str] = None
    ) -> ApiResponse:
        """List notes, optionally for one contact or since a timestamp."""
        return await self.request("/notes", _query(contact_id=contact_id, since=since))

    async def get_scheduled_activities(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ) -> ApiResponse:
        """List scheduled activities within an optional date range."""
        return await self.request("/activities", _query(start_date=start_date, end_date=end_date))

    async def get_sales_cycles(self) -> ApiResponse:
        return await self.request("/sales-cycles")

    async def get_events(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ) -> ApiResponse:
        return await self.request("/events", _query(start_date=start_date, end_date=end_date))


def create_clienttether_service(tenant, http_client: Optional[httpx.AsyncClient] = None) -> ClientTetherService:
    """Factory: build a client from a tenant's stored credentials."""
    return ClientTetherService(
        access_token=tenant.clienttether_access_token or "",
        web_key=tenant.clienttether_web_key,
        http_client=http_client
    )
