"""Inventory service HTTP client.

Looks up live stock levels for catalog items from the inventory service.
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

logger = structlog.get_logger()


@dataclass
class InventoryLevel:
    """Stock level reported by the inventory service."""

    sku: str
    inventory_id: int | None
    available_quantity: int
    reserved_quantity: int
    total_quantity: int
    in_stock: bool

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "InventoryLevel":
        """Create from inventory API response.

        Args:
            data: API response data.

        Returns:
            InventoryLevel instance.
        """
        available = int(data.get("availableQuantity") or 0)
        return cls(
            sku=data.get("sku", ""),
            inventory_id=data.get("inventoryId"),
            available_quantity=available,
            reserved_quantity=int(data.get("reservedQuantity") or 0),
            total_quantity=int(data.get("totalQuantity") or 0),
            in_stock=bool(data.get("inStock", available > 0)),
        )


class InventoryClientError(Exception):
    """Error from inventory API call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InventoryClient:
    """HTTP client for the inventory service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,
        request_id: str | None = None,
    ) -> None:
        """Initialize inventory client.

        Args:
            base_url: Inventory service base URL.
            timeout: Request timeout in seconds.
            request_id: Optional request ID for correlation.
        """
        self.base_url = base_url
        self.timeout = timeout
        self.request_id = request_id
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.request_id:
                headers["X-Request-ID"] = self.request_id
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_level_by_sku(self, sku: str) -> InventoryLevel | None:
        """Get stock level for a SKU.

        Args:
            sku: Catalog item identity.

        Returns:
            Stock level, or None if the inventory service does not know the SKU.

        Raises:
            InventoryClientError: On API error (except 404) or an unreadable body.
        """
        try:
            client = await self._get_client()
            response = await client.get(f"/api/inventory/sku/{sku}")

            if response.status_code == 404:
                return None

            if response.status_code != 200:
                raise InventoryClientError(
                    f"Failed to get inventory: {response.text}",
                    response.status_code,
                )

            try:
                return InventoryLevel.from_api_response(response.json())
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.warning(
                    "Inventory API returned an unreadable body",
                    sku=sku,
                    error=str(e),
                )
                raise InventoryClientError(
                    f"Invalid inventory response: {str(e)}",
                    response.status_code,
                ) from e

        except httpx.RequestError as e:
            logger.error(
                "Inventory API request failed",
                sku=sku,
                error=str(e),
            )
            raise InventoryClientError(f"Request failed: {str(e)}") from e
