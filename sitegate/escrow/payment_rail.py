"""
Payment rail adapters.

The rail executes the actual fund transfer for an approved release:
``(destination_account, amount, description) -> transfer_id``.
Every adapter must fail loudly (ExternalServiceError) rather than
returning an empty or placeholder transfer id.
"""

from decimal import Decimal
from typing import Optional, Protocol

import httpx
import structlog

from sitegate.config import settings
from sitegate.errors import ExternalServiceError

logger = structlog.get_logger(__name__)


class PaymentRail(Protocol):
    async def create_transfer(self, destination_account: str, amount: Decimal, description: str) -> str:
        ...


class HttpPaymentRail:
    """Transfers through the payment provider's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.payment_rail_url
        self.api_key = api_key if api_key is not None else settings.payment_rail_api_key
        self.timeout = timeout or settings.payment_rail_timeout_seconds
        self._transport = transport

    async def create_transfer(self, destination_account: str, amount: Decimal, description: str) -> str:
        payload = {
            "destination": destination_account,
            "amount": str(amount),
            "description": description,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post("/v1/transfers", json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.error("payment_rail_timeout", destination=destination_account)
            raise ExternalServiceError("payment_rail", "transfer request timed out", timeout=True) from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "payment_rail_error",
                status=e.response.status_code,
                body=e.response.text[:500],
            )
            raise ExternalServiceError(
                "payment_rail", f"transfer rejected with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("payment_rail_unreachable", error=str(e))
            raise ExternalServiceError("payment_rail", f"transfer request failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("payment_rail", "response was not valid JSON") from e

        transfer_id = data.get("id") if isinstance(data, dict) else None
        if not transfer_id:
            raise ExternalServiceError("payment_rail", "response did not include a transfer id")

        logger.info("payment_rail_transfer_created", transfer_id=transfer_id, amount=str(amount))
        return str(transfer_id)
