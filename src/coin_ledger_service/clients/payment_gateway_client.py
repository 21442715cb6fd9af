"""Async HTTP client for the payment gateway."""

from __future__ import annotations

import math
from typing import Any

import httpx

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger


def _positive_finite(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        amount = float(value)
    except OverflowError:
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


class PaymentGatewayClient:
    """
    Client for deposit confirmation.

    The charge itself is created between the payer and the gateway. The
    ledger only asks whether a deposit with a given reference was captured
    and for how much, via GET {confirm_deposit_path}/{external_ref}.
    """

    def __init__(
        self,
        base_url: str,
        confirm_deposit_path: str,
        timeout_seconds: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._confirm_deposit_path = confirm_deposit_path.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def confirm_deposit(self, external_ref: str) -> float:
        """
        Return the captured cash amount for a deposit.

        Raises:
            ServiceError: DEPOSIT_NOT_FOUND (404) if the gateway has no such deposit
            ServiceError: DEPOSIT_NOT_CAPTURED (409) if the funds were not captured
            ServiceError: PAYMENT_GATEWAY_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.get(f"{self._confirm_deposit_path}/{external_ref}")
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Payment gateway connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_GATEWAY_UNAVAILABLE",
                message="Cannot connect to payment gateway",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment gateway HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_GATEWAY_UNAVAILABLE",
                message="Payment gateway request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code == 404:
            raise ServiceError(
                error="DEPOSIT_NOT_FOUND",
                message="Payment gateway has no deposit with this reference",
                status_code=404,
                details={"external_ref": external_ref},
            )

        if response.status_code != 200:
            logger.warning(
                "Payment gateway unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_GATEWAY_UNAVAILABLE",
                message="Payment gateway returned unexpected status",
                status_code=502,
                details={},
            )

        result = self._json_object(response)

        if result.get("status") != "captured":
            raise ServiceError(
                error="DEPOSIT_NOT_CAPTURED",
                message="Deposit has not been captured",
                status_code=409,
                details={"external_ref": external_ref, "status": result.get("status")},
            )

        amount = _positive_finite(result.get("amount"))
        if amount is None:
            raise ServiceError(
                error="PAYMENT_GATEWAY_UNAVAILABLE",
                message="Payment gateway returned an invalid amount",
                status_code=502,
                details={},
            )

        return amount

    def _json_object(self, response: httpx.Response) -> dict[str, Any]:
        try:
            result = response.json()
        except ValueError as exc:
            result = None
            error = str(exc)
        else:
            error = f"expected a JSON object, got {type(result).__name__}"
        if not isinstance(result, dict):
            get_logger(__name__).warning(
                "Payment gateway returned malformed body",
                extra={"error": error, "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENT_GATEWAY_UNAVAILABLE",
                message="Payment gateway returned a malformed response",
                status_code=502,
                details={},
            )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
