"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from coin_ledger_service.core.exceptions import ServiceError
from coin_ledger_service.logging import get_logger
from coin_ledger_service.services.authorization import ROLES, AuthContext


class IdentityClient:
    """
    Client for bearer-token verification.

    Token issuance, sessions and passwords live in the Identity service.
    The ledger only asks it who the caller is and trusts the answer.
    """

    def __init__(
        self,
        base_url: str,
        verify_token_path: str,
        timeout_seconds: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._verify_token_path = verify_token_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def verify_token(self, token: str) -> AuthContext:
        """
        Verify a bearer token via the Identity service.

        Returns:
            AuthContext with the caller's account_id and role

        Raises:
            ServiceError: UNAUTHORIZED (401) if the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_token_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to Identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        result = self._json_object(response)

        if not result.get("valid", False):
            raise ServiceError(
                error="UNAUTHORIZED",
                message="Bearer token verification failed",
                status_code=401,
                details={},
            )

        account_id = result.get("account_id")
        role = result.get("role")
        if not isinstance(account_id, str) or not account_id or role not in ROLES:
            logger.warning(
                "Identity service returned malformed identity",
                extra={"base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned a malformed identity",
                status_code=502,
                details={},
            )

        return AuthContext(account_id=account_id, role=str(role))

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
                "Identity service returned malformed body",
                extra={"error": error, "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned a malformed response",
                status_code=502,
                details={},
            )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
