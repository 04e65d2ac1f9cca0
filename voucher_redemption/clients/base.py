from __future__ import annotations

from typing import Any

import httpx
import structlog

from voucher_redemption.clients.errors import ServiceUnavailableError

logger = structlog.get_logger(__name__)


class InternalServiceClient:
    service_name = "internal_service"

    def __init__(
        self,
        *,
        base_url: str,
        service_token: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_token = service_token
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._service_token:
            headers["X-Service-Token"] = self._service_token
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                transport=self._transport,
                headers=self._headers(),
            ) as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning(
                "internal_service_request_failed",
                service=self.service_name,
                method=method,
                path=path,
                error_type=type(exc).__name__,
            )
            raise ServiceUnavailableError(self.service_name, type(exc).__name__) from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "internal_service_bad_status",
                service=self.service_name,
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ServiceUnavailableError(self.service_name, f"status {response.status_code}")
        return response


def parse_localized_texts(value: object) -> dict[str, str]:
    if isinstance(value, dict):
        return {str(key): str(text) for key, text in value.items() if text is not None}
    if isinstance(value, str):
        return {"en": value}
    return {}
