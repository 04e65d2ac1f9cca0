from __future__ import annotations

from typing import Any
from uuid import UUID

from voucher_redemption.clients.base import InternalServiceClient, parse_localized_texts
from voucher_redemption.redemption.types import ProviderSnapshot


def parse_provider(payload: dict[str, Any]) -> ProviderSnapshot:
    return ProviderSnapshot(
        id=UUID(str(payload["id"])),
        business_name=parse_localized_texts(payload.get("businessName")),
        active=bool(payload.get("active", True)),
    )


class ProviderServiceClient(InternalServiceClient):
    service_name = "provider_service"

    async def get_provider_by_user(self, user_id: UUID) -> ProviderSnapshot | None:
        response = await self._request(
            "GET",
            f"/internal/providers/by-user/{user_id}",
            allow_not_found=True,
        )
        if response is None:
            return None
        return parse_provider(response.json())

    async def get_provider(self, provider_id: UUID) -> ProviderSnapshot | None:
        response = await self._request(
            "GET",
            f"/internal/providers/{provider_id}",
            allow_not_found=True,
        )
        if response is None:
            return None
        return parse_provider(response.json())
