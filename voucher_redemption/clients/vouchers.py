from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from voucher_redemption.clients.base import InternalServiceClient, parse_localized_texts
from voucher_redemption.redemption.types import Location, VoucherSnapshot


def _parse_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_voucher(payload: dict[str, Any]) -> VoucherSnapshot:
    max_redemptions = payload.get("maxRedemptions")
    return VoucherSnapshot(
        id=UUID(str(payload["id"])),
        provider_id=UUID(str(payload["providerId"])),
        state=str(payload["state"]),
        title=parse_localized_texts(payload.get("title")),
        discount_type=str(payload.get("discountType", "fixed")).lower(),
        discount_value=Decimal(str(payload.get("discountValue", "0"))),
        currency=payload.get("currency"),
        expires_at=_parse_datetime(payload.get("expiresAt")),
        max_redemptions=int(max_redemptions) if max_redemptions is not None else None,
        max_redemptions_per_user=int(payload.get("maxRedemptionsPerUser") or 1),
    )


class VoucherServiceClient(InternalServiceClient):
    service_name = "voucher_service"

    async def get_voucher(self, voucher_id: UUID) -> VoucherSnapshot | None:
        response = await self._request(
            "GET",
            f"/internal/vouchers/{voucher_id}",
            allow_not_found=True,
        )
        if response is None:
            return None
        return parse_voucher(response.json())

    async def update_voucher_state(
        self,
        voucher_id: UUID,
        *,
        state: str,
        redeemed_at: datetime,
        redeemed_by: UUID,
        location: Location | None,
    ) -> None:
        body: dict[str, Any] = {
            "state": state,
            "redeemedAt": redeemed_at.isoformat(),
            "redeemedBy": str(redeemed_by),
        }
        if location is not None:
            body["location"] = {"lat": location.latitude, "lng": location.longitude}
        await self._request("PUT", f"/internal/vouchers/{voucher_id}/state", json=body)
