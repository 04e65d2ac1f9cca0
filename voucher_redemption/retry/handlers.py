from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voucher_redemption.clients.vouchers import VoucherServiceClient
from voucher_redemption.fraud.cases import FraudCaseService
from voucher_redemption.retry.payloads import attempt_from_payload, location_from_payload, result_from_payload
from voucher_redemption.retry.queue import RetryHandler

FRAUD_CASE_CREATE_OPERATION = "fraud_case.create"
VOUCHER_STATE_UPDATE_OPERATION = "voucher.state.update"


def build_retry_handlers(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    voucher_client: VoucherServiceClient,
) -> dict[str, RetryHandler]:
    async def create_fraud_case(payload: dict[str, Any]) -> None:
        attempt = attempt_from_payload(payload["attempt"])
        result = result_from_payload(payload["result"])
        async with session_factory.begin() as session:
            await FraudCaseService.create_case(
                session,
                attempt=attempt,
                result=result,
                now_utc=datetime.now(timezone.utc),
            )

    async def update_voucher_state(payload: dict[str, Any]) -> None:
        await voucher_client.update_voucher_state(
            UUID(payload["voucher_id"]),
            state=str(payload["state"]),
            redeemed_at=datetime.fromisoformat(payload["redeemed_at"]),
            redeemed_by=UUID(payload["redeemed_by"]),
            location=location_from_payload(payload.get("location")),
        )

    return {
        FRAUD_CASE_CREATE_OPERATION: create_fraud_case,
        VOUCHER_STATE_UPDATE_OPERATION: update_voucher_state,
    }
