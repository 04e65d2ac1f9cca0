from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, Request

from voucher_redemption.clients.errors import ServiceUnavailableError
from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.redemption.errors import InvalidProviderError, RedemptionError
from voucher_redemption.redemption.factory import (
    get_code_issuer,
    get_offline_sync_service,
    get_offline_validator,
    get_provider_client,
    get_redemption_queries,
    get_redemption_service,
    get_voucher_client,
)
from voucher_redemption.redemption.types import Location, OfflineSyncItem, RedemptionRequest

from .helpers import Caller, assert_internal_access, raise_redemption_http_error, require_caller
from .redemptions_models import (
    IssueTokenRequest,
    IssueTokenResponse,
    LocationPayload,
    ProviderStatsResponse,
    RedeemRequest,
    RedeemResponse,
    RedemptionListResponse,
    RedemptionResponse,
    StaticShortCodeRequest,
    StaticShortCodeResponse,
    SyncErrorResponse,
    SyncOfflineRequest,
    SyncOfflineResponse,
    ValidateOfflineRequest,
    ValidateOfflineResponse,
    VoucherDetailsResponse,
    VoucherStatsResponse,
)

router = APIRouter(tags=["redemptions"])
logger = structlog.get_logger(__name__)


def _as_location(payload: LocationPayload | None) -> Location | None:
    if payload is None:
        return None
    return Location(latitude=payload.latitude, longitude=payload.longitude)


def _service_unavailable(exc: ServiceUnavailableError) -> HTTPException:
    logger.warning("redemption_dependency_unavailable", service=exc.service, reason=exc.reason)
    return HTTPException(status_code=503, detail={"code": "E_DEPENDENCY_UNAVAILABLE"})


def _as_redemption_response(redemption: Redemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        voucher_id=redemption.voucher_id,
        customer_id=redemption.customer_id,
        provider_id=redemption.provider_id,
        customer_sequence=redemption.customer_sequence,
        redeemed_at=redemption.redeemed_at,
        latitude=redemption.latitude,
        longitude=redemption.longitude,
        offline=bool(redemption.offline),
        synced_at=redemption.synced_at,
        device_id=redemption.device_id,
    )


async def _caller_provider_id(caller: Caller) -> UUID | None:
    try:
        provider = await get_provider_client().get_provider_by_user(caller.user_id)
    except ServiceUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    return provider.id if provider is not None else None


async def _assert_provider_access(caller: Caller, provider_id: UUID) -> None:
    if caller.is_admin:
        return
    if await _caller_provider_id(caller) != provider_id:
        raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})


@router.post("/redemptions", response_model=RedeemResponse)
async def redeem_voucher(payload: RedeemRequest, request: Request) -> RedeemResponse:
    assert_internal_access(request)
    caller = require_caller(request)

    try:
        result = await get_redemption_service().redeem(
            RedemptionRequest(
                code=payload.code,
                acting_user_id=caller.user_id,
                customer_id=payload.customer_id,
                location=_as_location(payload.location),
                device_id=payload.device_id,
                language=payload.language,
                offline=payload.offline,
            )
        )
    except RedemptionError as exc:
        raise_redemption_http_error(exc)

    details = result.voucher_details
    return RedeemResponse(
        success=result.success,
        redemption_id=result.redemption_id,
        voucher_details=VoucherDetailsResponse(
            title=details.title,
            discount=details.discount,
            provider_name=details.provider_name,
            instructions=details.instructions,
        ),
    )


@router.post("/redemptions/validate-offline", response_model=ValidateOfflineResponse)
async def validate_offline(payload: ValidateOfflineRequest, request: Request) -> ValidateOfflineResponse:
    assert_internal_access(request)
    result = get_offline_validator().validate(payload.token)
    return ValidateOfflineResponse(
        valid=result.valid,
        voucher_id=result.voucher_id,
        customer_id=result.customer_id,
        expiry=result.expiry,
        error=result.error,
    )


@router.post("/redemptions/sync-offline", response_model=SyncOfflineResponse)
async def sync_offline(payload: SyncOfflineRequest, request: Request) -> SyncOfflineResponse:
    assert_internal_access(request)
    caller = require_caller(request)

    try:
        provider = await get_provider_client().get_provider_by_user(caller.user_id)
    except ServiceUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    if provider is None or not provider.active:
        raise_redemption_http_error(InvalidProviderError("User is not an active provider"))

    items = [
        OfflineSyncItem(
            code=entry.code,
            redeemed_at=entry.redeemed_at,
            customer_id=entry.customer_id,
            location=_as_location(entry.location),
            device_id=entry.device_id,
        )
        for entry in payload.redemptions
    ]
    result = await get_offline_sync_service().sync(items, provider_id=provider.id)
    return SyncOfflineResponse(
        synced_ids=result.synced_ids,
        errors=[SyncErrorResponse(code=error.code, error=error.error) for error in result.errors],
    )


@router.post("/redemptions/tokens", response_model=IssueTokenResponse)
async def issue_redemption_token(payload: IssueTokenRequest, request: Request) -> IssueTokenResponse:
    assert_internal_access(request)
    caller = require_caller(request)

    try:
        issued = await get_code_issuer().issue_for_customer(
            voucher_id=payload.voucher_id,
            customer_id=caller.user_id,
        )
    except RedemptionError as exc:
        raise_redemption_http_error(exc)
    except ServiceUnavailableError as exc:
        raise _service_unavailable(exc) from exc

    return IssueTokenResponse(
        token=issued.token,
        expires_at=issued.expires_at,
        short_code=issued.short_code,
        short_code_expires_at=issued.short_code_expires_at,
    )


@router.post("/redemptions/short-codes/static", response_model=StaticShortCodeResponse)
async def create_static_short_code(
    payload: StaticShortCodeRequest,
    request: Request,
) -> StaticShortCodeResponse:
    assert_internal_access(request)
    caller = require_caller(request)

    try:
        info = await get_code_issuer().create_static_code(
            acting_user_id=caller.user_id,
            voucher_id=payload.voucher_id,
            custom_code=payload.code,
        )
    except RedemptionError as exc:
        raise_redemption_http_error(exc)
    except ServiceUnavailableError as exc:
        raise _service_unavailable(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_SHORT_CODE_INVALID"}) from exc

    return StaticShortCodeResponse(
        code=info.code,
        voucher_id=info.voucher_id,
        type=info.code_type.value,
    )


@router.get("/redemptions", response_model=RedemptionListResponse)
async def list_redemptions(
    request: Request,
    provider_id: UUID | None = Query(default=None),
    customer_id: UUID | None = Query(default=None),
    voucher_id: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
) -> RedemptionListResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})

    redemptions = await get_redemption_queries().list_redemptions(
        provider_id=provider_id,
        customer_id=customer_id,
        voucher_id=voucher_id,
        limit=limit,
    )
    return RedemptionListResponse(items=[_as_redemption_response(item) for item in redemptions])


@router.get("/redemptions/provider/{provider_id}", response_model=RedemptionListResponse)
async def list_provider_redemptions(
    provider_id: UUID,
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
) -> RedemptionListResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    await _assert_provider_access(caller, provider_id)

    redemptions = await get_redemption_queries().list_redemptions(provider_id=provider_id, limit=limit)
    return RedemptionListResponse(items=[_as_redemption_response(item) for item in redemptions])


@router.get("/redemptions/customer/{customer_id}", response_model=RedemptionListResponse)
async def list_customer_redemptions(
    customer_id: UUID,
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
) -> RedemptionListResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    if not caller.is_admin and caller.user_id != customer_id:
        raise HTTPException(status_code=403, detail={"code": "ACCESS_DENIED"})

    redemptions = await get_redemption_queries().list_redemptions(customer_id=customer_id, limit=limit)
    return RedemptionListResponse(items=[_as_redemption_response(item) for item in redemptions])


@router.get("/redemptions/stats/provider/{provider_id}", response_model=ProviderStatsResponse)
async def get_provider_redemption_stats(provider_id: UUID, request: Request) -> ProviderStatsResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    await _assert_provider_access(caller, provider_id)

    stats = await get_redemption_queries().provider_stats(provider_id)
    return ProviderStatsResponse.model_validate(stats)


@router.get("/redemptions/stats/voucher/{voucher_id}", response_model=VoucherStatsResponse)
async def get_voucher_redemption_stats(voucher_id: UUID, request: Request) -> VoucherStatsResponse:
    assert_internal_access(request)
    caller = require_caller(request)
    if not caller.is_admin:
        try:
            voucher = await get_voucher_client().get_voucher(voucher_id)
        except ServiceUnavailableError as exc:
            raise _service_unavailable(exc) from exc
        if voucher is None:
            raise HTTPException(status_code=404, detail={"code": "NOT_FOUND"})
        await _assert_provider_access(caller, voucher.provider_id)

    stats = await get_redemption_queries().voucher_stats(voucher_id)
    return VoucherStatsResponse.model_validate(stats)


@router.get("/redemptions/{redemption_id}", response_model=RedemptionResponse)
async def get_redemption(redemption_id: UUID, request: Request) -> RedemptionResponse:
    assert_internal_access(request)
    caller = require_caller(request)

    redemption = await get_redemption_queries().get_redemption(redemption_id)
    if redemption is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND"})
    if not caller.is_admin and caller.user_id != redemption.customer_id:
        await _assert_provider_access(caller, redemption.provider_id)
    return _as_redemption_response(redemption)
