from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import UUID, uuid4

from fastapi.testclient import TestClient

from tests.api.internal_api_fixtures import caller_headers, patch_internal_access
from tests.fakes import (
    PRIVATE_KEY_PEM,
    PUBLIC_KEY_PEM,
    FakeProviderClient,
    FakeVoucherClient,
    make_provider,
    make_voucher,
)
from voucher_redemption.api.routes import redemptions
from voucher_redemption.clients.errors import ServiceUnavailableError
from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.main import app
from voucher_redemption.redemption.errors import (
    AlreadyRedeemedError,
    RateLimitedError,
    RedemptionFailedError,
    VoucherExpiredError,
)
from voucher_redemption.redemption.offline import OfflineValidator
from voucher_redemption.redemption.tokens import TokenIssuer, TokenVerifier
from voucher_redemption.redemption.types import (
    RedemptionResult,
    ShortCodeInfo,
    ShortCodeType,
    SyncError,
    SyncResult,
    VoucherDisplay,
)

NOW = datetime.now(timezone.utc).replace(microsecond=0)


class _RedemptionService:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.error = error
        self.requests = []

    async def redeem(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return RedemptionResult(
            success=True,
            redemption_id=uuid4(),
            voucher_details=VoucherDisplay(
                title="Spring Sale",
                discount="20%",
                provider_name="Corner Cafe",
                instructions="Show this confirmation to the staff",
            ),
        )


def _use_service(monkeypatch, service: _RedemptionService) -> None:
    monkeypatch.setattr(redemptions, "get_redemption_service", lambda: service)


def test_redeem_rejects_missing_token(monkeypatch) -> None:
    patch_internal_access(monkeypatch)

    client = TestClient(app)
    response = client.post("/redemptions", json={"code": "ABCD2345"})

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_redeem_rejects_disallowed_ip(monkeypatch) -> None:
    patch_internal_access(monkeypatch, client_ip="10.0.0.25", allowlist="192.168.0.0/16")

    client = TestClient(app)
    response = client.post("/redemptions", json={"code": "ABCD2345"}, headers=caller_headers(uuid4()))

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_redeem_requires_caller_identity(monkeypatch) -> None:
    patch_internal_access(monkeypatch)

    client = TestClient(app)
    response = client.post("/redemptions", json={"code": "ABCD2345"}, headers=caller_headers())

    assert response.status_code == 401
    assert response.json() == {"detail": {"code": "E_UNAUTHENTICATED"}}


def test_redeem_returns_voucher_details(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    service = _RedemptionService()
    _use_service(monkeypatch, service)
    provider_user_id = uuid4()
    customer_id = uuid4()

    client = TestClient(app)
    response = client.post(
        "/redemptions",
        json={
            "code": "abcd-2345",
            "customer_id": str(customer_id),
            "location": {"latitude": 40.4, "longitude": -3.7},
            "device_id": "pos-1",
            "language": "es",
        },
        headers=caller_headers(provider_user_id),
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["voucher_details"] == {
        "title": "Spring Sale",
        "discount": "20%",
        "provider_name": "Corner Cafe",
        "instructions": "Show this confirmation to the staff",
    }
    request = service.requests[0]
    assert request.code == "abcd-2345"
    assert request.acting_user_id == provider_user_id
    assert request.customer_id == customer_id
    assert request.location.latitude == 40.4
    assert request.language == "es"


def test_redeem_rate_limited_sets_retry_after(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    _use_service(monkeypatch, _RedemptionService(error=RateLimitedError(retry_after_seconds=42)))

    client = TestClient(app)
    response = client.post("/redemptions", json={"code": "ABCD2345"}, headers=caller_headers(uuid4()))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "42"
    assert response.json() == {
        "detail": {"code": "RATE_LIMITED", "message": "Too many redemption attempts"},
    }


def test_redeem_maps_domain_errors(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    client = TestClient(app)
    cases = [
        (VoucherExpiredError(), 410, "EXPIRED"),
        (AlreadyRedeemedError(), 409, "ALREADY_REDEEMED"),
        (RedemptionFailedError(), 503, "REDEMPTION_FAILED"),
    ]

    for error, status_code, code in cases:
        _use_service(monkeypatch, _RedemptionService(error=error))
        response = client.post("/redemptions", json={"code": "ABCD2345"}, headers=caller_headers(uuid4()))
        assert response.status_code == status_code
        assert response.json()["detail"]["code"] == code


def test_redeem_validates_payload(monkeypatch) -> None:
    patch_internal_access(monkeypatch)

    client = TestClient(app)
    response = client.post(
        "/redemptions",
        json={"code": "ABCD2345", "location": {"latitude": 91, "longitude": 0}},
        headers=caller_headers(uuid4()),
    )

    assert response.status_code == 422


def test_validate_offline_checks_signature(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    monkeypatch.setattr(
        redemptions,
        "get_offline_validator",
        lambda: OfflineValidator(TokenVerifier(public_key=PUBLIC_KEY_PEM)),
    )
    voucher_id = uuid4()
    token, _ = TokenIssuer(private_key=PRIVATE_KEY_PEM).issue(
        voucher_id=voucher_id,
        customer_id=uuid4(),
        ttl_seconds=600,
        now_utc=NOW,
    )

    client = TestClient(app)
    valid = client.post("/redemptions/validate-offline", json={"token": token}, headers=caller_headers())
    invalid = client.post(
        "/redemptions/validate-offline",
        json={"token": "a.b.c"},
        headers=caller_headers(),
    )

    assert valid.status_code == 200
    assert valid.json()["valid"] is True
    assert valid.json()["voucher_id"] == str(voucher_id)
    assert invalid.json()["valid"] is False
    assert invalid.json()["error"] == "Malformed token"


def test_sync_offline_requires_active_provider(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    user_id = uuid4()
    monkeypatch.setattr(
        redemptions,
        "get_provider_client",
        lambda: FakeProviderClient({user_id: make_provider(active=False)}),
    )

    client = TestClient(app)
    response = client.post(
        "/redemptions/sync-offline",
        json={"redemptions": [{"code": "ABCD2345", "redeemed_at": NOW.isoformat()}]},
        headers=caller_headers(user_id),
    )

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "INVALID_PROVIDER"


def test_sync_offline_returns_per_item_results(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    user_id = uuid4()
    provider = make_provider()
    synced_id = uuid4()
    calls = []

    async def _sync(items, *, provider_id):
        calls.append({"items": items, "provider_id": provider_id})
        return SyncResult(synced_ids=[synced_id], errors=[SyncError(code="ZZZZ9999", error="Short code not found")])

    monkeypatch.setattr(redemptions, "get_provider_client", lambda: FakeProviderClient({user_id: provider}))
    monkeypatch.setattr(redemptions, "get_offline_sync_service", lambda: SimpleNamespace(sync=_sync))

    client = TestClient(app)
    response = client.post(
        "/redemptions/sync-offline",
        json={
            "redemptions": [
                {"code": "ABCD2345", "redeemed_at": (NOW - timedelta(minutes=3)).isoformat()},
                {"code": "ZZZZ9999", "redeemed_at": NOW.isoformat(), "customer_id": str(uuid4())},
            ]
        },
        headers=caller_headers(user_id),
    )

    assert response.status_code == 200
    assert response.json() == {
        "synced_ids": [str(synced_id)],
        "errors": [{"code": "ZZZZ9999", "error": "Short code not found"}],
    }
    assert calls[0]["provider_id"] == provider.id
    assert [item.code for item in calls[0]["items"]] == ["ABCD2345", "ZZZZ9999"]


def test_sync_offline_reports_unavailable_provider_service(monkeypatch) -> None:
    patch_internal_access(monkeypatch)

    class _DownProviderClient:
        async def get_provider_by_user(self, user_id):
            raise ServiceUnavailableError("provider_service", "ConnectError")

    monkeypatch.setattr(redemptions, "get_provider_client", lambda: _DownProviderClient())

    client = TestClient(app)
    response = client.post(
        "/redemptions/sync-offline",
        json={"redemptions": [{"code": "ABCD2345", "redeemed_at": NOW.isoformat()}]},
        headers=caller_headers(uuid4()),
    )

    assert response.status_code == 503
    assert response.json() == {"detail": {"code": "E_DEPENDENCY_UNAVAILABLE"}}


def test_issue_token_for_calling_customer(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    customer_id = uuid4()
    voucher_id = uuid4()
    calls = []

    async def _issue_for_customer(*, voucher_id, customer_id):
        calls.append((voucher_id, customer_id))
        return SimpleNamespace(
            token="header.payload.signature",
            expires_at=NOW + timedelta(days=1),
            short_code="K7M2Q9XA",
            short_code_expires_at=NOW + timedelta(minutes=5),
        )

    monkeypatch.setattr(
        redemptions,
        "get_code_issuer",
        lambda: SimpleNamespace(issue_for_customer=_issue_for_customer),
    )

    client = TestClient(app)
    response = client.post(
        "/redemptions/tokens",
        json={"voucher_id": str(voucher_id)},
        headers=caller_headers(customer_id),
    )

    assert response.status_code == 200
    assert response.json()["short_code"] == "K7M2Q9XA"
    assert calls == [(voucher_id, customer_id)]


def test_create_static_short_code_maps_invalid_format(monkeypatch) -> None:
    patch_internal_access(monkeypatch)

    async def _create_static_code(*, acting_user_id, voucher_id, custom_code):
        raise ValueError("custom short code has invalid format")

    monkeypatch.setattr(
        redemptions,
        "get_code_issuer",
        lambda: SimpleNamespace(create_static_code=_create_static_code),
    )

    client = TestClient(app)
    response = client.post(
        "/redemptions/short-codes/static",
        json={"voucher_id": str(uuid4()), "code": "OOPS0"},
        headers=caller_headers(uuid4()),
    )

    assert response.status_code == 422
    assert response.json() == {"detail": {"code": "E_SHORT_CODE_INVALID"}}


def test_create_static_short_code_returns_code(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    voucher_id = uuid4()

    async def _create_static_code(*, acting_user_id, voucher_id, custom_code):
        return ShortCodeInfo(code="CAFE25", voucher_id=voucher_id, code_type=ShortCodeType.STATIC)

    monkeypatch.setattr(
        redemptions,
        "get_code_issuer",
        lambda: SimpleNamespace(create_static_code=_create_static_code),
    )

    client = TestClient(app)
    response = client.post(
        "/redemptions/short-codes/static",
        json={"voucher_id": str(voucher_id), "code": "cafe-25"},
        headers=caller_headers(uuid4()),
    )

    assert response.status_code == 200
    assert response.json() == {"code": "CAFE25", "voucher_id": str(voucher_id), "type": "static"}


def test_redeem_passes_offline_flag(monkeypatch) -> None:
    patch_internal_access(monkeypatch)
    service = _RedemptionService()
    _use_service(monkeypatch, service)

    client = TestClient(app)
    response = client.post(
        "/redemptions",
        json={"code": "ABCD2345", "offline": True},
        headers=caller_headers(uuid4()),
    )

    assert response.status_code == 200
    assert service.requests[0].offline is True


def _redemption(*, provider_id: UUID | None = None, customer_id: UUID | None = None) -> Redemption:
    return Redemption(
        id=uuid4(),
        voucher_id=uuid4(),
        customer_id=customer_id or uuid4(),
        provider_id=provider_id or uuid4(),
        code="eyJhbGciOiJFUzI1NiJ9.secret.signature",
        customer_sequence=1,
        redeemed_at=NOW,
        latitude=None,
        longitude=None,
        offline=False,
        synced_at=None,
        device_id="pos-1",
    )


class _Queries:
    def __init__(self, redemptions: list[Redemption] | None = None) -> None:
        self.redemptions = redemptions or []
        self.list_calls: list[dict] = []

    async def get_redemption(self, redemption_id):
        return next((item for item in self.redemptions if item.id == redemption_id), None)

    async def list_redemptions(self, **filters):
        self.list_calls.append(filters)
        return list(self.redemptions)

    async def provider_stats(self, provider_id):
        return {
            "provider_id": str(provider_id),
            "total_redemptions": 3,
            "unique_customers": 2,
            "top_vouchers": [{"voucher_id": str(uuid4()), "redemptions": 3}],
        }

    async def voucher_stats(self, voucher_id):
        return {
            "voucher_id": str(voucher_id),
            "total_redemptions": 1,
            "unique_customers": 1,
            "redemptions_by_hour": {"9": 1},
            "redemptions_by_day_of_week": {"1": 1},
        }


def _use_queries(monkeypatch, queries: _Queries, *, providers=None, vouchers=()) -> None:
    patch_internal_access(monkeypatch)
    monkeypatch.setattr(redemptions, "get_redemption_queries", lambda: queries)
    monkeypatch.setattr(redemptions, "get_provider_client", lambda: FakeProviderClient(providers or {}))
    monkeypatch.setattr(redemptions, "get_voucher_client", lambda: FakeVoucherClient(vouchers))


def test_get_redemption_is_visible_to_customer_and_owner_only(monkeypatch) -> None:
    owner_user_id = uuid4()
    provider = make_provider()
    redemption = _redemption(provider_id=provider.id)
    _use_queries(monkeypatch, _Queries([redemption]), providers={owner_user_id: provider})
    client = TestClient(app)
    path = f"/redemptions/{redemption.id}"

    as_customer = client.get(path, headers=caller_headers(redemption.customer_id))
    as_owner = client.get(path, headers=caller_headers(owner_user_id))
    as_stranger = client.get(path, headers=caller_headers(uuid4()))
    missing = client.get(f"/redemptions/{uuid4()}", headers=caller_headers(uuid4(), role="admin"))

    assert as_customer.status_code == 200
    assert as_customer.json()["customer_sequence"] == 1
    assert "code" not in as_customer.json()
    assert as_owner.status_code == 200
    assert as_stranger.status_code == 403
    assert as_stranger.json() == {"detail": {"code": "ACCESS_DENIED"}}
    assert missing.status_code == 404


def test_list_redemptions_is_admin_only(monkeypatch) -> None:
    queries = _Queries([_redemption()])
    _use_queries(monkeypatch, queries)
    client = TestClient(app)
    voucher_id = uuid4()

    denied = client.get("/redemptions", headers=caller_headers(uuid4()))
    allowed = client.get(
        f"/redemptions?voucher_id={voucher_id}&limit=5",
        headers=caller_headers(uuid4(), role="admin"),
    )

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert len(allowed.json()["items"]) == 1
    assert queries.list_calls == [
        {"provider_id": None, "customer_id": None, "voucher_id": voucher_id, "limit": 5}
    ]


def test_provider_redemptions_require_matching_provider(monkeypatch) -> None:
    owner_user_id = uuid4()
    provider = make_provider()
    queries = _Queries([_redemption(provider_id=provider.id)])
    _use_queries(monkeypatch, queries, providers={owner_user_id: provider})
    client = TestClient(app)

    own = client.get(f"/redemptions/provider/{provider.id}", headers=caller_headers(owner_user_id))
    other = client.get(f"/redemptions/provider/{uuid4()}", headers=caller_headers(owner_user_id))

    assert own.status_code == 200
    assert queries.list_calls[0]["provider_id"] == provider.id
    assert other.status_code == 403


def test_customer_redemptions_are_limited_to_self(monkeypatch) -> None:
    customer_id = uuid4()
    queries = _Queries([_redemption(customer_id=customer_id)])
    _use_queries(monkeypatch, queries)
    client = TestClient(app)

    own = client.get(f"/redemptions/customer/{customer_id}", headers=caller_headers(customer_id))
    other = client.get(f"/redemptions/customer/{uuid4()}", headers=caller_headers(customer_id))

    assert own.status_code == 200
    assert queries.list_calls[0]["customer_id"] == customer_id
    assert other.status_code == 403


def test_provider_stats_returns_cached_aggregate(monkeypatch) -> None:
    owner_user_id = uuid4()
    provider = make_provider()
    _use_queries(monkeypatch, _Queries(), providers={owner_user_id: provider})
    client = TestClient(app)

    response = client.get(f"/redemptions/stats/provider/{provider.id}", headers=caller_headers(owner_user_id))

    assert response.status_code == 200
    assert response.json()["total_redemptions"] == 3
    assert response.json()["unique_customers"] == 2


def test_voucher_stats_checks_voucher_ownership(monkeypatch) -> None:
    owner_user_id = uuid4()
    provider = make_provider()
    voucher = make_voucher(provider_id=provider.id)
    foreign_voucher = make_voucher(provider_id=uuid4())
    _use_queries(
        monkeypatch,
        _Queries(),
        providers={owner_user_id: provider},
        vouchers=[voucher, foreign_voucher],
    )
    client = TestClient(app)

    own = client.get(f"/redemptions/stats/voucher/{voucher.id}", headers=caller_headers(owner_user_id))
    foreign = client.get(f"/redemptions/stats/voucher/{foreign_voucher.id}", headers=caller_headers(owner_user_id))
    unknown = client.get(f"/redemptions/stats/voucher/{uuid4()}", headers=caller_headers(owner_user_id))

    assert own.status_code == 200
    assert own.json()["redemptions_by_hour"] == {"9": 1}
    assert foreign.status_code == 403
    assert unknown.status_code == 404
