"""HTTP surface: payments router, admin router and health check."""
import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.pool import NullPool

from bookprinta.api.deps import get_payment_service
from bookprinta.core.database import Base, build_engine, build_sessionmaker, get_db
from bookprinta.models import Payment, User
from bookprinta.server import app
from bookprinta.services.materializer_service import CheckoutMaterializer
from bookprinta.services.payment_service import PaymentService

from tests.fakes import (
    FRONTEND,
    FakeAssetStore,
    FakeProvider,
    FakeScanner,
    RecordingNotifier,
    checkout_metadata,
    confirmed,
    create_token,
    seed_catalog,
)

PDF = b"%PDF-1.4\n" + b"0" * 128


@pytest.fixture
def api(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    factory = build_sessionmaker(engine)

    async def prepare():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await seed_catalog(factory)
        async with factory() as session:
            session.add(User(id="u-1", email="writer@example.com", name="Writer", password_hash="h", is_verified=True))
            await session.commit()

    asyncio.run(prepare())

    providers = {
        "PAYSTACK": FakeProvider("PAYSTACK", claims=lambda ref: not ref.startswith("cs_")),
        "STRIPE": FakeProvider("STRIPE", claims=lambda ref: ref.startswith("cs_")),
        "PAYPAL": FakeProvider("PAYPAL", claims=lambda ref: False),
    }
    notifier = RecordingNotifier()
    service = PaymentService(
        session_factory=factory,
        providers=providers,
        notifier=notifier,
        scanner=FakeScanner(),
        asset_store=FakeAssetStore(),
        materializer=CheckoutMaterializer(),
        frontend_url=FRONTEND,
    )

    async def override_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_payment_service] = lambda: service
    app.dependency_overrides[get_db] = override_db
    client = TestClient(app)
    client.service = service
    client.providers = providers
    client.notifier = notifier
    client.factory = factory
    yield client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def _auth(user_id, email, role="USER"):
    return {"Authorization": f"Bearer {create_token(user_id, email, role)}"}


def _payment(api, reference):
    async def load():
        async with api.factory() as session:
            return (await session.execute(select(Payment).where(Payment.provider_ref == reference))).scalar_one()
    return asyncio.run(load())


def _bank_transfer_form(**overrides):
    data = {
        "payer_name": "Ada Obi",
        "payer_email": "ada@example.com",
        "payer_phone": "+2348012345678",
        "amount": "150000",
        "metadata": json.dumps(checkout_metadata()),
    }
    data.update(overrides)
    return data


class TestCheckout:
    def test_gateways(self, api):
        resp = api.get("/api/payments/gateways")
        assert resp.status_code == 200
        assert [g["provider"] for g in resp.json()] == ["BANK_TRANSFER", "PAYSTACK", "STRIPE", "PAYPAL"]

    def test_initialize(self, api):
        resp = api.post("/api/payments/initialize", json={
            "provider": "PAYSTACK", "email": "ada@example.com", "amount": 150000, "currency": "ngn",
            "metadata": checkout_metadata(),
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["provider"] == "PAYSTACK"
        assert body["reference"].startswith("bp_")
        assert api.providers["PAYSTACK"].init_calls[0]["currency"] == "NGN"

    def test_initialize_validation(self, api):
        assert api.post("/api/payments/initialize", json={"provider": "PAYSTACK", "amount": -5}).status_code == 422
        assert api.post("/api/payments/initialize", json={"provider": "CASH", "amount": 5}).status_code == 422

    def test_initialize_paystack_without_email(self, api):
        resp = api.post("/api/payments/initialize", json={"provider": "PAYSTACK", "amount": 10})
        assert resp.status_code == 400

    def test_verify_unknown(self, api):
        assert api.get("/api/payments/verify/bp_unknown_ref").status_code == 404

    def test_verify_confirms(self, api):
        api.providers["PAYSTACK"].results["bp_api_1"] = confirmed("bp_api_1")

        resp = api.get("/api/payments/verify/bp_api_1")

        body = resp.json()
        assert resp.status_code == 200
        assert body["verified"] is True
        assert body["signup_url"].startswith(f"{FRONTEND}/fr/signup/finish?token=")
        assert body["awaiting_webhook"] is False

    def test_verify_with_provider_hint(self, api):
        api.providers["STRIPE"].results["cs_api_1"] = confirmed("cs_api_1")
        resp = api.get("/api/payments/verify/cs_api_1", params={"provider": "STRIPE"})
        assert resp.json()["provider"] == "STRIPE"


class TestExtraPages:
    def test_requires_auth(self, api):
        resp = api.post("/api/payments/extra-pages", json={"book_id": "b", "provider": "PAYSTACK", "extra_pages": 2})
        assert resp.status_code == 401

    def test_unknown_book(self, api):
        resp = api.post(
            "/api/payments/extra-pages",
            json={"book_id": "missing", "provider": "PAYSTACK", "extra_pages": 2},
            headers=_auth("u-1", "writer@example.com"),
        )
        assert resp.status_code == 404


class TestWebhooks:
    def _post(self, api, body, signature="good-signature"):
        return api.post(
            "/api/payments/webhooks/paystack",
            content=json.dumps(body),
            headers={"x-paystack-signature": signature, "content-type": "application/json"},
        )

    def test_applies_once(self, api):
        body = {"reference": "bp_hook_1", "amount": 150000, "email": "ada@example.com",
                "metadata": checkout_metadata()}

        first = self._post(api, body)
        second = self._post(api, body)

        assert first.status_code == 200 and first.json()["message"] == "processed"
        assert second.json()["message"] == "already processed"
        assert _payment(api, "bp_hook_1").order_id is not None
        assert api.notifier.names() == ["signup_link"]

    def test_bad_signature(self, api):
        resp = self._post(api, {"reference": "bp_hook_2", "amount": 1}, signature="forged")
        assert resp.status_code == 400

    def test_stripe_route(self, api):
        resp = api.post(
            "/api/payments/webhooks/stripe",
            content=json.dumps({"reference": "cs_hook_1", "amount": 10, "completed": False}),
            headers={"stripe-signature": "good-signature"},
        )
        assert resp.json()["message"] == "ignored"


class TestBankTransferApi:
    def test_multipart_with_receipt(self, api):
        resp = api.post(
            "/api/payments/bank-transfer",
            data=_bank_transfer_form(),
            files={"receipt": ("receipt.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "AWAITING_APPROVAL"
        assert sorted(api.notifier.names()) == ["admin_email", "admin_whatsapp", "payer_email"]

    def test_json_body(self, api):
        payload = _bank_transfer_form(amount=5000, currency="usd", metadata=checkout_metadata())
        resp = api.post("/api/payments/bank-transfer", json=payload)
        assert resp.status_code == 200

    def test_rejects_unsupported_receipt(self, api):
        resp = api.post(
            "/api/payments/bank-transfer",
            data=_bank_transfer_form(),
            files={"receipt": ("receipt.exe", b"MZ....", "application/octet-stream")},
        )
        assert resp.status_code == 400

    def test_missing_fields(self, api):
        resp = api.post("/api/payments/bank-transfer", json={"payer_name": "Ada", "amount": 10})
        assert resp.status_code == 422

    def test_bad_metadata_json(self, api):
        resp = api.post(
            "/api/payments/bank-transfer",
            data=_bank_transfer_form(metadata="{nope"),
            files={"receipt": ("receipt.pdf", PDF, "application/pdf")},
        )
        assert resp.status_code == 400


class TestAdmin:
    def _submit(self, api):
        resp = api.post("/api/payments/bank-transfer", json=_bank_transfer_form(metadata=checkout_metadata()))
        return resp.json()["id"]

    def test_requires_admin(self, api):
        assert api.get("/api/admin/payments/bank-transfers/pending").status_code == 401
        resp = api.get("/api/admin/payments/bank-transfers/pending", headers=_auth("u-1", "writer@example.com"))
        assert resp.status_code == 403

    def test_pending_approve_flow(self, api):
        payment_id = self._submit(api)
        admin = _auth("admin-1", "admin@bookprinta.test", "ADMIN")

        pending = api.get("/api/admin/payments/bank-transfers/pending", headers=admin).json()
        assert pending["total"] == 1 and pending["items"][0]["id"] == payment_id

        resp = api.post(f"/api/admin/payments/{payment_id}/approve", json={"admin_note": "ok"}, headers=admin)
        assert resp.status_code == 200 and resp.json()["status"] == "SUCCESS"

        again = api.post(f"/api/admin/payments/{payment_id}/approve", json={}, headers=admin)
        assert again.status_code == 400
        assert api.get("/api/admin/payments/bank-transfers/pending", headers=admin).json()["total"] == 0

    def test_reject_requires_note(self, api):
        payment_id = self._submit(api)
        admin = _auth("admin-1", "admin@bookprinta.test", "ADMIN")

        assert api.post(f"/api/admin/payments/{payment_id}/reject", json={}, headers=admin).status_code == 422
        resp = api.post(f"/api/admin/payments/{payment_id}/reject", json={"admin_note": "No funds"}, headers=admin)
        assert resp.status_code == 200 and resp.json()["status"] == "FAILED"

    def test_unknown_payment(self, api):
        admin = _auth("admin-1", "admin@bookprinta.test", "ADMIN")
        assert api.post("/api/admin/payments/missing/approve", json={}, headers=admin).status_code == 404


class TestHealth:
    def test_ok(self, api):
        resp = api.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "checks": {"database": {"status": "ok"}, "scanner": {"status": "ok"}},
        }
