"""Bank transfer submission, receipt screening, admin fan-out and approve/reject."""
import asyncio
import base64
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from bookprinta.core.errors import BadRequestError, NotFoundError, ServiceUnavailableError
from bookprinta.models import Book, Notification, Order, Payment, PaymentGateway, User
from bookprinta.services.materializer_service import CheckoutMaterializer
from bookprinta.services.payment_service import PaymentService, ReceiptUpload, parse_data_url

from tests.fakes import FRONTEND, FakeScanner, RecordingNotifier, checkout_metadata, webhook_event

PDF = b"%PDF-1.4\n" + b"0" * 256


def _receipt(content=PDF, content_type="application/pdf", filename="receipt.pdf"):
    return ReceiptUpload(content=content, filename=filename, content_type=content_type)


async def _submit(service, **overrides):
    kwargs = dict(
        payer_name="Ada Obi",
        payer_email="Ada@Example.com",
        payer_phone="+2348012345678",
        amount=Decimal("150000"),
        metadata=checkout_metadata(),
        receipt=_receipt(),
    )
    kwargs.update(overrides)
    return await service.submit_bank_transfer(**kwargs)


async def _count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _get(session_factory, payment_id):
    async with session_factory() as session:
        return await session.get(Payment, payment_id)


class TestDataUrl:
    def test_decodes(self):
        content, mime = parse_data_url("data:image/png;base64," + base64.b64encode(b"png-bytes").decode())
        assert content == b"png-bytes"
        assert mime == "image/png"

    @pytest.mark.parametrize("value", [
        "not-a-data-url",
        "data:image/png,plain",
        "data:image/png;base64,@@@@",
    ])
    def test_malformed(self, value):
        with pytest.raises(BadRequestError):
            parse_data_url(value)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_creates_awaiting_row_with_uploaded_receipt(self, service, session_factory, asset_store, scanner):
        resp = await _submit(service)

        payment = await _get(session_factory, resp.id)
        assert resp.status == "AWAITING_APPROVAL"
        assert payment.provider == "BANK_TRANSFER"
        assert payment.type == "INITIAL"
        assert payment.currency == "NGN"
        assert payment.payer_email == "ada@example.com"
        assert payment.provider_ref.startswith("bt_")
        assert payment.processed_at is None
        assert payment.receipt_url.startswith("https://res.cloudinary.test/")
        assert payment.meta["fullName"] == "Ada Obi"
        assert payment.meta["packageId"] == "pkg-glow"
        assert scanner.scanned == ["receipt.pdf"]
        assert len(asset_store.uploads) == 1

    @pytest.mark.asyncio
    async def test_explicit_currency_is_kept(self, service, session_factory):
        resp = await _submit(service, currency="usd")
        assert (await _get(session_factory, resp.id)).currency == "USD"

    @pytest.mark.asyncio
    async def test_https_receipt_url_is_stored_as_is(self, service, session_factory, scanner, asset_store):
        resp = await _submit(service, receipt=None, receipt_url="https://files.example.com/r.pdf")

        assert (await _get(session_factory, resp.id)).receipt_url == "https://files.example.com/r.pdf"
        assert scanner.scanned == []
        assert asset_store.uploads == []

    @pytest.mark.asyncio
    async def test_data_url_receipt_is_screened_and_uploaded(self, service, scanner, asset_store):
        data_url = "data:application/pdf;base64," + base64.b64encode(PDF).decode()
        await _submit(service, receipt=None, receipt_url=data_url)
        assert scanner.scanned == ["receipt"]
        assert len(asset_store.uploads) == 1

    @pytest.mark.asyncio
    async def test_plain_http_receipt_url_rejected(self, service):
        with pytest.raises(BadRequestError):
            await _submit(service, receipt=None, receipt_url="http://files.example.com/r.pdf")

    @pytest.mark.asyncio
    async def test_without_receipt(self, service, session_factory):
        resp = await _submit(service, receipt=None)
        assert (await _get(session_factory, resp.id)).receipt_url is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("receipt", [
        _receipt(content_type="application/zip", filename="r.zip"),
        _receipt(content=b"", filename="empty.pdf"),
        _receipt(content=b"0" * (10 * 1024 * 1024 + 1), filename="huge.pdf"),
    ])
    async def test_bad_receipt_rejected_before_scan(self, service, session_factory, scanner, asset_store, receipt):
        with pytest.raises(BadRequestError):
            await _submit(service, receipt=receipt)
        assert scanner.scanned == []
        assert asset_store.uploads == []
        assert await _count(session_factory, Payment) == 0

    @pytest.mark.asyncio
    async def test_infected_receipt_rejected(self, session_factory, providers, notifier, asset_store, materializer):
        service = PaymentService(session_factory, providers, notifier, FakeScanner(clean=False), asset_store,
                                 materializer, frontend_url=FRONTEND)
        with pytest.raises(BadRequestError):
            await _submit(service)
        assert asset_store.uploads == []
        assert await _count(session_factory, Payment) == 0
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_scanner_outage_surfaces(self, session_factory, providers, notifier, asset_store, materializer):
        scanner = FakeScanner(error=ServiceUnavailableError("clamd unreachable"))
        service = PaymentService(session_factory, providers, notifier, scanner, asset_store,
                                 materializer, frontend_url=FRONTEND)
        with pytest.raises(ServiceUnavailableError):
            await _submit(service)
        assert await _count(session_factory, Payment) == 0

    @pytest.mark.asyncio
    async def test_disabled_gateway(self, service, session_factory):
        async with session_factory() as session:
            (await session.get(PaymentGateway, "gw-bank")).is_enabled = False
            await session.commit()
        with pytest.raises(ServiceUnavailableError):
            await _submit(service)


class TestFanOut:
    @pytest.mark.asyncio
    async def test_all_channels_notified(self, service, session_factory, notifier):
        resp = await _submit(service)

        assert sorted(notifier.names()) == ["admin_email", "admin_whatsapp", "payer_email"]
        async with session_factory() as session:
            notes = (await session.execute(select(Notification))).scalars().all()
        assert [(n.user_id, n.type) for n in notes] == [("admin-1", "BANK_TRANSFER_RECEIVED")]
        assert notes[0].data["paymentId"] == resp.id

    @pytest.mark.asyncio
    async def test_failing_channels_do_not_affect_submission(self, session_factory, providers, scanner,
                                                             asset_store, materializer):
        notifier = RecordingNotifier(fail={"payer_email", "admin_email", "admin_whatsapp"})
        service = PaymentService(session_factory, providers, notifier, scanner, asset_store,
                                 materializer, frontend_url=FRONTEND)

        resp = await _submit(service)

        assert resp.status == "AWAITING_APPROVAL"
        assert len(notifier.calls) == 3
        assert await _count(session_factory, Notification) == 1


class TestPendingList:
    @pytest.mark.asyncio
    async def test_only_awaiting_transfers_oldest_first(self, service):
        first = await _submit(service, payer_name="First")
        second = await _submit(service, payer_name="Second")
        third = await _submit(service, payer_name="Third")
        await service.reject_bank_transfer(second.id, "admin-1", "No money arrived")

        items = await service.list_pending_bank_transfers()

        assert [i.id for i in items] == [first.id, third.id]
        assert items[0].amount == 150000.0
        assert items[0].payer_name == "First"
        assert items[0].metadata["packageId"] == "pkg-glow"


class TestApprove:
    @pytest.mark.asyncio
    async def test_approval_materializes_and_sends_signup_link(self, service, session_factory, notifier):
        resp = await _submit(service)
        notifier.calls.clear()

        result = await service.approve_bank_transfer(resp.id, "admin-1", "  Matched statement  ")

        assert result.status == "SUCCESS"
        payment = await _get(session_factory, resp.id)
        assert payment.status == "SUCCESS"
        assert payment.approved_by == "admin-1"
        assert payment.approved_at is not None
        assert payment.processed_at is not None
        assert payment.admin_note == "Matched statement"
        assert payment.user_id and payment.order_id
        assert await _count(session_factory, Book) == 1
        assert notifier.names() == ["signup_link"]

    @pytest.mark.asyncio
    async def test_approval_is_one_shot(self, service):
        resp = await _submit(service)
        await service.approve_bank_transfer(resp.id, "admin-1")

        with pytest.raises(BadRequestError):
            await service.approve_bank_transfer(resp.id, "admin-1")
        with pytest.raises(BadRequestError):
            await service.reject_bank_transfer(resp.id, "admin-1", "too late")

    @pytest.mark.asyncio
    async def test_concurrent_approvals(self, service, session_factory):
        resp = await _submit(service)

        results = await asyncio.gather(
            *[service.approve_bank_transfer(resp.id, "admin-1") for _ in range(3)],
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert all(isinstance(r, BadRequestError) for r in results if isinstance(r, Exception))
        assert await _count(session_factory, Order) == 1

    @pytest.mark.asyncio
    async def test_unknown_or_online_payment(self, service, session_factory):
        with pytest.raises(NotFoundError):
            await service.approve_bank_transfer("missing", "admin-1")

        await service.handle_webhook(webhook_event("bp_online"))
        async with session_factory() as session:
            online = (await session.execute(select(Payment).where(Payment.provider_ref == "bp_online"))).scalar_one()
        with pytest.raises(NotFoundError):
            await service.approve_bank_transfer(online.id, "admin-1")

    @pytest.mark.asyncio
    async def test_exhausted_order_numbers_roll_back_approval(self, session_factory, providers, notifier,
                                                              scanner, asset_store):
        async with session_factory() as session:
            session.add(User(id="u-other", email="other@example.com", name="Other"))
            session.add(Order(id="o-taken", order_number="BP-2026-SAME00", user_id="u-other",
                              total_amount=Decimal("1")))
            await session.commit()
        service = PaymentService(
            session_factory, providers, notifier, scanner, asset_store,
            CheckoutMaterializer(order_number_factory=lambda: "BP-2026-SAME00", max_order_number_attempts=2),
            frontend_url=FRONTEND,
        )
        resp = await _submit(service)

        with pytest.raises(ServiceUnavailableError):
            await service.approve_bank_transfer(resp.id, "admin-1")

        payment = await _get(session_factory, resp.id)
        assert payment.status == "AWAITING_APPROVAL"
        assert payment.approved_by is None
        assert payment.user_id is None


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_requires_note(self, service, session_factory):
        resp = await _submit(service)
        with pytest.raises(BadRequestError):
            await service.reject_bank_transfer(resp.id, "admin-1", "   ")
        assert (await _get(session_factory, resp.id)).status == "AWAITING_APPROVAL"

    @pytest.mark.asyncio
    async def test_reject(self, service, session_factory):
        resp = await _submit(service)

        result = await service.reject_bank_transfer(resp.id, "admin-1", "Amount does not match")

        assert result.status == "FAILED"
        payment = await _get(session_factory, resp.id)
        assert payment.status == "FAILED"
        assert payment.admin_note == "Amount does not match"
        assert payment.user_id is None
        assert await _count(session_factory, Order) == 0

        with pytest.raises(BadRequestError):
            await service.approve_bank_transfer(resp.id, "admin-1")
