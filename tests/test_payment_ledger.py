"""Status machine, reference generation and the at-most-once claim."""
import asyncio
import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from bookprinta.core.errors import InvalidTransition
from bookprinta.models import Payment
from bookprinta.models.enums import PaymentStatus, PaymentType
from bookprinta.services.payment_ledger import (
    assert_transition,
    can_transition,
    claim_confirmed_payment,
    generate_reference,
    is_lock_conflict,
    new_id,
    sources_of,
    to_base36,
    transition_status,
)


async def _add_payment(session_factory, reference, status=PaymentStatus.PENDING, **fields):
    payment = Payment(
        id=new_id(),
        provider=fields.pop("provider", "PAYSTACK"),
        type=fields.pop("type", PaymentType.EXTRA_PAGES.value),
        amount=fields.pop("amount", Decimal("3000")),
        currency="NGN",
        status=status.value,
        provider_ref=reference,
        **fields,
    )
    async with session_factory() as session:
        session.add(payment)
        await session.commit()
    return payment


async def _load(session_factory, reference):
    async with session_factory() as session:
        return (await session.execute(select(Payment).where(Payment.provider_ref == reference))).scalar_one()


async def _claim(session_factory, reference, **overrides):
    kwargs = dict(
        provider="PAYSTACK",
        reference=reference,
        amount=Decimal("150000"),
        currency="ngn",
        payer_email="ada@example.com",
        metadata={"packageId": "pkg-glow"},
        gateway_response={"status": "success"},
    )
    kwargs.update(overrides)
    async with session_factory() as session:
        result = await claim_confirmed_payment(session, **kwargs)
        await session.commit()
    return result


class TestTransitions:
    @pytest.mark.parametrize("current,target", [
        (PaymentStatus.PENDING, PaymentStatus.SUCCESS),
        (PaymentStatus.PENDING, PaymentStatus.FAILED),
        (PaymentStatus.AWAITING_APPROVAL, PaymentStatus.SUCCESS),
        (PaymentStatus.AWAITING_APPROVAL, PaymentStatus.FAILED),
        (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)
        assert_transition(current.value, target.value)

    @pytest.mark.parametrize("current,target", [
        (PaymentStatus.SUCCESS, PaymentStatus.PENDING),
        (PaymentStatus.SUCCESS, PaymentStatus.FAILED),
        (PaymentStatus.FAILED, PaymentStatus.SUCCESS),
        (PaymentStatus.REFUNDED, PaymentStatus.SUCCESS),
        (PaymentStatus.PENDING, PaymentStatus.AWAITING_APPROVAL),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransition):
            assert_transition(current, target)

    def test_sources_of_success(self):
        assert set(sources_of(PaymentStatus.SUCCESS)) == {"PENDING", "AWAITING_APPROVAL"}
        assert sources_of(PaymentStatus.PENDING) == []

    @pytest.mark.asyncio
    async def test_transition_status_only_moves_from_expected_state(self, session_factory):
        payment = await _add_payment(session_factory, "ep_1_aaaaaaaa")

        async with session_factory() as session:
            assert await transition_status(session, payment.id, PaymentStatus.PENDING, PaymentStatus.FAILED)
            await session.commit()

        async with session_factory() as session:
            moved = await transition_status(session, payment.id, PaymentStatus.PENDING, PaymentStatus.SUCCESS)
            await session.commit()

        assert moved is False
        assert (await _load(session_factory, "ep_1_aaaaaaaa")).status == "FAILED"

    @pytest.mark.asyncio
    async def test_transition_status_refuses_illegal_edge(self, session_factory):
        payment = await _add_payment(session_factory, "ep_2_aaaaaaaa", status=PaymentStatus.FAILED)
        async with session_factory() as session:
            with pytest.raises(InvalidTransition):
                await transition_status(session, payment.id, PaymentStatus.FAILED, PaymentStatus.SUCCESS)


class TestReferences:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"
        assert to_base36(36 ** 3 + 1) == "1001"

    def test_format(self):
        ref = generate_reference("ep")
        assert re.fullmatch(r"ep_[0-9a-z]+_[0-9a-z]{8}", ref)

    def test_default_prefix(self):
        assert generate_reference().startswith("bp_")

    def test_distinct(self):
        refs = {generate_reference("bp") for _ in range(500)}
        assert len(refs) == 500


class TestClaim:
    @pytest.mark.asyncio
    async def test_inserts_success_row_for_unknown_reference(self, session_factory):
        result = await _claim(session_factory, "bp_x_00000001")

        assert result.claimed and result.created
        assert result.payment_type == "INITIAL"
        assert result.needs_materialization

        payment = await _load(session_factory, "bp_x_00000001")
        assert payment.status == "SUCCESS"
        assert payment.processed_at is not None
        assert payment.currency == "NGN"
        assert payment.meta == {"packageId": "pkg-glow"}

    @pytest.mark.asyncio
    async def test_second_claim_is_refused(self, session_factory):
        first = await _claim(session_factory, "bp_x_00000002")
        second = await _claim(session_factory, "bp_x_00000002")

        assert first.claimed
        assert not second.claimed
        async with session_factory() as session:
            count = (await session.execute(
                select(func.count()).select_from(Payment).where(Payment.provider_ref == "bp_x_00000002")
            )).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_flips_pending_row_and_merges_metadata(self, session_factory):
        await _add_payment(
            session_factory, "ep_x_00000003",
            payer_email="owner@example.com",
            meta={"bookId": "b1", "extraPages": 10, "note": "keep"},
        )

        result = await _claim(
            session_factory, "ep_x_00000003",
            payer_email="someone-else@example.com",
            metadata={"extraPages": 12, "channel": "card"},
        )

        assert result.claimed and not result.created
        assert result.payment_type == "EXTRA_PAGES"
        assert not result.needs_materialization

        payment = await _load(session_factory, "ep_x_00000003")
        assert payment.status == "SUCCESS"
        assert payment.processed_at is not None
        assert payment.payer_email == "owner@example.com"
        assert payment.meta == {"bookId": "b1", "extraPages": 12, "note": "keep", "channel": "card"}
        assert payment.gateway_response == {"status": "success"}

    @pytest.mark.asyncio
    async def test_failed_payment_never_becomes_success(self, session_factory):
        await _add_payment(session_factory, "ep_x_00000004", status=PaymentStatus.FAILED)

        result = await _claim(session_factory, "ep_x_00000004")

        assert not result.claimed
        assert (await _load(session_factory, "ep_x_00000004")).status == "FAILED"

    @pytest.mark.asyncio
    async def test_concurrent_claims_apply_once(self, session_factory):
        results = await asyncio.gather(*[_claim(session_factory, "bp_x_00000005") for _ in range(5)])

        assert sum(1 for r in results if r.claimed) == 1
        payment = await _load(session_factory, "bp_x_00000005")
        assert payment.status == "SUCCESS"

    @pytest.mark.asyncio
    async def test_missing_amount_and_currency_fall_back(self, session_factory):
        await _claim(session_factory, "bp_x_00000006", amount=None, currency=None, default_currency="USD")
        payment = await _load(session_factory, "bp_x_00000006")
        assert payment.amount == Decimal("0")
        assert payment.currency == "USD"

    @pytest.mark.asyncio
    async def test_claim_rolls_back_with_the_callers_transaction(self, session_factory):
        async with session_factory() as session:
            result = await claim_confirmed_payment(
                session,
                provider="PAYSTACK",
                reference="bp_x_00000007",
                amount=Decimal("10"),
                currency="NGN",
                payer_email="ada@example.com",
                metadata=None,
                gateway_response=None,
            )
            assert result.claimed
            await session.rollback()

        async with session_factory() as session:
            count = (await session.execute(
                select(func.count()).select_from(Payment).where(Payment.provider_ref == "bp_x_00000007")
            )).scalar_one()
        assert count == 0
        assert (await _claim(session_factory, "bp_x_00000007")).claimed


class TestLockConflicts:
    @pytest.mark.parametrize("orig,expected", [
        (Exception(1213, "Deadlock found when trying to get lock; try restarting transaction"), True),
        (Exception(1205, "Lock wait timeout exceeded"), True),
        (Exception("database is locked"), True),
        (Exception(2013, "Lost connection to MySQL server during query"), False),
    ])
    def test_detection(self, orig, expected):
        assert is_lock_conflict(OperationalError("INSERT INTO payments ...", {}, orig)) is expected
