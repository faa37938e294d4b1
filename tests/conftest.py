"""Fixtures: a throwaway SQLite database per test and a PaymentService wired to fakes."""
import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool

from bookprinta.core.database import Base, build_engine, build_sessionmaker
from bookprinta.models.enums import PaymentProvider
from bookprinta.services.materializer_service import CheckoutMaterializer
from bookprinta.services.payment_service import PaymentService

from tests.fakes import FRONTEND, FakeAssetStore, FakeProvider, FakeScanner, RecordingNotifier, seed_catalog


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = build_sessionmaker(engine)
    await seed_catalog(factory)
    yield factory
    await engine.dispose()


@pytest.fixture
def providers():
    return {
        PaymentProvider.PAYSTACK.value: FakeProvider(
            PaymentProvider.PAYSTACK.value, claims=lambda ref: not ref.startswith("cs_")
        ),
        PaymentProvider.STRIPE.value: FakeProvider(
            PaymentProvider.STRIPE.value,
            claims=lambda ref: ref.startswith("cs_"),
            issue_reference=lambda ref: f"cs_test_{ref[-8:]}",
        ),
        PaymentProvider.PAYPAL.value: FakeProvider(
            PaymentProvider.PAYPAL.value,
            claims=lambda ref: len(ref) == 17 and ref.isupper(),
        ),
    }


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scanner():
    return FakeScanner()


@pytest.fixture
def asset_store():
    return FakeAssetStore()


@pytest.fixture
def materializer():
    return CheckoutMaterializer()


@pytest.fixture
def service(session_factory, providers, notifier, scanner, asset_store, materializer):
    return PaymentService(
        session_factory=session_factory,
        providers=providers,
        notifier=notifier,
        scanner=scanner,
        asset_store=asset_store,
        materializer=materializer,
        frontend_url=FRONTEND,
    )
