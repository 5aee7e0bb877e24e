"""
Global pytest fixtures for the billsync test suite.

Provides:
- Async database session on a temporary SQLite file
- Billing store / tier resolver / handler context fixtures
- Paystack event payload factories and webhook signing
"""
import hashlib
import hmac
import json
import os
from typing import Any, AsyncGenerator, Callable, Optional
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

# Set test environment BEFORE any billsync imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENCRYPTION_KEY"] = "32-byte-long-test-encryption-key"
os.environ["KDF_SALT"] = "S0RGX1NBTFRfRk9SX1RFU1RJTkdfMzJfQllURVNfT0s="  # Base64 for 'KDF_SALT_FOR_TESTING_32_BYTES_OK'
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_webhook_secret"
os.environ["PAYSTACK_LOOKUP_RETRY_DELAY_SECONDS"] = "0"

from billsync.models.tenant import Tenant  # noqa: E402
from billsync.modules.billing.domain.billing.paystack_client_impl import PaystackClient  # noqa: E402
from billsync.modules.billing.domain.billing.plan_tiers import (  # noqa: E402
    PlanTierEntry,
    PlanTierResolver,
)
from billsync.modules.billing.domain.billing.reconciliation import (  # noqa: E402
    ReconciliationContext,
)
from billsync.modules.billing.domain.billing.subscription_store import (  # noqa: E402
    SqlAlchemyBillingStore,
)
from billsync.shared.core.pricing import PricingTier  # noqa: E402

WEBHOOK_SECRET = "sk_test_webhook_secret"

BASIC_PLAN = "PLN_basic_monthly"
PRO_PLAN = "PLN_pro_monthly"
ENTERPRISE_PLAN = "PLN_enterprise_annual"


@pytest_asyncio.fixture(autouse=True)
async def _reset_http_client():
    """The shared httpx client is bound to the event loop of the test that created it."""
    from billsync.shared.core.http import close_http_client

    yield
    await close_http_client()


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'billing.sqlite'}"
    engine = create_async_engine(db_url, echo=False)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator:
    """Create database tables and provide async session."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    from billsync.shared.db.base import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def tenant(db_session) -> Tenant:
    row = Tenant(id=uuid4(), name="Acme Field Ops")
    db_session.add(row)
    await db_session.commit()
    return row


# ============================================================================
# Billing Fixtures
# ============================================================================

@pytest.fixture
def tiers() -> PlanTierResolver:
    return PlanTierResolver(
        {
            BASIC_PLAN: PlanTierEntry(PricingTier.BASIC, "monthly"),
            PRO_PLAN: PlanTierEntry(PricingTier.PROFESSIONAL, "monthly"),
            ENTERPRISE_PLAN: PlanTierEntry(PricingTier.ENTERPRISE, "annually"),
        }
    )


@pytest.fixture
def store(db_session) -> SqlAlchemyBillingStore:
    return SqlAlchemyBillingStore(db_session)


@pytest.fixture
def paystack_client() -> MagicMock:
    """Spec'd mock; async methods are AsyncMocks."""
    return MagicMock(spec=PaystackClient)


@pytest.fixture
def ctx(store, tiers) -> ReconciliationContext:
    return ReconciliationContext(store=store, tiers=tiers, client=None)


# ============================================================================
# Paystack Payload Factories
# ============================================================================

@pytest.fixture
def charge_success_data() -> Callable[..., dict[str, Any]]:
    def _build(
        tenant_id: Optional[UUID],
        plan_code: Optional[str] = BASIC_PLAN,
        amount: int = 15000,
        reference: str = "T_ref_001",
        paid_at: str = "2024-01-01T09:59:00.000Z",
        reusable: bool = False,
        customer_code: str = "CUS_acme",
    ) -> dict[str, Any]:
        return {
            "reference": reference,
            "amount": amount,
            "status": "success",
            "paid_at": paid_at,
            "metadata": {"tenant_id": str(tenant_id)} if tenant_id else {},
            "plan": {"plan_code": plan_code, "interval": "monthly"} if plan_code else {},
            "customer": {
                "customer_code": customer_code,
                "email": "owner@acme.test",
                "metadata": None,
            },
            "authorization": {
                "authorization_code": "AUTH_acme_card",
                "reusable": reusable,
            },
        }

    return _build


@pytest.fixture
def subscription_create_data() -> Callable[..., dict[str, Any]]:
    def _build(
        tenant_id: Optional[UUID],
        subscription_code: str = "SUB_1",
        plan_code: str = BASIC_PLAN,
        amount: int = 15000,
        created_at: str = "2024-01-01T10:00:00.000Z",
        next_payment_date: Optional[str] = "2024-02-01T00:00:00.000Z",
        status: str = "active",
    ) -> dict[str, Any]:
        return {
            "subscription_code": subscription_code,
            "email_token": f"tok_{subscription_code.lower()}",
            "amount": amount,
            "status": status,
            "createdAt": created_at,
            "next_payment_date": next_payment_date,
            "plan": {"plan_code": plan_code, "interval": "monthly"},
            "customer": {
                "customer_code": "CUS_acme",
                "email": "owner@acme.test",
                "metadata": {"tenant_id": str(tenant_id)} if tenant_id else {},
            },
        }

    return _build


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha512).hexdigest()


@pytest.fixture
def signed_event() -> Callable[[str, Any], tuple[bytes, str]]:
    def _build(event: str, data: Any) -> tuple[bytes, str]:
        payload = json.dumps({"event": event, "data": data}).encode()
        return payload, sign(payload)

    return _build
