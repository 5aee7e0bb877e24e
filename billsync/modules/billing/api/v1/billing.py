"""
Billing API Endpoints - Paystack Integration

Provides:
- POST /billing/webhook - Handle Paystack webhooks
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from billsync.modules.billing.api.v1.billing_models import ErrorResponse, WebhookResponse
from billsync.modules.billing.domain.billing import (
    PaystackClient,
    SqlAlchemyBillingStore,
    WebhookHandler,
)
from billsync.shared.core.config import get_settings
from billsync.shared.db.session import get_db

logger = structlog.get_logger()
router = APIRouter(tags=["Billing"])


class _SettingsProxy:
    """Lazy settings accessor to avoid stale module-level configuration."""

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)


settings: Any = _SettingsProxy()


def get_billing_store(db: AsyncSession = Depends(get_db)) -> SqlAlchemyBillingStore:
    return SqlAlchemyBillingStore(db)


def get_paystack_client() -> Optional[PaystackClient]:
    """None without a secret key; handlers then skip provider calls."""
    if not settings.PAYSTACK_SECRET_KEY:
        return None
    return PaystackClient()


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    response_model_exclude_none=True,
    responses={401: {"model": ErrorResponse}},
)
async def handle_webhook(
    request: Request,
    store: SqlAlchemyBillingStore = Depends(get_billing_store),
    client: Optional[PaystackClient] = Depends(get_paystack_client),
) -> Any:
    """
    Handle Paystack webhook events.

    Signature failures are 401. Everything after a valid signature is 200,
    including internal failures, so Paystack does not redeliver.
    """
    payload = await request.body()
    signature = request.headers.get(settings.PAYSTACK_SIGNATURE_HEADER)
    handler = WebhookHandler(store, client=client)
    return await handler.handle(payload, signature)
