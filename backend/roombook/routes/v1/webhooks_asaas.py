# backend/roombook/routes/v1/webhooks_asaas.py
"""
Asaas payment webhook - API v1

    POST /webhooks/asaas

Authenticated by the shared ``asaas-access-token`` header. Every
authenticated delivery is answered 200 so the gateway stops retrying;
failures are kept in the webhook ledger for replay.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from ...api.dependencies import get_webhook_service, require_webhook_token
from ...schemas.operations import WebhookAckResponse
from ...services.payment_webhook_service import PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks-v1"])


@router.post(
    "/asaas",
    response_model=WebhookAckResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_webhook_token)],
)
def asaas_webhook(
    payload: Dict[str, Any] = Body(...),
    webhook_service: PaymentWebhookService = Depends(get_webhook_service),
) -> WebhookAckResponse:
    ack = webhook_service.apply_payment_webhook(payload)
    return WebhookAckResponse(
        status=ack.status,
        duplicate=True if ack.duplicate else None,
        event_id=ack.event_id,
    )
