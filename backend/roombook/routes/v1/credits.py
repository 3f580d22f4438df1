# backend/roombook/routes/v1/credits.py
"""
Credit routes - API v1

Endpoints:
    POST /purchase - Buy a credit package; the credit is granted when the
                     payment webhook confirms the charge
"""

import logging

from fastapi import APIRouter, Body, Depends, status

from ...api.dependencies import get_credit_purchase_service, require_verified_email
from ...auth import AuthContext
from ...core.exceptions import DomainException
from ...integrations.asaas_client import PaymentCustomer
from ...schemas.credit import CreditPurchaseCreate, CreditPurchaseResponse
from ...services.credit_purchase_service import CreditPurchaseService, PurchaseCreditsCommand
from .bookings import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits-v1"])


@router.post(
    "/purchase",
    response_model=CreditPurchaseResponse,
    status_code=status.HTTP_201_CREATED,
)
def purchase_credits(
    purchase_data: CreditPurchaseCreate = Body(...),
    auth: AuthContext = Depends(require_verified_email),
    purchase_service: CreditPurchaseService = Depends(get_credit_purchase_service),
) -> CreditPurchaseResponse:
    customer = None
    if purchase_data.customer is not None:
        customer = PaymentCustomer(
            name=purchase_data.customer.name,
            email=str(purchase_data.customer.email),
            cpf_cnpj=purchase_data.customer.cpf_cnpj,
            phone=purchase_data.customer.phone,
        )
    command = PurchaseCreditsCommand(
        user_id=auth.user_id,
        room_id=purchase_data.room_id,
        usage_type=purchase_data.usage_type,
        quantity=purchase_data.quantity,
        coupon_code=purchase_data.coupon_code,
        payment_method=purchase_data.payment_method,
        customer=customer,
        actor_role=auth.role,
    )
    try:
        created = purchase_service.purchase_credits(command)
    except DomainException as e:
        handle_domain_exception(e)

    return CreditPurchaseResponse(
        purchase_id=created.purchase.id,
        status=created.purchase.status,
        credit_amount=created.purchase.credit_amount,
        amount_to_pay=created.purchase.net_amount,
        payment_url=created.payment_url,
        pix_payload=created.payment.pix_payload,
    )
