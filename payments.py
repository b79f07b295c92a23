"""
Payment processor proxy

The storefront never charges cards itself: the client confirms a Stripe PaymentIntent and passes
its id along with the order. Tests swap the gateway through the get_payment_gateway dependency.
"""
import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends
from pydantic import BaseModel

import config
from errors import Forbidden, InvalidArgument, PaymentUnavailable
from security import get_current_user

logger = logging.getLogger(__name__)


class PaymentGateway:
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def _require_key(self) -> str:
        if not self.api_key:
            raise PaymentUnavailable("Stripe not configured")
        return self.api_key

    def create_payment_intent(self, amount_cents: int, currency: str, metadata: Dict[str, str]) -> Any:
        return stripe.PaymentIntent.create(
            api_key=self._require_key(),
            amount=amount_cents,
            currency=currency,
            metadata=metadata,
            payment_method_types=["card"],
        )

    def retrieve_payment_intent(self, intent_id: str) -> Any:
        return stripe.PaymentIntent.retrieve(intent_id, api_key=self._require_key())


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway(config.STRIPE_SECRET)


class PaymentIntentDTO(BaseModel):
    amount: float


router = APIRouter(prefix="/payment", tags=["payment"])


@router.post("/create-payment-intent")
def create_payment_intent(data: PaymentIntentDTO, user: Dict[str, Any] = Depends(get_current_user),
                          gateway: PaymentGateway = Depends(get_payment_gateway)):
    if data.amount <= 0:
        raise InvalidArgument("Valid amount is required")
    amount_cents = int(round(data.amount * 100))
    try:
        intent = gateway.create_payment_intent(amount_cents, config.PRIMARY_CURRENCY.lower(),
                                               {"userId": str(user["_id"])})
    except stripe.StripeError:
        logger.exception("Payment intent creation failed for user %s", user["_id"])
        raise
    return {"clientSecret": intent.client_secret}


@router.get("/payment-intent/{intent_id}")
def get_payment_intent(intent_id: str, user: Dict[str, Any] = Depends(get_current_user),
                       gateway: PaymentGateway = Depends(get_payment_gateway)):
    intent = gateway.retrieve_payment_intent(intent_id)
    metadata = intent.metadata or {}
    owner = metadata["userId"] if "userId" in metadata else None
    if owner != str(user["_id"]):
        raise Forbidden("Not authorized")
    return {"status": intent.status, "amount": intent.amount / 100}
