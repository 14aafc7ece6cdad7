"""
Payment gateway and checkout workflow.

The gateway is built once at startup (see main.lifespan) and handed to the
checkout route through the `get_gateway` dependency, so tests can swap in a fake.
"""
import logging
import math
import os
from typing import Any, Dict, List, Optional

import braintree
from bson.errors import BSONError
from braintree.exceptions.braintree_error import BraintreeError
from fastapi import Request
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

import orders
from database import is_obj_id
from errors import AuthenticationFailed, InvalidCart, OrderNotRecorded, PaymentFailed, ValidationFailed

logger = logging.getLogger(__name__)

BRAINTREE_ENVIRONMENTS = {
    "sandbox": braintree.Environment.Sandbox,
    "production": braintree.Environment.Production,
}


class GatewayUnavailable(Exception):
    pass


class ChargeResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    message: Optional[str] = None


class PaymentGateway:
    """What checkout needs from a payment provider."""

    def generate_token(self) -> str:
        raise NotImplementedError

    def charge(self, amount: str, nonce: str) -> ChargeResult:
        raise NotImplementedError


class BraintreePaymentGateway(PaymentGateway):
    def __init__(self, gateway: braintree.BraintreeGateway):
        self.gateway = gateway

    @classmethod
    def from_env(cls) -> "BraintreePaymentGateway":
        env_name = os.getenv("BRAINTREE_ENVIRONMENT", "sandbox").lower()
        config = braintree.Configuration(
            environment=BRAINTREE_ENVIRONMENTS.get(env_name, braintree.Environment.Sandbox),
            merchant_id=os.getenv("BRAINTREE_MERCHANT_ID"),
            public_key=os.getenv("BRAINTREE_PUBLIC_KEY"),
            private_key=os.getenv("BRAINTREE_PRIVATE_KEY"),
        )
        return cls(braintree.BraintreeGateway(config))

    def generate_token(self) -> str:
        try:
            return self.gateway.client_token.generate()
        except (BraintreeError, OSError) as e:
            raise GatewayUnavailable(str(e) or type(e).__name__)

    def charge(self, amount: str, nonce: str) -> ChargeResult:
        try:
            result = self.gateway.transaction.sale({
                "amount": amount,
                "payment_method_nonce": nonce,
                "options": {"submit_for_settlement": True},
            })
        except (BraintreeError, OSError) as e:
            raise GatewayUnavailable(str(e) or type(e).__name__)

        txn = getattr(result, "transaction", None)
        return ChargeResult(
            success=bool(result.is_success),
            transaction_id=getattr(txn, "id", None),
            status=getattr(txn, "status", None),
            amount=str(txn.amount) if getattr(txn, "amount", None) is not None else amount,
            currency=getattr(txn, "currency_iso_code", None),
            message=None if result.is_success else getattr(result, "message", None),
        )


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


# Checkout

def price_to_cents(price: Any) -> Optional[int]:
    """Integer cents for a cart price, or None when the price is not a finite, non-negative number."""
    if price is None or isinstance(price, bool):
        return None
    if isinstance(price, float) and not math.isfinite(price):
        return None
    if not isinstance(price, (int, float, str)):
        return None
    try:
        value = float(price)
    except (ValueError, OverflowError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return math.floor(value * 100 + 0.5)


def cart_total(cart: List[Dict[str, Any]]) -> str:
    """Sum of the cart prices as a two-decimal string, added up in whole cents."""
    cents = 0
    for item in cart:
        item_cents = price_to_cents(item.get("price") if isinstance(item, dict) else None)
        if item_cents is None:
            raise InvalidCart("Invalid prices in cart")
        cents += item_cents
    return f"{cents // 100}.{cents % 100:02d}"


def checkout(db: Database, gateway: PaymentGateway, buyer_id: str, nonce: Any, cart: Any) -> Dict[str, Any]:
    if not is_obj_id(buyer_id):
        raise AuthenticationFailed("Invalid token")
    if not isinstance(nonce, str) or not nonce.strip():
        raise ValidationFailed("Missing payment nonce")
    if not isinstance(cart, list) or not cart:
        raise ValidationFailed("Cart cannot be empty")
    amount = cart_total(cart)

    try:
        result = gateway.charge(amount, nonce)
    except GatewayUnavailable as e:
        logger.warning("Payment gateway unreachable for buyer %s: %s", buyer_id, e)
        raise PaymentFailed("Payment failed", detail=str(e))
    if not result.success:
        logger.warning("Payment declined for buyer %s: %s", buyer_id, result.message)
        raise PaymentFailed("Payment failed", detail=result.message or "Payment required")

    try:
        order = orders.create_order(db, cart, result.model_dump(), buyer_id)
    except (PyMongoError, BSONError, OverflowError) as e:
        logger.critical(
            "Charge %s of %s for buyer %s succeeded but the order was not saved: %s",
            result.transaction_id, amount, buyer_id, e,
        )
        raise OrderNotRecorded(
            "Payment succeeded but failed to save order",
            transaction_id=result.transaction_id,
            amount=amount,
        )
    logger.info("Order %s created for buyer %s, charged %s", order["_id"], buyer_id, amount)
    return order
