import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from supabase import Client

from common.errors import (
    CheckoutInconsistency,
    OpenCheckoutExists,
    PlanNotFound,
    Result,
    StoreError,
    ValidationError,
    WalletError,
)
from common.store import PENDING_PAYMENTS, PLANS
from .midtrans_client import MidtransSnapClient

logger = logging.getLogger(__name__)

# Midtrans accepts order ids up to 50 characters; "sub-" plus 16 hex chars is 20
ORDER_PREFIX = "sub-"
ORDER_SUFFIX_BYTES = 8
MAX_ORDER_ID_LENGTH = 50

OPEN_STATUSES = ("pending",)


@dataclass
class CheckoutSession:
    order_id: str
    redirect_url: str


def generate_order_id() -> str:
    return f"{ORDER_PREFIX}{secrets.token_hex(ORDER_SUFFIX_BYTES)}"


def parse_amount(amount: Any) -> int:
    """
    Gross amounts are whole rupiah; reject anything else
    """
    if isinstance(amount, bool):
        raise ValidationError("Amount must be a number", context={"field": "amount"})
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", context={"field": "amount"})

    if not value.is_finite() or value <= 0 or value != value.to_integral_value():
        raise ValidationError("Amount must be a positive whole number", context={"field": "amount"})
    return int(value)


class CheckoutService:
    """
    Starts a subscription payment

    A redirect URL is only ever returned for an order that exists both at
    the gateway and in pending_payments.
    """

    def __init__(self, supabase: Client, gateway: MidtransSnapClient):
        self.supabase = supabase
        self.gateway = gateway

    def resolve_plan(self, plan_slug: str) -> Dict:
        try:
            response = self.supabase.table(PLANS).select("*").eq(
                "slug", plan_slug
            ).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Failed to load plan: {e}") from e

        if not response.data:
            raise PlanNotFound("Plan not found", context={"plan_id": plan_slug})
        return response.data[0]

    def find_open_checkout(self, user_id: str) -> Optional[Dict]:
        """Latest unresolved payment for the user, if any"""
        try:
            response = self.supabase.table(PENDING_PAYMENTS).select("*").eq(
                "user_id", user_id
            ).in_(
                "status", list(OPEN_STATUSES)
            ).order(
                "created_at", desc=True
            ).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Failed to look up open checkouts: {e}") from e

        return response.data[0] if response.data else None

    def _check_price(self, plan: Dict, gross_amount: int):
        price = plan.get("price")
        if price is None:
            return
        try:
            matches = Decimal(str(price)) == gross_amount
        except InvalidOperation:
            matches = False
        if not matches:
            raise ValidationError(
                "Amount does not match the plan price",
                context={"plan_id": plan.get("slug"), "price": price, "amount": gross_amount},
            )

    def initiate_checkout(
        self,
        user_id: str,
        plan_slug: str,
        email: str,
        plan_name: str,
        amount: Any,
    ) -> Result[CheckoutSession]:
        try:
            return Result.success(self._initiate(user_id, plan_slug, email, plan_name, amount))
        except WalletError as e:
            return Result.failure(e)

    def _initiate(self, user_id, plan_slug, email, plan_name, amount) -> CheckoutSession:
        missing = [
            name for name, value in (
                ("user_id", user_id),
                ("plan_id", plan_slug),
                ("email", email),
                ("plan_name", plan_name),
                ("amount", amount),
            ) if value in (None, "")
        ]
        if missing:
            raise ValidationError("Missing required fields", context={"fields": missing})

        gross_amount = parse_amount(amount)
        plan = self.resolve_plan(plan_slug)
        self._check_price(plan, gross_amount)

        existing = self.find_open_checkout(user_id)
        if existing:
            logger.info(f"↩️ User {user_id} already has open checkout {existing['order_id']}")
            raise OpenCheckoutExists(existing["order_id"], existing.get("redirect_url"))

        order_id = generate_order_id()
        line_items = [{
            "id": plan_slug,
            "price": gross_amount,
            "quantity": 1,
            "name": f"Subscription {plan_name}",
        }]

        gateway_result = self.gateway.create_transaction(order_id, gross_amount, email, line_items)
        if not gateway_result.ok:
            logger.error(f"❌ Checkout failed at gateway for {user_id}: {gateway_result.error}")
            raise gateway_result.error

        redirect_url = gateway_result.value.redirect_url
        row = {
            "order_id": order_id,
            "user_id": user_id,
            "plan_id": plan["id"],
            "gross_amount": gross_amount,
            "status": "pending",
            "redirect_url": redirect_url,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            self.supabase.table(PENDING_PAYMENTS).insert(row).execute()
        except Exception as e:
            logger.error(
                f"❌ Gateway order {order_id} created for {user_id} but pending payment "
                f"was not stored: {e}"
            )
            raise CheckoutInconsistency(
                order_id, "Payment was created at the gateway but could not be recorded"
            ) from e

        logger.info(f"✅ Checkout {order_id} created for {user_id} ({plan_slug}, {gross_amount:,})")
        return CheckoutSession(order_id=order_id, redirect_url=redirect_url)
