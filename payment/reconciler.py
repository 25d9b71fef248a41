import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional

from supabase import Client

from common.errors import ReconciliationWarning, StoreError, WalletError
from common.store import PENDING_PAYMENTS, SUBSCRIPTIONS

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("pending", "settlement", "expire", "cancel", "deny")

# Reconcile actions
APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
UNKNOWN_ORDER = "unknown_order"


def normalize_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> Optional[str]:
    """
    Map a Midtrans transaction_status onto the payment lifecycle

    Card payments report "capture"; they only count as settled once fraud
    screening accepted them. Returns None for statuses this service does
    not track (e.g. refunds).
    """
    status = (transaction_status or "").strip().lower()
    if status == "capture":
        fraud = (fraud_status or "accept").strip().lower()
        if fraud == "accept":
            return "settlement"
        if fraud == "challenge":
            return "pending"
        return "deny"
    if status == "failure":
        return "deny"
    if status in PAYMENT_STATUSES:
        return status
    return None


@dataclass
class ReconcileOutcome:
    order_id: str
    action: str
    status: Optional[str] = None
    subscription_updated: bool = False
    warning: Optional[ReconciliationWarning] = None
    error: Optional[WalletError] = None

    @property
    def reconciled(self) -> bool:
        return self.error is None

    def to_dict(self):
        data = {
            "order_id": self.order_id,
            "action": self.action,
            "status": self.status,
            "reconciled": self.reconciled,
        }
        if self.warning is not None:
            data["warning"] = self.warning.message
        return data


class WebhookReconciler:
    """
    Applies Midtrans notifications to pending_payments and subscriptions

    Every transition is a conditional update on (order_id, status=pending),
    so a replayed or racing notification can never apply twice, and a
    terminal status is never overwritten.
    """

    def __init__(self, supabase: Client, clock: Optional[Callable[[], datetime]] = None):
        self.supabase = supabase
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(self, notification: Dict) -> ReconcileOutcome:
        order_id = str(notification.get("order_id") or "")
        status = normalize_status(
            notification.get("transaction_status"), notification.get("fraud_status")
        )

        if status is None:
            warning = ReconciliationWarning(
                f"Ignoring untracked status {notification.get('transaction_status')!r}",
                context={"order_id": order_id},
            )
            logger.warning(f"⚠️ {warning.message} for order {order_id}")
            return ReconcileOutcome(order_id=order_id, action=IGNORED, warning=warning)

        try:
            return self._apply(order_id, status, notification)
        except StoreError as e:
            logger.error(f"❌ Could not reconcile order {order_id} ({status}): {e}")
            return ReconcileOutcome(order_id=order_id, action=IGNORED, status=status, error=e)

    def _apply(self, order_id: str, status: str, notification: Dict) -> ReconcileOutcome:
        changes = {
            "status": status,
            "gateway_transaction_id": notification.get("transaction_id"),
            "payment_type": notification.get("payment_type"),
        }
        if status == "settlement":
            changes["paid_at"] = self.clock().isoformat()

        updated = self._transition(order_id, changes)

        if updated is not None:
            payment = updated
            action = APPLIED
            logger.info(f"✅ Order {order_id} -> {status}")
        else:
            payment = self._load(order_id)
            if payment is None:
                warning = ReconciliationWarning(
                    "Webhook for unknown order", context={"order_id": order_id}
                )
                logger.warning(f"⚠️ Webhook for unknown order {order_id} ({status}); nothing updated")
                return ReconcileOutcome(order_id=order_id, action=UNKNOWN_ORDER, status=status, warning=warning)

            if payment.get("status") != status:
                warning = ReconciliationWarning(
                    f"Order already {payment.get('status')}; ignoring {status}",
                    context={"order_id": order_id},
                )
                logger.warning(f"⚠️ {warning.message} for order {order_id}")
                return ReconcileOutcome(
                    order_id=order_id, action=IGNORED, status=payment.get("status"), warning=warning
                )

            action = DUPLICATE
            logger.info(f"🔁 Duplicate {status} notification for order {order_id}")

        self._check_amount(payment, notification)

        outcome = ReconcileOutcome(order_id=order_id, action=action, status=status)
        if status == "settlement":
            outcome.subscription_updated = self._activate_subscription(payment)
            if not outcome.subscription_updated:
                outcome.warning = ReconciliationWarning(
                    "Subscription already started by a later payment",
                    context={"order_id": order_id},
                )
        return outcome

    def _transition(self, order_id: str, changes: Dict) -> Optional[Dict]:
        """
        Update the row only while it is still pending; returns the updated row
        """
        try:
            response = self.supabase.table(PENDING_PAYMENTS).update(changes).eq(
                "order_id", order_id
            ).eq(
                "status", "pending"
            ).execute()
        except Exception as e:
            raise StoreError(f"Failed to update payment {order_id}: {e}") from e

        return response.data[0] if response.data else None

    def _load(self, order_id: str) -> Optional[Dict]:
        try:
            response = self.supabase.table(PENDING_PAYMENTS).select("*").eq(
                "order_id", order_id
            ).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Failed to load payment {order_id}: {e}") from e

        return response.data[0] if response.data else None

    def _activate_subscription(self, payment: Dict) -> bool:
        """
        Upsert the user's subscription from a settled payment

        started_at is the payment's paid_at, so a replayed settlement writes an
        identical row. A subscription started by a later payment is left
        alone; returns False in that case.
        """
        started_at = payment.get("paid_at") or self.clock().isoformat()

        current = self._load_subscription(payment["user_id"])
        if current is not None and _is_later(current.get("started_at"), started_at):
            logger.warning(
                f"⚠️ Order {payment.get('order_id')} settled at {started_at} but the subscription "
                f"for {payment['user_id']} started at {current.get('started_at')}; not replacing it"
            )
            return False

        row = {
            "user_id": payment["user_id"],
            "plan_id": payment["plan_id"],
            "is_active": True,
            "started_at": started_at,
        }

        try:
            self.supabase.table(SUBSCRIPTIONS).upsert(row, on_conflict="user_id").execute()
        except Exception as e:
            raise StoreError(f"Failed to activate subscription for {payment['user_id']}: {e}") from e

        logger.info(f"🎉 Subscription active for {payment['user_id']} (plan {payment['plan_id']})")
        return True

    def _load_subscription(self, user_id: str) -> Optional[Dict]:
        try:
            response = self.supabase.table(SUBSCRIPTIONS).select("*").eq(
                "user_id", user_id
            ).limit(1).execute()
        except Exception as e:
            raise StoreError(f"Failed to load subscription for {user_id}: {e}") from e

        return response.data[0] if response.data else None

    def _check_amount(self, payment: Dict, notification: Dict):
        reported = notification.get("gross_amount")
        stored = payment.get("gross_amount")
        if reported is None or stored is None:
            return
        try:
            matches = Decimal(str(reported)) == Decimal(str(stored))
        except InvalidOperation:
            matches = False
        if not matches:
            logger.warning(
                f"⚠️ Gross amount mismatch for order {payment.get('order_id')}: "
                f"stored {stored}, gateway reported {reported}"
            )


def _parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_later(current_started_at, started_at) -> bool:
    """True when the stored start is strictly after the payment being applied"""
    current = _parse_timestamp(current_started_at)
    candidate = _parse_timestamp(started_at)
    if current is None or candidate is None:
        return False
    return current > candidate
