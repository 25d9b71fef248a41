import logging
from datetime import datetime, timezone

import pytest

from payment.reconciler import (
    APPLIED,
    DUPLICATE,
    IGNORED,
    UNKNOWN_ORDER,
    WebhookReconciler,
    normalize_status,
)

PAID_AT = datetime(2025, 10, 9, 8, 30, tzinfo=timezone.utc)


@pytest.fixture()
def reconciler(db):
    return WebhookReconciler(db, clock=lambda: PAID_AT)


@pytest.fixture()
def pending(db):
    return db.add("pending_payments", {
        "order_id": "sub-abc",
        "user_id": "user-1",
        "plan_id": "plan-uuid-pro",
        "gross_amount": 49000,
        "status": "pending",
    })


def notification(status="settlement", **extra):
    payload = {
        "order_id": "sub-abc",
        "transaction_status": status,
        "transaction_id": "tx-1",
        "payment_type": "bank_transfer",
        "gross_amount": "49000.00",
        "status_code": "200",
    }
    payload.update(extra)
    return payload


def test_settlement_activates_subscription(reconciler, db, pending):
    outcome = reconciler.reconcile(notification())

    assert outcome.action == APPLIED
    assert outcome.subscription_updated
    [payment] = db.rows("pending_payments")
    assert payment["status"] == "settlement"
    assert payment["gateway_transaction_id"] == "tx-1"
    assert payment["payment_type"] == "bank_transfer"
    assert payment["paid_at"] == PAID_AT.isoformat()
    [subscription] = db.rows("subscriptions")
    assert subscription["user_id"] == "user-1"
    assert subscription["plan_id"] == "plan-uuid-pro"
    assert subscription["is_active"] is True
    assert subscription["started_at"] == PAID_AT.isoformat()


def test_replayed_settlement_converges(db, pending):
    WebhookReconciler(db, clock=lambda: PAID_AT).reconcile(notification())
    first = db.rows("subscriptions")

    later = datetime(2025, 10, 10, tzinfo=timezone.utc)
    outcome = WebhookReconciler(db, clock=lambda: later).reconcile(notification())

    assert outcome.action == DUPLICATE
    assert outcome.reconciled
    assert db.rows("subscriptions") == first
    assert db.rows("pending_payments")[0]["paid_at"] == PAID_AT.isoformat()


def test_subscription_for_existing_user_is_replaced(reconciler, db, pending):
    db.add("subscriptions", {"user_id": "user-1", "plan_id": "plan-basic", "is_active": False})

    reconciler.reconcile(notification())

    [subscription] = db.rows("subscriptions")
    assert subscription["plan_id"] == "plan-uuid-pro"
    assert subscription["is_active"] is True


def test_unknown_order_changes_nothing(reconciler, db, pending, caplog):
    with caplog.at_level(logging.WARNING):
        outcome = reconciler.reconcile(notification(order_id="sub-missing"))

    assert outcome.action == UNKNOWN_ORDER
    assert outcome.reconciled
    assert outcome.warning is not None
    assert "sub-missing" in caplog.text
    assert db.rows("pending_payments")[0]["status"] == "pending"
    assert db.rows("subscriptions") == []


def test_terminal_status_is_not_overwritten(reconciler, db, pending):
    reconciler.reconcile(notification("expire"))

    outcome = reconciler.reconcile(notification("settlement"))

    assert outcome.action == IGNORED
    assert outcome.status == "expire"
    assert db.rows("pending_payments")[0]["status"] == "expire"
    assert db.rows("subscriptions") == []


def test_expiry_does_not_touch_subscription(reconciler, db, pending):
    outcome = reconciler.reconcile(notification("expire"))

    assert outcome.action == APPLIED
    assert not outcome.subscription_updated
    assert "paid_at" not in db.rows("pending_payments")[0]
    assert db.rows("subscriptions") == []


def test_challenged_capture_stays_pending(reconciler, db, pending):
    outcome = reconciler.reconcile(notification("capture", fraud_status="challenge"))

    assert outcome.status == "pending"
    assert db.rows("pending_payments")[0]["status"] == "pending"
    assert db.rows("subscriptions") == []

    reconciler.reconcile(notification("capture", fraud_status="accept"))

    assert db.rows("pending_payments")[0]["status"] == "settlement"
    assert len(db.rows("subscriptions")) == 1


def test_untracked_status_is_ignored(reconciler, db, pending):
    outcome = reconciler.reconcile(notification("refund"))

    assert outcome.action == IGNORED
    assert outcome.warning is not None
    assert db.ops("pending_payments", "update") == []


def test_amount_mismatch_is_logged(reconciler, db, pending, caplog):
    with caplog.at_level(logging.WARNING):
        outcome = reconciler.reconcile(notification(gross_amount="10000.00"))

    assert outcome.action == APPLIED
    assert "mismatch" in caplog.text


def test_store_failure_is_reported_not_raised(reconciler, db, pending):
    db.fail("pending_payments", "update")

    outcome = reconciler.reconcile(notification())

    assert not outcome.reconciled
    assert db.rows("pending_payments")[0]["status"] == "pending"


def test_subscription_failure_after_transition(reconciler, db, pending):
    db.fail("subscriptions", "upsert")

    outcome = reconciler.reconcile(notification())

    assert not outcome.reconciled
    assert db.rows("pending_payments")[0]["status"] == "settlement"


@pytest.mark.parametrize("status, fraud, expected", [
    ("settlement", None, "settlement"),
    ("capture", None, "settlement"),
    ("capture", "accept", "settlement"),
    ("capture", "challenge", "pending"),
    ("capture", "deny", "deny"),
    ("failure", None, "deny"),
    ("EXPIRE", None, "expire"),
    ("cancel", None, "cancel"),
    ("pending", None, "pending"),
    ("refund", None, None),
    (None, None, None),
])
def test_normalize_status(status, fraud, expected):
    assert normalize_status(status, fraud) == expected


def test_replay_of_older_order_keeps_newer_subscription(db):
    for order_id, plan_id in (("sub-a", "plan-basic"), ("sub-b", "plan-pro")):
        db.add("pending_payments", {
            "order_id": order_id,
            "user_id": "user-1",
            "plan_id": plan_id,
            "gross_amount": 49000,
            "status": "pending",
        })
    january = datetime(2025, 1, 1, tzinfo=timezone.utc)
    february = datetime(2025, 2, 1, tzinfo=timezone.utc)
    march = datetime(2025, 3, 1, tzinfo=timezone.utc)

    WebhookReconciler(db, clock=lambda: january).reconcile(notification(order_id="sub-a"))
    WebhookReconciler(db, clock=lambda: february).reconcile(notification(order_id="sub-b"))
    outcome = WebhookReconciler(db, clock=lambda: march).reconcile(notification(order_id="sub-a"))

    assert outcome.action == DUPLICATE
    assert outcome.reconciled
    assert not outcome.subscription_updated
    assert outcome.warning is not None
    [subscription] = db.rows("subscriptions")
    assert subscription["plan_id"] == "plan-pro"
    assert subscription["started_at"] == february.isoformat()
    assert len(db.ops("subscriptions", "upsert")) == 2


def test_replay_restores_missing_subscription(reconciler, db, pending):
    reconciler.reconcile(notification())
    db.tables["subscriptions"].clear()

    outcome = reconciler.reconcile(notification())

    assert outcome.action == DUPLICATE
    assert outcome.subscription_updated
    assert db.rows("subscriptions")[0]["started_at"] == PAID_AT.isoformat()
