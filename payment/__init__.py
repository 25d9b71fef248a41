"""
Subscription payments through Midtrans Snap
Checkout creation and asynchronous notification reconciliation
"""

from .checkout import CheckoutService, CheckoutSession
from .midtrans_client import MidtransSnapClient, SnapTransaction
from .reconciler import ReconcileOutcome, WebhookReconciler

__all__ = [
    'CheckoutService',
    'CheckoutSession',
    'MidtransSnapClient',
    'SnapTransaction',
    'ReconcileOutcome',
    'WebhookReconciler',
]
