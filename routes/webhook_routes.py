import logging
from functools import wraps

from flask import Blueprint, g, jsonify, request

from . import get_services

logger = logging.getLogger(__name__)

webhook_bp = Blueprint('webhook', __name__, url_prefix='/webhook')


def verify_midtrans_signature(f):
    """Decorator to verify the signature_key Midtrans puts on every notification"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        payload = request.get_json(silent=True)

        if not payload or not isinstance(payload, dict):
            return jsonify({"error": "No data provided"}), 400

        if not payload.get("order_id"):
            return jsonify({"error": "order_id is required"}), 400

        if not get_services().gateway.verify_signature(payload):
            logger.warning(f"⛔ Rejected notification with bad signature for order {payload.get('order_id')}")
            return jsonify({"error": "Invalid signature"}), 403

        g.notification = payload
        return f(*args, **kwargs)

    return decorated_function


@webhook_bp.route('', methods=['POST'])
@webhook_bp.route('/midtrans', methods=['POST'])
@verify_midtrans_signature
def receive_midtrans():
    """
    Midtrans notification endpoint
    Always answers 200 for authentic payloads so the gateway stops retrying;
    problems are logged instead.
    """
    payload = g.notification

    logger.info(
        f"💳 Midtrans notification: order={payload.get('order_id')} "
        f"status={payload.get('transaction_status')} "
        f"type={payload.get('payment_type')} "
        f"amount={payload.get('gross_amount')}"
    )

    outcome = get_services().reconciler.reconcile(payload)

    return jsonify({
        "message": "Webhook received",
        **outcome.to_dict()
    }), 200
