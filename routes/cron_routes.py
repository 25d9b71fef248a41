import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from . import get_services

logger = logging.getLogger(__name__)

cron_bp = Blueprint('cron', __name__)


@cron_bp.route('/cron/sync', methods=['POST'])
def sync_all():
    """
    Endpoint to sync every connected mailbox
    Called by the Railway cron job
    """
    services = get_services()
    expected_key = services.config.cron_api_key
    api_key = request.headers.get('Authorization')

    if expected_key and api_key != f"Bearer {expected_key}":
        return jsonify({"error": "Unauthorized"}), 401

    logger.info("🔔 Mailbox sync cron job triggered")
    outcomes = services.orchestrator.run_all()

    return jsonify({
        "success": True,
        "users": len(outcomes),
        "failed": sum(1 for outcome in outcomes if not outcome.ok),
        "processed": sum(outcome.processed for outcome in outcomes),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }), 200
