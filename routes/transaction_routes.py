from flask import Blueprint, jsonify, request

from common.errors import NotConfigured, ValidationError
from . import get_services

transaction_bp = Blueprint('transaction', __name__)


@transaction_bp.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        "status": "healthy",
        "service": "Ruddy Wallet API",
        "version": "2.0"
    }), 200


@transaction_bp.route('/sync', methods=['POST'])
def sync():
    """
    Run one ingestion pass for a user
    Failures are reported in the body and in the sync log feed
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")

    if not user_id:
        raise ValidationError("user_id is required", context={"field": "user_id"})

    outcome = get_services().orchestrator.run(user_id)

    if outcome.ok:
        status_code = 200
    elif isinstance(outcome.error, NotConfigured):
        status_code = 400
    else:
        status_code = 500

    return jsonify(outcome.to_dict()), status_code


@transaction_bp.route('/sync/logs', methods=['GET'])
def sync_logs():
    """Recent sync outcomes for a user"""
    user_id = request.args.get('user_id')
    if not user_id:
        raise ValidationError("user_id is required", context={"field": "user_id"})

    try:
        limit = max(1, min(int(request.args.get('limit', 20)), 100))
    except ValueError:
        raise ValidationError("limit must be a number", context={"field": "limit"})

    logs = get_services().sync_log.recent(user_id, limit)

    return jsonify({
        "logs": logs,
        "count": len(logs)
    }), 200
