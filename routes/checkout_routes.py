from flask import Blueprint, jsonify, request

from common.errors import ValidationError
from . import error_response, get_services

checkout_bp = Blueprint('checkout', __name__)


@checkout_bp.route('/checkout', methods=['POST'])
def checkout():
    """
    Start a subscription checkout
    Returns the Snap redirect URL, or the existing one if a checkout is still open
    """
    if not request.is_json:
        raise ValidationError("Invalid Content-Type")

    data = request.get_json(silent=True) or {}

    result = get_services().checkout.initiate_checkout(
        user_id=data.get("user_id"),
        plan_slug=data.get("plan_id"),
        email=data.get("email"),
        plan_name=data.get("plan_name"),
        amount=data.get("amount"),
    )

    if not result.ok:
        return error_response(result.error)

    return jsonify({
        "success": True,
        "redirect_url": result.value.redirect_url,
        "order_id": result.value.order_id
    }), 200


@checkout_bp.route('/checkout/pending', methods=['GET'])
def pending_checkout():
    """Open checkout for a user, so the UI can resume it"""
    user_id = request.args.get('user_id')
    if not user_id:
        raise ValidationError("user_id is required", context={"field": "user_id"})

    existing = get_services().checkout.find_open_checkout(user_id)
    if not existing:
        return jsonify({"pending": None}), 200

    return jsonify({
        "pending": {
            "order_id": existing["order_id"],
            "redirect_url": existing.get("redirect_url"),
            "gross_amount": existing.get("gross_amount"),
            "created_at": existing.get("created_at")
        }
    }), 200
