"""
Routes module for Ruddy Wallet API
"""

from flask import current_app, jsonify

from common.errors import OpenCheckoutExists, WalletError

SERVICES_KEY = "ruddy_wallet"


def get_services():
    """Services built by create_app for this application"""
    return current_app.extensions[SERVICES_KEY]


def error_response(error: WalletError, status_code: int = None):
    body = {"success": False, "error": error.to_dict()}
    if isinstance(error, OpenCheckoutExists):
        body["existing_transaction"] = {
            "order_id": error.order_id,
            "redirect_url": error.redirect_url,
        }
    return jsonify(body), status_code or error.status_code


def register_error_handlers(app):
    app.register_error_handler(WalletError, error_response)


from .checkout_routes import checkout_bp  # noqa: E402
from .cron_routes import cron_bp  # noqa: E402
from .mailbox_routes import mailbox_bp  # noqa: E402
from .transaction_routes import transaction_bp  # noqa: E402
from .webhook_routes import webhook_bp  # noqa: E402

__all__ = [
    'SERVICES_KEY',
    'get_services',
    'error_response',
    'register_error_handlers',
    'webhook_bp',
    'transaction_bp',
    'mailbox_bp',
    'checkout_bp',
    'cron_bp',
]
