import logging

from flask import Blueprint, jsonify, request

from common.errors import AuthError, ValidationError, WalletError
from inbox import MailboxCredential
from . import error_response, get_services

logger = logging.getLogger(__name__)

mailbox_bp = Blueprint('mailbox', __name__, url_prefix='/mailbox')


def connection_error(error: WalletError):
    """A rejected grant is the user's to fix (400); provider outages keep their own status"""
    return error_response(error, 400 if isinstance(error, AuthError) else None)


@mailbox_bp.route('/connect', methods=['POST'])
def connect():
    """
    Connect a Gmail mailbox
    Accepts an OAuth authorization code, or an already-issued refresh token.
    The credential is saved only after a successful connectivity test.
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")

    if not user_id:
        raise ValidationError("user_id is required", context={"field": "user_id"})

    services = get_services()

    if data.get("code"):
        exchanged = services.gmail.exchange_code(data["code"])
        if not exchanged.ok:
            return connection_error(exchanged.error)
        refresh_token, mailbox_address = exchanged.value
    else:
        refresh_token = data.get("refresh_token")
        mailbox_address = data.get("mailbox_address", "")
        if not refresh_token:
            raise ValidationError(
                "Either code or refresh_token is required", context={"field": "refresh_token"}
            )

    candidate = MailboxCredential(
        user_id=user_id,
        mailbox_address=mailbox_address,
        refresh_token=refresh_token,
    )

    tested = services.gmail.test_connection(candidate)
    if not tested.ok:
        logger.warning(f"⚠️ Mailbox connection test failed for {user_id}: {tested.error}")
        return connection_error(tested.error)

    saved = services.credentials.save(user_id, tested.value or mailbox_address, refresh_token)
    if not saved.ok:
        return error_response(saved.error)

    return jsonify({
        "success": True,
        "mailbox_address": saved.value.mailbox_address
    }), 200


@mailbox_bp.route('/disconnect', methods=['POST'])
def disconnect():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")

    if not user_id:
        raise ValidationError("user_id is required", context={"field": "user_id"})

    result = get_services().credentials.deactivate(user_id)
    if not result.ok:
        return error_response(result.error)

    return jsonify({
        "success": True,
        "disconnected": result.value
    }), 200
