import logging
from typing import Optional

from flask import Flask

from common.config import Config, configure_logging
from routes import (
    SERVICES_KEY,
    checkout_bp,
    cron_bp,
    mailbox_bp,
    register_error_handlers,
    transaction_bp,
    webhook_bp,
)
from services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(config: Optional[Config] = None, services: Optional[Services] = None) -> Flask:
    """
    Build the API; services are constructed once here and shared by every request
    """
    if services is None:
        config = config or Config.from_env()
        services = build_services(config)

    app = Flask(__name__)
    app.extensions[SERVICES_KEY] = services

    # Register blueprints
    app.register_blueprint(webhook_bp)
    app.register_blueprint(transaction_bp)
    app.register_blueprint(mailbox_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(cron_bp)
    register_error_handlers(app)

    return app


if __name__ == '__main__':
    configure_logging()
    app = create_app()
    port = app.extensions[SERVICES_KEY].config.port

    logger.info(f"🚀 Ruddy Wallet API on port {port}")
    logger.info("📬 Mailbox:  POST /mailbox/connect, POST /mailbox/disconnect")
    logger.info("🔄 Sync:     POST /sync, GET /sync/logs")
    logger.info("💳 Payments: POST /checkout, GET /checkout/pending, POST /webhook/midtrans")
    logger.info("⏰ Cron:     POST /cron/sync")

    app.run(host='0.0.0.0', port=port, debug=False)
