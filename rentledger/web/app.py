"""
Flask application for gateway callbacks.
Gateways POST payment results here; each is reconciled into the ledger.
"""

import logging
from datetime import datetime

from flask import Flask, jsonify


logger = logging.getLogger(__name__)


def create_app(reconciler=None, ledger_config=None):
    """
    Create the Flask application with the webhook blueprint registered.

    Args:
        reconciler: PaymentReconciler instance (optional, built from the environment if not provided)
        ledger_config: LedgerConfig instance (optional, read from the environment if not provided)

    Returns:
        Flask application
    """
    app = Flask(__name__)

    _reconciler = reconciler

    def get_reconciler():
        nonlocal _reconciler, ledger_config
        if _reconciler is None:
            from rentledger.billing.store import LedgerStore
            from rentledger.common.config import LedgerConfig
            from rentledger.common.engine import create_engine_from_config
            from rentledger.payments.gateways import build_gateways
            from rentledger.payments.reconciler import PaymentReconciler

            ledger_config = ledger_config or LedgerConfig.from_env()
            billing = ledger_config.billing
            store = LedgerStore(create_engine_from_config(ledger_config.database))
            gateways = build_gateways(timeout=billing.gateway_timeout_seconds, currency=billing.currency)
            _reconciler = PaymentReconciler(store, gateways, billing)
        return _reconciler

    app.get_reconciler = get_reconciler

    @app.after_request
    def add_cache_headers(response):
        response.headers['Cache-Control'] = 'no-store'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        return response

    from rentledger.web.routes import webhooks_bp
    app.register_blueprint(webhooks_bp)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now().isoformat()
        })

    return app


def run_app(host='0.0.0.0', port=5000, debug=False):
    """Run the Flask development server."""
    app = create_app()
    logger.info(f"Webhook server listening on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
