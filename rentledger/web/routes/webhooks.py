"""
Webhook routes for mobile money gateways.

A gateway retries any delivery that does not get a 2xx, so a payload we
cannot parse is acknowledged and dropped rather than refused.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from rentledger.billing.errors import NotFound, StoreUnavailable


logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')


@webhooks_bp.route('/<gateway>', methods=['POST'])
def gateway_callback(gateway):
    """Reconcile one gateway callback."""
    reconciler = current_app.get_reconciler()
    if gateway not in reconciler.gateways:
        return jsonify({'error': f'Unknown gateway: {gateway}'}), 404

    payload = request.get_json(silent=True)
    if payload is None:
        logger.warning(f"Dropped {gateway} callback with no JSON body")
        return jsonify({'status': 'ignored'})

    try:
        result = reconciler.handle_callback(gateway, payload)
    except NotFound as e:
        logger.warning(f"{gateway} callback for unknown payment: {e}")
        return jsonify({'error': str(e)}), 404
    except StoreUnavailable as e:
        logger.error(f"Ledger unavailable for {gateway} callback: {e}")
        return jsonify({'error': 'Ledger unavailable'}), 503

    if result is None:
        return jsonify({'status': 'ignored'})
    return jsonify({'status': 'processed', **result.to_dict()})
