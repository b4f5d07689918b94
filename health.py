from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health_check():
    """Health check endpoint; reports which storage backend is active"""
    ledger = current_app.extensions['ledger']
    return jsonify({
        'status': 'ok',
        'service': 'smartfee-ledger',
        'backend': ledger.backend_kind,
        'remoteConfigured': ledger.backend_kind == 'remote',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })
