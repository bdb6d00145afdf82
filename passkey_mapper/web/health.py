from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

health_bp = Blueprint('health', __name__)
start_time = datetime.now(timezone.utc)


@health_bp.route('/health')
def api_status():
    """Return service health information as JSON."""
    now = datetime.now(timezone.utc)
    return jsonify({
        'status': 'healthy',
        'version': current_app.config.get('VERSION', '1.0.0'),
        'timestamp': now.isoformat(),
        'uptime': str(now - start_time).split('.')[0],
        'ledger': current_app.config.get('LEDGER_BACKEND'),
        'credentialStore': current_app.config.get('CREDENTIAL_BACKEND'),
    })
