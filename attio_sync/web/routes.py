"""
Health check routes for Attio Sync.
"""

from datetime import datetime
from typing import Optional

from flask import Blueprint, jsonify

from attio_sync.exceptions import ConfigurationError
from attio_sync.meta import MetaInfo


def create_health_blueprint(meta: Optional[MetaInfo] = None) -> Blueprint:
    """
    Build a blueprint exposing GET /health/attio.

    Responds 200 when the Attio token is active, 503 otherwise.
    """
    meta = meta or MetaInfo()
    health_bp = Blueprint('attio_health', __name__, url_prefix='/health')

    @health_bp.route('/attio')
    def attio_health():
        """Report Attio API reachability and client-side rate limit usage."""
        try:
            healthy = meta.healthy()
            rate_limit = meta.rate_limit_status()
        except ConfigurationError as e:
            return jsonify({
                'status': 'error',
                'healthy': False,
                'error': str(e),
                'timestamp': datetime.utcnow().isoformat(),
            }), 503

        return jsonify({
            'status': 'ok' if healthy else 'error',
            'healthy': healthy,
            'rate_limit': rate_limit,
            'timestamp': datetime.utcnow().isoformat(),
        }), 200 if healthy else 503

    return health_bp
