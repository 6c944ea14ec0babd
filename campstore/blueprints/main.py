"""Health checks for the load balancer and monitoring."""
from botocore.exceptions import BotoCoreError, ClientError
from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from campstore.database import ping
from campstore.services.storage_service import get_storage_service

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Database health.

    Returns:
        200: database reachable
        503: database down (the service cannot take orders)
    """
    try:
        healthy = ping()
    except SQLAlchemyError as e:
        return jsonify({'status': 'unhealthy', 'database': 'disconnected', 'error': str(e)}), 503

    if not healthy:
        return jsonify({'status': 'unhealthy', 'database': 'error'}), 503
    return jsonify({'status': 'healthy', 'database': 'connected'}), 200


@main_bp.route('/health/storage')
def health_storage():
    """
    Slip storage health.

    Always 200. Reports 'degraded' when slip uploads are unavailable.
    """
    try:
        reachable = get_storage_service().ping()
    except (BotoCoreError, ClientError) as e:
        return jsonify({'status': 'degraded', 'storage': 'unreachable', 'error': str(e)}), 200

    return jsonify({
        'status': 'healthy' if reachable else 'degraded',
        'storage': 'connected' if reachable else 'unreachable'
    }), 200
