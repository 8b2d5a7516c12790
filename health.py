import logging

from flask import Blueprint, jsonify
from sqlalchemy import text

from app_models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health_check():
    """Health check endpoint for the load balancer"""
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except Exception:
        db.session.rollback()
        logger.exception("Health check could not reach the database")
        database = 'unavailable'
    status = 'ok' if database == 'ok' else 'degraded'
    return jsonify({
        'status': status,
        'message': 'Service is running',
        'database': database,
        'version': '1.0.0'
    }), 200 if status == 'ok' else 503
