# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

#!/usr/bin/env python3
"""
Webinar Sync - HTTP request layer
"""
import logging
from datetime import timedelta

from flask import Flask, jsonify, request

import config
from auth.zoom_auth import ZoomCredentials
from store.row_store import JsonRowStore
from sync.engine import SyncEngine
from sync.history import SYNC_TYPE_WEBINARS
from sync.scheduler import SyncScheduler
from utils.logger import configure_logging
from utils.timezone import get_utc_time, to_iso

configure_logging(config.LOG_LEVEL, config.STRUCTURED_LOGGING)
logger = logging.getLogger(__name__)

# Initialize Flask
app = Flask(__name__)
app.secret_key = config.SECRET_KEY

# Error categories -> HTTP status
STATUS_BY_ERROR_TYPE = {
    'authentication': 401,
    'authorization': 403,
    'validation': 400,
    'configuration': 400,
    'conflict': 409,
    'rate_limit': 429,
    'network': 503,
    'service_unavailable': 503
}


@app.after_request
def add_security_headers(response):
    """Add security headers to all responses"""
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['Cache-Control'] = 'no-store'
    return response


# Global variables
sync_engine = None
scheduler = None
_components_initialized = False


def initialize_components():
    """Initialize sync components safely"""
    global sync_engine, scheduler, _components_initialized

    if sync_engine is None:
        sync_engine = SyncEngine(JsonRowStore(config.CACHE_FILE))
        logger.info("✅ Sync engine initialized")

    if scheduler is None and config.SCHEDULER_ENABLED:
        scheduler = SyncScheduler(sync_engine)
        scheduler.start()
        logger.info("✅ Scheduler initialized")

    _components_initialized = True


def ensure_components_initialized():
    """Initialize components on first request to avoid startup delays"""
    if not _components_initialized:
        initialize_components()


def _request_body():
    return request.get_json(silent=True) or {}


def _user_id(body):
    return body.get('user_id') or request.headers.get('X-User-Id') or request.args.get('user_id')


def _credentials(body):
    """Credentials from the request, else the ZOOM_* environment"""
    return ZoomCredentials.from_dict(body.get('credentials')) or ZoomCredentials.from_env()


def _respond(result):
    if result.get('success'):
        return jsonify(result), 200
    return jsonify(result), STATUS_BY_ERROR_TYPE.get(result.get('error_type'), 500)


def _missing_user():
    return jsonify({
        'success': False,
        'error': 'user_id is required (JSON body or X-User-Id header)',
        'error_type': 'validation'
    }), 400


def _should_force(user_id, requested):
    """Non-forced requests get a real sync once the last one is older than the gate"""
    if requested:
        return True
    last_sync = sync_engine.history.last_sync_time(user_id, SYNC_TYPE_WEBINARS)
    if last_sync is None:
        return True
    age = sync_engine.clock.now() - last_sync
    if age >= timedelta(minutes=config.MIN_SYNC_INTERVAL_MINUTES):
        logger.info(f"Last sync for {user_id} is {age.total_seconds() / 60:.1f} minutes old - refreshing")
        return True
    return False


@app.route('/health')
def health_check():
    """Lightweight health check"""
    return jsonify({
        "status": "healthy",
        "timestamp": to_iso(get_utc_time()),
        "service": "webinar-sync",
        "version": "1.0.0"
    }), 200


@app.route('/status')
def get_status():
    """Engine phases plus scheduler state"""
    ensure_components_initialized()
    user_id = request.headers.get('X-User-Id') or request.args.get('user_id')
    return jsonify({
        'engine': sync_engine.get_status(user_id),
        'scheduler': scheduler.get_scheduler_status() if scheduler else None,
        'current_time': to_iso(get_utc_time())
    })


@app.route('/api/sync', methods=['POST'])
def trigger_sync():
    """Sync all webinars for a user (cache-first unless forced or stale)"""
    ensure_components_initialized()
    body = _request_body()
    user_id = _user_id(body)
    if not user_id:
        return _missing_user()

    requested = bool(body.get('force_sync') or body.get('forceSync'))
    force = _should_force(user_id, requested)
    logger.info(f"📨 Sync requested for {user_id} (force={requested}, effective={force})")

    return _respond(sync_engine.sync(user_id, _credentials(body), force_sync=force))


@app.route('/api/webinars/<webinar_id>/sync', methods=['POST'])
def sync_single_webinar(webinar_id):
    ensure_components_initialized()
    body = _request_body()
    user_id = _user_id(body)
    if not user_id:
        return _missing_user()
    return _respond(sync_engine.sync_single_webinar(user_id, _credentials(body), webinar_id))


@app.route('/api/webinars/<webinar_id>/instances')
def get_instances(webinar_id):
    ensure_components_initialized()
    body = _request_body()
    user_id = _user_id(body)
    if not user_id:
        return _missing_user()
    return _respond(sync_engine.get_instances(user_id, _credentials(body), webinar_id))


@app.route('/api/sync/chunk', methods=['POST'])
def chunked_sync():
    """Incremental detail sync for one chunk of webinar ids"""
    ensure_components_initialized()
    body = _request_body()
    user_id = _user_id(body)
    if not user_id:
        return _missing_user()

    webinar_ids = body.get('webinar_ids') or body.get('webinarIds') or []
    if not isinstance(webinar_ids, list):
        return jsonify({
            'success': False,
            'error': 'webinar_ids must be a list',
            'error_type': 'validation'
        }), 400

    try:
        batch_index = int(body.get('batch_index', body.get('batchIndex', 0)))
        total_batches = int(body.get('total_batches', body.get('totalBatches', 1)))
    except (TypeError, ValueError):
        return jsonify({
            'success': False,
            'error': 'batch_index and total_batches must be integers',
            'error_type': 'validation'
        }), 400

    return _respond(sync_engine.chunked_sync(
        user_id, _credentials(body), body.get('data_type') or body.get('dataType'),
        webinar_ids, batch_index, total_batches
    ))


@app.route('/api/history')
def get_history():
    """Get sync history"""
    ensure_components_initialized()
    user_id = request.headers.get('X-User-Id') or request.args.get('user_id')
    limit = request.args.get('limit', 50, type=int)
    hours = request.args.get('hours', 24, type=int)

    return jsonify({
        'entries': sync_engine.history.get_entries(user_id, limit=limit),
        'statistics': sync_engine.history.get_statistics(user_id, hours=hours),
        'recent_failures': sync_engine.history.get_recent_failures(user_id)
    })


@app.route('/metrics')
def get_metrics():
    """Get system metrics"""
    ensure_components_initialized()
    hours = request.args.get('hours', 24, type=int)
    return jsonify({
        'metrics': sync_engine.metrics.get_metrics_summary(hours),
        'history': sync_engine.history.get_statistics(hours=hours),
        'report_time': to_iso(get_utc_time())
    })


if __name__ == '__main__':
    logger.info(f"Starting webinar sync service on port {config.PORT}")
    app.run(host='0.0.0.0', port=config.PORT)
