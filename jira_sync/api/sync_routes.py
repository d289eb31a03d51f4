"""
Sync API Blueprint
Provides REST endpoints for triggering and monitoring Jira sync cycles.
"""

from dataclasses import asdict

from flask import Blueprint, current_app, jsonify, request

from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

sync_bp = Blueprint('sync', __name__, url_prefix='/api/sync')


def _isoformat(value):
    return value.isoformat() if value else None


@sync_bp.route('/run', methods=['POST'])
def trigger_sync():
    """
    Run one sync cycle now, sharing the scheduler's single-flight guard.

    Returns:
        JSON with one outcome per connection, or 409 if a cycle is running
    """
    sync_scheduler = current_app.extensions['jira_sync']['scheduler']

    logger.info("Jira sync triggered via API")

    if not sync_scheduler.run_once():
        return jsonify({
            'success': False,
            'error': 'Sync already in progress'
        }), 409

    outcomes = sync_scheduler.last_result
    if outcomes is None:
        return jsonify({
            'success': False,
            'error': 'Sync cycle failed; see server logs'
        }), 500

    return jsonify({
        'success': True,
        'outcomes': [asdict(outcome) for outcome in outcomes]
    })


@sync_bp.route('/jobs', methods=['GET'])
def list_jobs():
    """
    Get recent sync jobs.

    Query params:
        limit: Number of jobs to return (default 20)
        connection_id: Only jobs for this connection
    """
    storage = current_app.extensions['jira_sync']['storage']

    try:
        limit = int(request.args.get('limit', 20))
        connection_id = request.args.get('connection_id', type=int)
    except ValueError:
        return jsonify({'success': False, 'error': 'limit must be an integer'}), 400

    jobs = storage.list_sync_jobs(limit=limit, connection_id=connection_id)

    return jsonify({
        'success': True,
        'jobs': [{
            'id': job.id,
            'connection_id': job.connection_id,
            'job_type': job.job_type,
            'status': job.status,
            'started_at': _isoformat(job.started_at),
            'finished_at': _isoformat(job.finished_at),
            'error_message': job.error_message
        } for job in jobs]
    })


@sync_bp.route('/connections', methods=['GET'])
def list_connections():
    """List linked Jira sites; tokens are never returned."""
    storage = current_app.extensions['jira_sync']['storage']

    connections = storage.list_connections()

    return jsonify({
        'success': True,
        'connections': [{
            'id': connection.id,
            'cloud_id': connection.cloud_id,
            'site_name': connection.site_name,
            'site_url': connection.site_url,
            'scopes': connection.scopes or [],
            'token_type': connection.token_type,
            'expires_at': _isoformat(connection.expires_at),
            'has_refresh_token': bool(connection.refresh_token_enc)
        } for connection in connections]
    })
