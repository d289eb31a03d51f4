"""
Flask Application Factory
Main entry point for the Jira sync web service.
"""

import os

from flask import Flask, jsonify
from flask_cors import CORS

from jira_sync import __version__
from jira_sync.config_manager import ConfigManager
from jira_sync.database.storage import StorageGateway
from jira_sync.oauth import AtlassianOAuth
from jira_sync.scheduler import SyncScheduler
from jira_sync.sync_engine import JiraSyncEngine
from jira_sync.token_vault import TokenVault
from jira_sync.utils.helpers import utcnow
from jira_sync.utils.logger import get_logger, setup_logging


def create_app(
    storage: StorageGateway = None,
    vault: TokenVault = None,
    oauth: AtlassianOAuth = None,
    sync_scheduler: SyncScheduler = None
) -> Flask:
    """
    Application factory for Flask app.

    Collaborators default to the configured database, key and OAuth client;
    they can be passed in to run the app against other backends.

    Returns:
        Configured Flask application
    """
    setup_logging()
    logger = get_logger(__name__)

    app = Flask(__name__)

    app.json.sort_keys = False

    CORS(app)

    storage = storage or StorageGateway()
    vault = vault or TokenVault()
    oauth = oauth or AtlassianOAuth()
    if sync_scheduler is None:
        engine = JiraSyncEngine(storage=storage, vault=vault)
        sync_scheduler = SyncScheduler(engine.run_cycle)

    if not oauth.is_configured:
        logger.warning(
            "Jira OAuth env vars missing; set JIRA_CLIENT_ID, JIRA_CLIENT_SECRET, JIRA_REDIRECT_URI"
        )

    app.extensions['jira_sync'] = {
        'storage': storage,
        'vault': vault,
        'oauth': oauth,
        'scheduler': sync_scheduler,
    }

    # Register blueprints
    from jira_sync.api.auth_routes import auth_bp
    from jira_sync.api.sync_routes import sync_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(sync_bp)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        db_healthy = storage.check_connection()

        return jsonify({
            'status': 'ok' if db_healthy else 'degraded',
            'timestamp': utcnow().isoformat(),
            'database': 'connected' if db_healthy else 'disconnected',
            'scheduler': 'running' if sync_scheduler.running else 'stopped'
        })

    @app.route('/', methods=['GET'])
    def root():
        """Root endpoint with API info."""
        return jsonify({
            'name': 'Jira Sync API',
            'version': __version__,
            'endpoints': {
                '/health': 'Health check',
                '/auth/jira/start': 'Link a Jira Cloud site (GET)',
                '/auth/jira/callback': 'OAuth redirect target (GET)',
                '/api/sync/run': 'Run a sync cycle now (POST)',
                '/api/sync/jobs': 'Recent sync jobs (GET)',
                '/api/sync/connections': 'Linked Jira sites (GET)'
            }
        })

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'Not found'
        }), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'error': 'Internal server error'
        }), 500

    logger.info("Flask application created")

    return app


def main() -> None:
    """Run the development server with the sync scheduler."""
    app = create_app()
    sync_scheduler = app.extensions['jira_sync']['scheduler']
    server_config = ConfigManager().get_server_config()

    sync_scheduler.start()

    try:
        app.run(
            host=server_config.get('host') or '0.0.0.0',
            port=int(server_config.get('port') or 4000),
            debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true',
            use_reloader=False
        )
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        sync_scheduler.stop()


if __name__ == '__main__':
    main()
