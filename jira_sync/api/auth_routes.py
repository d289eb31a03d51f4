"""
Jira OAuth Blueprint
Authorization-code handshake that links a Jira Cloud site.
"""

import uuid
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, redirect, request

from jira_sync.oauth import REQUIRED_SCOPES, OAuthError
from jira_sync.token_vault import TokenVaultError
from jira_sync.utils.helpers import split_scopes, utcnow
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

auth_bp = Blueprint('jira_auth', __name__, url_prefix='/auth/jira')

STATE_TTL_SECONDS = 600


def _not_configured():
    return jsonify({'error': 'Jira OAuth is not configured on the server'}), 500


@auth_bp.route('/start', methods=['GET'])
def start():
    """Redirect the user to Atlassian's consent screen."""
    services = current_app.extensions['jira_sync']
    oauth = services['oauth']

    if not oauth.is_configured:
        return _not_configured()

    state = str(uuid.uuid4())
    services['storage'].add_oauth_state(state, ttl_seconds=STATE_TTL_SECONDS)

    return redirect(oauth.build_authorize_url(state))


@auth_bp.route('/callback', methods=['GET'])
def callback():
    """Exchange the authorization code and store the connection."""
    services = current_app.extensions['jira_sync']
    oauth = services['oauth']
    storage = services['storage']
    vault = services['vault']

    if not oauth.is_configured:
        return _not_configured()

    code = request.args.get('code')
    state = request.args.get('state')

    if not code or not state:
        return jsonify({'error': 'Missing code or state'}), 400

    if not storage.consume_oauth_state(state):
        return jsonify({'error': 'Invalid state'}), 400

    try:
        token = oauth.exchange_code(code)
        resources = oauth.fetch_accessible_resources(token.access_token)
    except OAuthError as e:
        logger.error(f"Failed to complete Jira OAuth: {e.message} {e.body or ''}")
        return jsonify({'error': 'Failed to complete Jira OAuth'}), 500

    granted_scopes = split_scopes(token.scope)
    missing_scopes = [s for s in REQUIRED_SCOPES if s not in granted_scopes]
    if missing_scopes:
        return jsonify({'error': 'Missing required scopes', 'missingScopes': missing_scopes}), 400

    if not resources:
        return jsonify({'error': 'No accessible Jira resources returned'}), 400
    site = resources[0]

    try:
        access_token_enc = vault.encrypt_to_json(token.access_token)
        refresh_token_enc = vault.encrypt_to_json(token.refresh_token) if token.refresh_token else None
    except TokenVaultError as e:
        logger.error(f"Cannot store Jira tokens: {e}")
        return jsonify({'error': 'Server missing ENCRYPTION_KEY for token storage'}), 500

    connection_id = storage.save_connection(
        cloud_id=site['id'],
        site_name=site.get('name'),
        site_url=site.get('url'),
        access_token_enc=access_token_enc,
        refresh_token_enc=refresh_token_enc,
        expires_at=utcnow() + timedelta(seconds=token.expires_in),
        scopes=granted_scopes,
        token_type=token.token_type
    )

    logger.info(f"Linked Jira site {site.get('name')} as connection {connection_id}")

    return jsonify({
        'connected': True,
        'site': {
            'id': site['id'],
            'name': site.get('name'),
            'url': site.get('url')
        },
        'connectionId': connection_id
    })
