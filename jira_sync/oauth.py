"""
Atlassian OAuth Module
Authorization-code and refresh-token exchanges against the Atlassian token endpoint.
"""

from datetime import timedelta
from typing import Dict, List, Optional
from urllib.parse import urlencode

import requests

from jira_sync.config_manager import ConfigManager
from jira_sync.payloads import TokenResponse
from jira_sync.token_vault import TokenVault, TokenVaultError
from jira_sync.utils.helpers import split_scopes, utcnow
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_SCOPES = ['offline_access', 'read:jira-user', 'read:jira-work']
ACCESSIBLE_RESOURCES_PATH = '/oauth/token/accessible-resources'
REQUEST_TIMEOUT = 20


class OAuthError(Exception):
    """Custom exception for failed OAuth exchanges."""

    def __init__(self, message: str, status_code: int = None, body: str = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(self.message)


class AtlassianOAuth:
    """OAuth 2.0 (3LO) client for Atlassian Cloud."""

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        redirect_uri: str = None,
        session: requests.Session = None
    ):
        config = ConfigManager()
        self.client_id = client_id if client_id is not None else config.get('jira', 'client_id')
        self.client_secret = client_secret if client_secret is not None else config.get('jira', 'client_secret')
        self.redirect_uri = redirect_uri if redirect_uri is not None else config.get('jira', 'redirect_uri')
        self.authorize_url = config.get('jira', 'authorize_url', 'https://auth.atlassian.com/authorize')
        self.token_url = config.get('jira', 'token_url', 'https://auth.atlassian.com/oauth/token')
        self.api_gateway_url = config.get('jira', 'api_gateway_url', 'https://api.atlassian.com').rstrip('/')
        self._session = session or requests.Session()

    @property
    def has_client_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def is_configured(self) -> bool:
        """Whether the full authorization-code flow can run."""
        return self.has_client_credentials and bool(self.redirect_uri)

    def build_authorize_url(self, state: str) -> str:
        query = urlencode({
            'audience': 'api.atlassian.com',
            'client_id': self.client_id,
            'scope': ' '.join(REQUIRED_SCOPES),
            'redirect_uri': self.redirect_uri,
            'state': state,
            'response_type': 'code',
            'prompt': 'consent',
        })
        return f"{self.authorize_url}?{query}"

    def _post_token(self, payload: Dict) -> TokenResponse:
        payload = dict(payload, client_id=self.client_id, client_secret=self.client_secret)
        try:
            response = self._session.post(
                self.token_url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise OAuthError(f"Token request failed: {e}")

        if not 200 <= response.status_code < 300:
            raise OAuthError(
                f"Token exchange failed: {response.status_code}",
                response.status_code,
                response.text
            )

        try:
            return TokenResponse.from_payload(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise OAuthError(f"Malformed token response: {e}", response.status_code, response.text)

    def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for the first token pair."""
        return self._post_token({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_uri,
        })

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new token pair."""
        return self._post_token({
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        })

    def fetch_accessible_resources(self, access_token: str) -> List[Dict]:
        """List the Jira sites (cloud ids) the token can reach."""
        url = f"{self.api_gateway_url}{ACCESSIBLE_RESOURCES_PATH}"
        try:
            response = self._session.get(
                url,
                headers={'Authorization': f'Bearer {access_token}', 'Accept': 'application/json'},
                timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise OAuthError(f"Failed to list accessible resources: {e}")

        if not 200 <= response.status_code < 300:
            raise OAuthError(
                f"Failed to list accessible resources: {response.status_code}",
                response.status_code,
                response.text
            )
        return response.json()


class TokenRefresher:
    """
    Refreshes a connection's access token in place.

    Fails closed: any missing prerequisite or failed exchange yields None
    rather than an exception, so the caller can report "reconnect required".
    """

    def __init__(self, storage, vault: TokenVault = None, oauth: AtlassianOAuth = None):
        self.storage = storage
        self.vault = vault or TokenVault()
        self.oauth = oauth or AtlassianOAuth()

    def refresh(self, connection) -> Optional[str]:
        """
        Args:
            connection: A JiraConnection row

        Returns:
            The new plaintext access token, or None when refresh is impossible
        """
        if not connection.refresh_token_enc:
            logger.warning(f"Connection {connection.id} has no refresh token; cannot refresh")
            return None

        if not self.oauth.has_client_credentials:
            logger.error("Jira OAuth client credentials missing; set JIRA_CLIENT_ID and JIRA_CLIENT_SECRET")
            return None

        try:
            refresh_token = self.vault.decrypt_from_json(connection.refresh_token_enc)
            token = self.oauth.refresh(refresh_token)
        except TokenVaultError as e:
            logger.error(f"Cannot read refresh token for connection {connection.id}: {e}")
            return None
        except OAuthError as e:
            logger.error(f"Token refresh failed for connection {connection.id}: {e.message} {e.body or ''}")
            return None

        try:
            access_token_enc = self.vault.encrypt_to_json(token.access_token)
            refresh_token_enc = (
                self.vault.encrypt_to_json(token.refresh_token) if token.refresh_token else None
            )
        except TokenVaultError as e:
            logger.error(f"Cannot store refreshed token for connection {connection.id}: {e}")
            return None

        self.storage.update_connection_tokens(
            connection.id,
            access_token_enc=access_token_enc,
            refresh_token_enc=refresh_token_enc,
            expires_at=utcnow() + timedelta(seconds=token.expires_in),
            token_type=token.token_type,
            scopes=split_scopes(token.scope)
        )

        logger.info(f"Refreshed Jira access token for connection {connection.id}")
        return token.access_token
