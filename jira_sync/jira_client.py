"""
Jira REST API Client Module
Handles all communication with the Jira Cloud REST API for OAuth-connected sites.
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional, Tuple

import requests
from dateutil import parser as date_parser
from requests.structures import CaseInsensitiveDict
from tenacity import (
    RetryCallState, Retrying, retry_if_exception_type, retry_if_result, stop_after_attempt,
    wait_exponential, wait_random
)
from tenacity.wait import wait_base

from jira_sync.config_manager import ConfigManager
from jira_sync.utils.helpers import clamp
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUSES = frozenset([429, 500, 502, 503, 504])
NETWORK_ERRORS = (requests.Timeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError)
JITTER_MS = 250
DEFAULT_PAGE_SIZE = 50
CHUNK_SIZE = 16 * 1024
ISSUE_FIELDS = ['summary', 'issuetype', 'status', 'priority', 'assignee', 'created', 'updated']
SPRINT_STATES = 'active,future,closed'

API_PATHS = {
    'agile': 'rest/agile/1.0',
    'core': 'rest/api/3',
}


class JiraClientError(Exception):
    """A Jira request that ended in a non-2xx response."""

    def __init__(self, status_code: int, url: str, body: str = None):
        self.status_code = status_code
        self.url = url
        self.body = body
        self.message = f"Jira request failed ({status_code})"
        super().__init__(self.message)

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


# ========================================
# Retry Policy
# ========================================

def header_retry_delay(
    headers: Mapping[str, str],
    min_delay_ms: float,
    max_delay_ms: float,
    now: float = None
) -> Optional[float]:
    """
    Delay requested by a rate-limited or unavailable response, in ms.

    ``Retry-After`` (seconds or HTTP date) wins over ``X-RateLimit-Reset``
    (epoch seconds). The result is clamped to [min_delay_ms, max_delay_ms];
    None when neither header is usable.
    """
    headers = CaseInsensitiveDict(headers or {})
    now = time.time() if now is None else now

    retry_after = (headers.get('Retry-After') or '').strip()
    if retry_after:
        try:
            return clamp(int(retry_after) * 1000, min_delay_ms, max_delay_ms)
        except ValueError:
            pass
        try:
            retry_at = date_parser.parse(retry_after)
        except (ValueError, OverflowError):
            retry_at = None
        if retry_at is not None and retry_at.tzinfo is not None:
            return clamp((retry_at.timestamp() - now) * 1000, min_delay_ms, max_delay_ms)

    reset = (headers.get('X-RateLimit-Reset') or headers.get('X-Rate-Limit-Reset') or '').strip()
    if reset:
        try:
            return clamp(int(reset) * 1000 - now * 1000, min_delay_ms, max_delay_ms)
        except ValueError:
            pass

    return None


class wait_jira_retry(wait_base):
    """
    Tenacity wait strategy for Jira requests.

    Responses carrying rate-limit headers wait as told; everything else
    (including network errors) backs off exponentially from ``min_delay_ms``
    up to ``max_delay_ms`` plus up to 250ms of jitter.
    """

    def __init__(self, min_delay_ms: float, max_delay_ms: float):
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.backoff = (
            wait_exponential(multiplier=min_delay_ms / 1000.0, max=max_delay_ms / 1000.0)
            + wait_random(0, (JITTER_MS - 1) / 1000.0)
        )

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            response, _ = outcome.result()
            delay_ms = header_retry_delay(response.headers, self.min_delay_ms, self.max_delay_ms)
            if delay_ms is not None:
                return delay_ms / 1000.0
        return self.backoff(retry_state)


def _is_retryable_response(result: Tuple[requests.Response, bytes]) -> bool:
    return result[0].status_code in RETRYABLE_STATUSES


def build_api_url(cloud_id: str, api: str = 'agile') -> str:
    """Base URL of a Jira Cloud REST API reached through the Atlassian gateway."""
    gateway = ConfigManager().get('jira', 'api_gateway_url', 'https://api.atlassian.com').rstrip('/')
    return f"{gateway}/ex/jira/{cloud_id}/{API_PATHS[api]}"


class JiraClient:
    """
    Bearer-token Jira REST client with retry, backoff and pagination.

    Retries 429/5xx responses and network failures up to ``max_retries``
    times after the first attempt. Each attempt, body included, must finish
    within ``timeout_ms`` or it is abandoned as a timeout.

    A client that created its own HTTP session closes it in :meth:`close`;
    use the client as a context manager to scope it to one sync pass.
    """

    def __init__(
        self,
        access_token: str,
        cloud_id: str = None,
        base_url: str = None,
        api: str = 'agile',
        max_retries: int = None,
        min_delay_ms: float = None,
        max_delay_ms: float = None,
        timeout_ms: float = None,
        page_size: int = None,
        session: requests.Session = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        jira_config = ConfigManager().get_jira_config()

        if base_url is None:
            if not cloud_id:
                raise ValueError("Either cloud_id or base_url is required")
            base_url = build_api_url(cloud_id, api)

        self.access_token = access_token
        self.base_url = base_url.rstrip('/')
        self.max_retries = max_retries if max_retries is not None else jira_config.get('max_retries', 4)
        self.min_delay_ms = min_delay_ms if min_delay_ms is not None else jira_config.get('min_delay_ms', 500)
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else jira_config.get('max_delay_ms', 8000)
        self.timeout_ms = timeout_ms if timeout_ms is not None else jira_config.get('timeout_ms', 20000)
        self.page_size = page_size or jira_config.get('page_size') or DEFAULT_PAGE_SIZE

        self._owns_session = session is None
        self._session = session or requests.Session()
        self._sleep = sleep

    def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> 'JiraClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def build_url(self, path: str, params: Dict = None) -> str:
        normalized = path if path.startswith('/') else f'/{path}'
        prepared = requests.models.PreparedRequest()
        prepared.prepare_url(f'{self.base_url}{normalized}', params)
        return prepared.url

    def request(
        self,
        path: str,
        method: str = None,
        headers: Dict[str, str] = None,
        body: Any = None,
        params: Dict = None
    ) -> Any:
        """
        Make an authenticated request.

        Args:
            path: Path relative to the client's base URL
            method: HTTP method; POST when a body is given, else GET
            headers: Extra headers; Authorization/Accept are only added when absent
            body: JSON-serializable request body
            params: Query parameters

        Returns:
            Parsed JSON, raw text for non-JSON responses, or None for 204

        Raises:
            JiraClientError: On non-retryable or exhausted non-2xx responses
            requests.RequestException: When network retries are exhausted
        """
        url = self.build_url(path, params)

        request_headers = CaseInsensitiveDict(headers or {})
        request_headers.setdefault('Authorization', f'Bearer {self.access_token}')
        request_headers.setdefault('Accept', 'application/json')
        if body is not None:
            request_headers.setdefault('Content-Type', 'application/json')

        method = (method or ('POST' if body is not None else 'GET')).upper()
        response, content = self._request_with_retry(method, url, request_headers, body)

        text = content.decode(response.encoding or 'utf-8', errors='replace')

        if not 200 <= response.status_code < 300:
            raise JiraClientError(response.status_code, url, text)

        if response.status_code == 204:
            return None

        content_type = response.headers.get('Content-Type', '')
        if 'application/json' in content_type:
            return json.loads(text) if text else ''

        return text

    def _request_with_retry(
        self,
        method: str,
        url: str,
        headers: CaseInsensitiveDict,
        body: Any
    ) -> Tuple[requests.Response, bytes]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_jira_retry(self.min_delay_ms, self.max_delay_ms),
            retry=retry_if_exception_type(NETWORK_ERRORS) | retry_if_result(_is_retryable_response),
            sleep=self._sleep,
            before_sleep=lambda state: self._log_retry(url, state),
            retry_error_callback=lambda state: self._give_up(url, state)
        )
        return retrying(self._attempt, method, url, headers, body)

    def _attempt(
        self,
        method: str,
        url: str,
        headers: CaseInsensitiveDict,
        body: Any
    ) -> Tuple[requests.Response, bytes]:
        """
        One request, body included, bounded by ``timeout_ms``.

        The request runs on a worker thread; if it has not finished by the
        deadline the response is closed and ``requests.Timeout`` is raised.
        """
        timeout = self.timeout_ms / 1000.0
        outcome = {}

        def run():
            try:
                response = self._session.request(
                    method=method,
                    url=url,
                    headers=dict(headers),
                    json=body,
                    timeout=timeout,
                    stream=True
                )
                outcome['response'] = response
                outcome['content'] = b''.join(response.iter_content(CHUNK_SIZE))
            except Exception as e:
                outcome['error'] = e

        worker = threading.Thread(target=run, name='jira-request', daemon=True)
        worker.start()
        worker.join(timeout)

        if worker.is_alive():
            response = outcome.get('response')
            if response is not None:
                response.close()
            raise requests.Timeout(f"Jira request exceeded {timeout:.1f}s: {method} {url}")

        if 'error' in outcome:
            raise outcome['error']
        return outcome['response'], outcome['content']

    def _log_retry(self, url: str, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        delay_ms = retry_state.next_action.sleep * 1000
        attempt = retry_state.attempt_number - 1

        if outcome.failed:
            logger.warning(
                f"Retrying Jira request after network error: url={url} attempt={attempt} "
                f"delay_ms={delay_ms:.0f} error={outcome.exception()}"
            )
        else:
            response, _ = outcome.result()
            logger.warning(
                f"Retrying Jira request after retryable response: status={response.status_code} "
                f"url={url} attempt={attempt} delay_ms={delay_ms:.0f}"
            )

    def _give_up(self, url: str, retry_state: RetryCallState) -> Tuple[requests.Response, bytes]:
        """Hand back the last response, or re-raise the last network error."""
        outcome = retry_state.outcome
        if outcome.failed:
            logger.error(
                f"Jira request to {url} failed after {retry_state.attempt_number} attempts: "
                f"{outcome.exception()}"
            )
        return outcome.result()


    # ========================================
    # Pagination
    # ========================================

    def iter_pages(
        self,
        path: str,
        items_key: str = 'values',
        params: Dict = None,
        page_size: int = None,
        stop_on: str = 'isLast'
    ) -> Generator[Dict, None, None]:
        """
        Lazily page through a startAt/maxResults collection.

        Args:
            path: Collection path
            items_key: Key holding the page's items
            params: Extra query parameters
            page_size: maxResults per request; defaults to the configured page size
            stop_on: 'isLast' for agile board/sprint lists, 'total' for issue
                searches (stop once startAt >= total)

        Yields:
            One response page at a time
        """
        start_at = 0
        page_size = page_size or self.page_size

        while True:
            query = dict(params or {})
            query['startAt'] = start_at
            query['maxResults'] = page_size

            page = self.request(path, params=query)
            if not page:
                return

            yield page

            items = page.get(items_key) or []
            start_at += page.get('maxResults') or page_size

            if stop_on == 'isLast':
                # A page without items cannot make progress
                if page.get('isLast') or not items:
                    return
            else:
                if start_at >= (page.get('total') or 0) or not items:
                    return

            logger.debug(f"Fetched page ending at {start_at} from {path}")

    def iter_items(self, path: str, items_key: str = 'values', **kwargs) -> Generator[Dict, None, None]:
        """Flatten :meth:`iter_pages` into individual items, in page order."""
        for page in self.iter_pages(path, items_key=items_key, **kwargs):
            for item in page.get(items_key) or []:
                yield item

    # ========================================
    # Board, Sprint & Issue Methods (Agile API)
    # ========================================

    def fetch_boards(self) -> List[Dict]:
        """Fetch all boards visible to the token."""
        boards = list(self.iter_items('/board'))
        logger.info(f"Fetched {len(boards)} boards")
        return boards

    def iter_sprints(self, board_id: str) -> Generator[Dict, None, None]:
        """Sprints of a board in every state."""
        return self.iter_items(f'/board/{board_id}/sprint', params={'state': SPRINT_STATES})

    def iter_board_issues(self, board_id: str) -> Generator[Dict, None, None]:
        """Issues of a board with the fixed field selection used for sync."""
        return self.iter_items(
            f'/board/{board_id}/issue',
            items_key='issues',
            params={'fields': ','.join(ISSUE_FIELDS)},
            stop_on='total'
        )


# ========================================
# Unauthorized Diagnosis
# ========================================

@dataclass(frozen=True)
class UnauthorizedDiagnosis:
    reason: str  # 'agile-permission', 'token-unauthorized' or 'unknown'
    message: str


def diagnose_unauthorized(
    cloud_id: str,
    access_token: str,
    session: requests.Session = None
) -> UnauthorizedDiagnosis:
    """
    Work out why the agile API rejected a token by calling the core API.

    If ``/myself`` accepts the token, the token is fine and the app lacks
    agile permissions; a 401 there means the token itself is rejected.
    """
    try:
        with JiraClient(access_token, cloud_id=cloud_id, api='core', max_retries=0, session=session) as client:
            client.request('/myself')
    except JiraClientError as e:
        if e.is_unauthorized:
            return UnauthorizedDiagnosis(
                'token-unauthorized',
                "Jira rejected the access token; reconnect required"
            )
        return UnauthorizedDiagnosis('unknown', f"Jira core API check failed ({e.status_code})")
    except requests.RequestException as e:
        return UnauthorizedDiagnosis('unknown', f"Jira core API check failed: {e}")

    return UnauthorizedDiagnosis(
        'agile-permission',
        "Token is valid but lacks Jira Software (agile) permissions"
    )
