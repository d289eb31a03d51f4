"""
Test Doubles
In-memory database, canned HTTP responses and a fake Jira agile API.
"""

import base64
import json
from typing import Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jira_sync.database.models import Base, JiraConnection
from jira_sync.database.storage import StorageGateway
from jira_sync.token_vault import TokenVault

TEST_KEY = base64.b64encode(b'k' * 32).decode('ascii')


def make_vault() -> TokenVault:
    return TokenVault(TEST_KEY)


def make_storage():
    """StorageGateway over a fresh in-memory SQLite database."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    return StorageGateway(factory), factory


def add_connection(
    factory,
    vault: TokenVault,
    cloud_id: str = 'cloud-1',
    access_token: str = 'token-1',
    refresh_token: Optional[str] = 'refresh-1'
) -> int:
    session = factory()
    try:
        connection = JiraConnection(
            cloud_id=cloud_id,
            site_name=f'{cloud_id} site',
            site_url=f'https://{cloud_id}.atlassian.net',
            access_token_enc=vault.encrypt_to_json(access_token),
            refresh_token_enc=vault.encrypt_to_json(refresh_token) if refresh_token else None,
            scopes=['read:jira-work'],
            token_type='Bearer'
        )
        session.add(connection)
        session.commit()
        return connection.id
    finally:
        session.close()


def make_response(
    status: int = 200,
    json_body=None,
    text: str = None,
    headers: Dict[str, str] = None,
    url: str = 'https://example.test/'
) -> requests.Response:
    """Build a real requests.Response with the given body."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.headers = CaseInsensitiveDict(headers or {})

    if json_body is not None:
        response._content = json.dumps(json_body).encode('utf-8')
        response.headers.setdefault('Content-Type', 'application/json;charset=UTF-8')
    elif text is not None:
        response._content = text.encode('utf-8')
        response.headers.setdefault('Content-Type', 'text/plain')
    else:
        response._content = b''

    response.encoding = 'utf-8'
    # Body is preloaded, so iter_content() replays it like a streamed read
    response._content_consumed = True
    return response


class ScriptedSession:
    """
    Stands in for requests.Session, replaying queued responses or exceptions.

    The last entry is repeated once the script runs out.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls: List[Dict] = []

    def request(self, method, url, headers=None, json=None, timeout=None, **kwargs):
        self.calls.append({
            'method': method, 'url': url, 'headers': headers or {},
            'json': json, 'timeout': timeout
        })
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self.request('POST', url, **kwargs)


class FakeJiraSite:
    """
    Minimal Jira agile API served from dictionaries.

    Boards and sprints page with ``isLast``; board issues page with ``total``.
    Requests bearing a token in ``rejected_tokens`` get a 401.
    """

    def __init__(self, boards=None, sprints=None, issues=None, page_size: int = 50):
        self.boards: List[Dict] = boards or []
        self.sprints: Dict[str, List[Dict]] = sprints or {}
        self.issues: Dict[str, List[Dict]] = issues or {}
        self.page_size = page_size
        self.rejected_tokens = set()
        self.failures: Dict[str, requests.Response] = {}
        self.calls: List[str] = []

    def request(self, method, url, headers=None, json=None, timeout=None, **kwargs):
        parsed = urlparse(url)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        path = parsed.path.split('/rest/agile/1.0', 1)[-1]
        self.calls.append(f"{path}?startAt={query.get('startAt', '0')}")

        token = (headers or {}).get('Authorization', '').replace('Bearer ', '')
        if token in self.rejected_tokens:
            return make_response(401, text='Unauthorized', url=url)

        for fragment, response in self.failures.items():
            if fragment in path:
                return response

        start_at = int(query.get('startAt', 0))
        max_results = min(int(query.get('maxResults', 50)), self.page_size)
        parts = path.strip('/').split('/')

        if parts == ['board']:
            return self._values_page(self.boards, start_at, max_results, url)
        if len(parts) == 3 and parts[2] == 'sprint':
            return self._values_page(self.sprints.get(parts[1], []), start_at, max_results, url)
        if len(parts) == 3 and parts[2] == 'issue':
            items = self.issues.get(parts[1], [])
            return make_response(200, {
                'startAt': start_at,
                'maxResults': max_results,
                'total': len(items),
                'issues': items[start_at:start_at + max_results]
            }, url=url)

        return make_response(404, text='Not found', url=url)

    @staticmethod
    def _values_page(items, start_at, max_results, url):
        page = items[start_at:start_at + max_results]
        return make_response(200, {
            'startAt': start_at,
            'maxResults': max_results,
            'isLast': start_at + max_results >= len(items),
            'values': page
        }, url=url)


class FakeRefresher:
    """Counts refresh attempts and hands back a canned token."""

    def __init__(self, new_token: Optional[str] = 'token-2'):
        self.new_token = new_token
        self.calls = 0

    def refresh(self, connection):
        self.calls += 1
        if not connection.refresh_token_enc:
            return None
        return self.new_token


def issue_payload(issue_id, key, summary='Do the thing', assignee=None, **fields):
    data = {
        'summary': summary,
        'issuetype': {'name': 'Story'},
        'status': {'name': 'In Progress', 'statusCategory': {'name': 'In Progress'}},
        'priority': {'name': 'High'},
        'created': '2024-01-02T10:00:00.000+0000',
        'updated': '2024-01-03T11:30:00.000+0000',
    }
    if assignee is not None:
        data['assignee'] = assignee
    data.update(fields)
    return {'id': str(issue_id), 'key': key, 'fields': data}
