"""
Jira Payload Records
Typed views over Jira agile API responses.

All defaulting of optional remote fields happens in the ``from_payload``
constructors here, so the sync engine and storage layer only ever see
fully-resolved values.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from jira_sync.utils.helpers import parse_jira_datetime, safe_get, sanitize_string, to_jira_id

UNKNOWN = 'Unknown'
AVATAR_SIZE = '48x48'


@dataclass(frozen=True)
class BoardRecord:
    jira_id: str
    name: str
    type: Optional[str] = None
    is_private: Optional[bool] = None

    @classmethod
    def from_payload(cls, data: Dict) -> 'BoardRecord':
        return cls(
            jira_id=to_jira_id(data['id']),
            name=sanitize_string(data.get('name'), 255) or '',
            type=data.get('type'),
            is_private=data.get('isPrivate'),
        )


@dataclass(frozen=True)
class SprintRecord:
    jira_id: str
    name: str
    state: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    complete_date: Optional[datetime] = None
    goal: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict) -> 'SprintRecord':
        return cls(
            jira_id=to_jira_id(data['id']),
            name=sanitize_string(data.get('name'), 255) or '',
            state=data.get('state'),
            start_date=parse_jira_datetime(data.get('startDate')),
            end_date=parse_jira_datetime(data.get('endDate')),
            complete_date=parse_jira_datetime(data.get('completeDate')),
            goal=sanitize_string(data.get('goal')),
        )


@dataclass(frozen=True)
class AssigneeRecord:
    """
    An issue assignee.

    ``active`` stays None when Jira omits it; the storage layer then keeps
    whatever value it already has.
    """
    account_id: str
    display_name: str = UNKNOWN
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    active: Optional[bool] = None

    @classmethod
    def from_payload(cls, data: Optional[Dict]) -> Optional['AssigneeRecord']:
        """Return None when there is no assignee or it carries no account id."""
        if not data or not data.get('accountId'):
            return None
        return cls(
            account_id=data['accountId'],
            display_name=data.get('displayName') or UNKNOWN,
            email=data.get('emailAddress'),
            avatar_url=safe_get(data, 'avatarUrls', AVATAR_SIZE),
            active=data.get('active'),
        )


@dataclass(frozen=True)
class IssueRecord:
    jira_id: str
    key: str
    summary: str
    issue_type: str = UNKNOWN
    status: str = UNKNOWN
    status_category: Optional[str] = None
    priority: Optional[str] = None
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    assignee: Optional[AssigneeRecord] = None

    @classmethod
    def from_payload(cls, data: Dict) -> 'IssueRecord':
        fields = data.get('fields') or {}
        return cls(
            jira_id=to_jira_id(data['id']),
            key=data.get('key') or '',
            summary=sanitize_string(fields.get('summary')) or '',
            issue_type=safe_get(fields, 'issuetype', 'name', default=UNKNOWN),
            status=safe_get(fields, 'status', 'name', default=UNKNOWN),
            status_category=safe_get(fields, 'status', 'statusCategory', 'name'),
            priority=safe_get(fields, 'priority', 'name'),
            created=parse_jira_datetime(fields.get('created')),
            updated=parse_jira_datetime(fields.get('updated')),
            assignee=AssigneeRecord.from_payload(fields.get('assignee')),
        )


@dataclass(frozen=True)
class TokenResponse:
    """Body of a successful OAuth token endpoint call."""
    access_token: str
    expires_in: int
    scope: str = ''
    token_type: str = 'Bearer'
    refresh_token: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict) -> 'TokenResponse':
        return cls(
            access_token=data['access_token'],
            expires_in=int(data.get('expires_in') or 0),
            scope=data.get('scope') or '',
            token_type=data.get('token_type') or 'Bearer',
            refresh_token=data.get('refresh_token'),
        )
