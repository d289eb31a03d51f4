"""
Unit Tests for Payload Records
"""

import unittest
from datetime import datetime

from jira_sync.payloads import AssigneeRecord, BoardRecord, IssueRecord, SprintRecord, TokenResponse
from jira_sync.utils.helpers import parse_jira_datetime, split_scopes
from tests.fakes import issue_payload


class TestIssueRecord(unittest.TestCase):
    """Test issue field defaulting."""

    def test_full_issue(self):
        payload = issue_payload(10001, 'ABC-1', assignee={
            'accountId': 'acc-1',
            'displayName': 'Ada',
            'emailAddress': 'ada@example.com',
            'avatarUrls': {'48x48': 'https://avatar/48', '24x24': 'https://avatar/24'},
            'active': True
        })

        issue = IssueRecord.from_payload(payload)

        self.assertEqual(issue.jira_id, '10001')
        self.assertEqual(issue.key, 'ABC-1')
        self.assertEqual(issue.issue_type, 'Story')
        self.assertEqual(issue.status, 'In Progress')
        self.assertEqual(issue.status_category, 'In Progress')
        self.assertEqual(issue.priority, 'High')
        self.assertEqual(issue.created, datetime(2024, 1, 2, 10, 0))
        self.assertEqual(issue.assignee.avatar_url, 'https://avatar/48')
        self.assertTrue(issue.assignee.active)

    def test_missing_fields_default(self):
        issue = IssueRecord.from_payload({'id': 5, 'key': 'ABC-5', 'fields': {}})

        self.assertEqual(issue.summary, '')
        self.assertEqual(issue.issue_type, 'Unknown')
        self.assertEqual(issue.status, 'Unknown')
        self.assertIsNone(issue.status_category)
        self.assertIsNone(issue.priority)
        self.assertIsNone(issue.created)
        self.assertIsNone(issue.assignee)

    def test_unparsable_dates_become_none(self):
        issue = IssueRecord.from_payload(issue_payload(1, 'ABC-1', created='not a date', updated=None))

        self.assertIsNone(issue.created)
        self.assertIsNone(issue.updated)


class TestAssigneeRecord(unittest.TestCase):
    """Test assignee extraction."""

    def test_no_account_id(self):
        self.assertIsNone(AssigneeRecord.from_payload(None))
        self.assertIsNone(AssigneeRecord.from_payload({'displayName': 'Ghost'}))

    def test_defaults(self):
        assignee = AssigneeRecord.from_payload({'accountId': 'acc-2'})

        self.assertEqual(assignee.display_name, 'Unknown')
        self.assertIsNone(assignee.email)
        self.assertIsNone(assignee.avatar_url)
        self.assertIsNone(assignee.active)


class TestBoardAndSprintRecords(unittest.TestCase):

    def test_board(self):
        board = BoardRecord.from_payload({'id': 3, 'name': 'Team A', 'type': 'scrum'})

        self.assertEqual(board.jira_id, '3')
        self.assertEqual(board.type, 'scrum')
        self.assertIsNone(board.is_private)

    def test_sprint_dates(self):
        sprint = SprintRecord.from_payload({
            'id': 7,
            'name': 'Sprint 7',
            'state': 'closed',
            'startDate': '2024-03-01T09:00:00.000+02:00',
            'endDate': '2024-03-15T17:00:00.000Z',
            'goal': 'Ship it'
        })

        self.assertEqual(sprint.start_date, datetime(2024, 3, 1, 7, 0))
        self.assertEqual(sprint.end_date, datetime(2024, 3, 15, 17, 0))
        self.assertIsNone(sprint.complete_date)
        self.assertEqual(sprint.goal, 'Ship it')


class TestHelpers(unittest.TestCase):

    def test_parse_jira_datetime_rejects_non_strings(self):
        self.assertIsNone(parse_jira_datetime(None))
        self.assertIsNone(parse_jira_datetime(12345))

    def test_split_scopes(self):
        self.assertEqual(split_scopes('a  b c'), ['a', 'b', 'c'])
        self.assertEqual(split_scopes(None), [])

    def test_token_response_defaults(self):
        token = TokenResponse.from_payload({'access_token': 'abc', 'expires_in': '3600'})

        self.assertEqual(token.expires_in, 3600)
        self.assertEqual(token.token_type, 'Bearer')
        self.assertEqual(token.scope, '')
        self.assertIsNone(token.refresh_token)


if __name__ == '__main__':
    unittest.main()
