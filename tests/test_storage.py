"""
Unit Tests for the Storage Gateway
Upserts by natural key, sync job bookkeeping and OAuth state handling.
"""

import unittest
from datetime import timedelta

from jira_sync.database.models import JiraAssignee, JiraBoard, JiraIssue, JiraOAuthState, JiraSyncJob
from jira_sync.payloads import AssigneeRecord, BoardRecord, IssueRecord, SprintRecord
from jira_sync.utils.helpers import utcnow
from tests.fakes import add_connection, issue_payload, make_storage, make_vault


class StorageTestCase(unittest.TestCase):

    def setUp(self):
        self.storage, self.factory = make_storage()
        self.vault = make_vault()
        self.connection_id = add_connection(self.factory, self.vault)

    def count(self, model):
        session = self.factory()
        try:
            return session.query(model).count()
        finally:
            session.close()

    def fetch(self, model, row_id):
        session = self.factory()
        try:
            return session.get(model, row_id)
        finally:
            session.close()


class TestUpserts(StorageTestCase):
    """Test natural-key upserts."""

    def test_board_rename_keeps_id(self):
        first = self.storage.upsert_board(self.connection_id, BoardRecord('1', 'Team A', 'scrum'))
        second = self.storage.upsert_board(self.connection_id, BoardRecord('1', 'Team A v2', 'scrum'))

        self.assertEqual(first, second)
        self.assertEqual(self.count(JiraBoard), 1)
        self.assertEqual(self.fetch(JiraBoard, first).name, 'Team A v2')

    def test_same_jira_id_on_other_connection_is_separate(self):
        other_connection = add_connection(self.factory, self.vault, cloud_id='cloud-2')

        first = self.storage.upsert_board(self.connection_id, BoardRecord('1', 'Team A'))
        second = self.storage.upsert_board(other_connection, BoardRecord('1', 'Team A'))

        self.assertNotEqual(first, second)
        self.assertEqual(self.count(JiraBoard), 2)

    def test_sprint_upsert(self):
        board_id = self.storage.upsert_board(self.connection_id, BoardRecord('1', 'Team A'))

        first = self.storage.upsert_sprint(self.connection_id, board_id, SprintRecord('9', 'Sprint 1', 'active'))
        second = self.storage.upsert_sprint(self.connection_id, board_id, SprintRecord('9', 'Sprint 1', 'closed'))

        self.assertEqual(first, second)

    def test_assignee_active_kept_when_absent(self):
        first = self.storage.upsert_assignee(
            self.connection_id, AssigneeRecord('acc-1', 'Ada', active=False)
        )
        second = self.storage.upsert_assignee(
            self.connection_id, AssigneeRecord('acc-1', 'Ada Lovelace')
        )

        self.assertEqual(first, second)
        assignee = self.fetch(JiraAssignee, first)
        self.assertEqual(assignee.display_name, 'Ada Lovelace')
        self.assertFalse(assignee.active)

        self.storage.upsert_assignee(self.connection_id, AssigneeRecord('acc-1', 'Ada', active=True))
        self.assertTrue(self.fetch(JiraAssignee, first).active)

    def test_issue_upsert_updates_fields_and_assignee(self):
        board_id = self.storage.upsert_board(self.connection_id, BoardRecord('1', 'Team A'))
        assignee_id = self.storage.upsert_assignee(self.connection_id, AssigneeRecord('acc-1', 'Ada'))

        first = self.storage.upsert_issue(
            self.connection_id, board_id,
            IssueRecord.from_payload(issue_payload(100, 'ABC-1')), assignee_id
        )
        second = self.storage.upsert_issue(
            self.connection_id, board_id,
            IssueRecord.from_payload(issue_payload(100, 'ABC-1', summary='Renamed'))
        )

        self.assertEqual(first, second)
        self.assertEqual(self.count(JiraIssue), 1)
        issue = self.fetch(JiraIssue, first)
        self.assertEqual(issue.summary, 'Renamed')
        self.assertIsNone(issue.assignee_id)


class TestConnections(StorageTestCase):
    """Test connection persistence."""

    def test_reconnect_replaces_tokens(self):
        expires = utcnow() + timedelta(hours=1)
        connection_id = self.storage.save_connection(
            'cloud-1', 'Acme', 'https://acme.atlassian.net', 'enc-a', 'enc-r',
            expires, ['read:jira-work'], 'Bearer'
        )

        self.assertEqual(connection_id, self.connection_id)
        connection = self.storage.get_connection(connection_id)
        self.assertEqual(connection.access_token_enc, 'enc-a')
        self.assertEqual(connection.site_name, 'Acme')
        self.assertEqual(len(self.storage.list_connections()), 1)

    def test_update_tokens_keeps_refresh_token(self):
        before = self.storage.get_connection(self.connection_id).refresh_token_enc

        self.storage.update_connection_tokens(
            self.connection_id, 'enc-new', utcnow(), 'Bearer', ['read:jira-work']
        )

        connection = self.storage.get_connection(self.connection_id)
        self.assertEqual(connection.access_token_enc, 'enc-new')
        self.assertEqual(connection.refresh_token_enc, before)

    def test_update_tokens_unknown_connection(self):
        with self.assertRaises(LookupError):
            self.storage.update_connection_tokens(999, 'enc', utcnow(), 'Bearer', [])


class TestSyncJobs(StorageTestCase):
    """Test sync job lifecycle."""

    def test_job_finishes_once(self):
        job_id = self.storage.create_sync_job(self.connection_id)
        self.assertEqual(self.fetch(JiraSyncJob, job_id).status, 'running')

        self.assertTrue(self.storage.finish_sync_job(job_id, 'failed', 'Jira request failed (500)'))
        self.assertFalse(self.storage.finish_sync_job(job_id, 'success'))

        job = self.fetch(JiraSyncJob, job_id)
        self.assertEqual(job.status, 'failed')
        self.assertEqual(job.error_message, 'Jira request failed (500)')
        self.assertIsNotNone(job.finished_at)

    def test_invalid_status(self):
        job_id = self.storage.create_sync_job(self.connection_id)

        with self.assertRaises(ValueError):
            self.storage.finish_sync_job(job_id, 'running')

    def test_long_error_is_truncated(self):
        job_id = self.storage.create_sync_job(self.connection_id)
        self.storage.finish_sync_job(job_id, 'failed', 'x' * 5000)

        self.assertEqual(len(self.fetch(JiraSyncJob, job_id).error_message), 1000)

    def test_list_jobs_newest_first(self):
        other_connection = add_connection(self.factory, self.vault, cloud_id='cloud-2')
        first = self.storage.create_sync_job(self.connection_id)
        second = self.storage.create_sync_job(other_connection)
        third = self.storage.create_sync_job(self.connection_id)

        self.assertEqual([j.id for j in self.storage.list_sync_jobs()], [third, second, first])
        self.assertEqual([j.id for j in self.storage.list_sync_jobs(limit=1)], [third])
        self.assertEqual(
            [j.id for j in self.storage.list_sync_jobs(connection_id=self.connection_id)],
            [third, first]
        )


class TestOAuthState(StorageTestCase):
    """Test single-use OAuth state values."""

    def test_state_consumed_once(self):
        self.storage.add_oauth_state('abc')

        self.assertTrue(self.storage.consume_oauth_state('abc'))
        self.assertFalse(self.storage.consume_oauth_state('abc'))

    def test_unknown_state(self):
        self.assertFalse(self.storage.consume_oauth_state('never-issued'))

    def test_expired_state_rejected_and_purged(self):
        self.storage.add_oauth_state('old', ttl_seconds=-1)
        self.storage.add_oauth_state('stale', ttl_seconds=-1)

        self.assertFalse(self.storage.consume_oauth_state('old'))
        self.assertEqual(self.count(JiraOAuthState), 0)

    def test_health_check(self):
        self.assertTrue(self.storage.check_connection())


if __name__ == '__main__':
    unittest.main()
