"""
Sync Engine Module
Orchestrates pulling boards, sprints and issues from Jira into the local database.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from jira_sync.database.storage import StorageGateway
from jira_sync.jira_client import JiraClient, JiraClientError, diagnose_unauthorized
from jira_sync.oauth import TokenRefresher
from jira_sync.payloads import BoardRecord, IssueRecord, SprintRecord
from jira_sync.token_vault import TokenVault
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

UNAUTHORIZED_MESSAGE = "Jira authorization failed; reconnect required"


class JiraUnauthorizedError(Exception):
    """Jira keeps rejecting the connection's credentials; the user must reconnect."""

    def __init__(self, message: str = UNAUTHORIZED_MESSAGE, reason: str = None):
        self.message = message
        self.reason = reason
        super().__init__(self.message)


@dataclass
class SyncOutcome:
    """Result of syncing one connection within a cycle."""
    connection_id: int
    job_id: Optional[int]
    status: str
    error_message: Optional[str] = None
    stats: Dict[str, int] = field(default_factory=dict)


def format_error(error: Exception) -> str:
    """Message stored on a failed sync job."""
    if isinstance(error, JiraClientError):
        return error.message
    return str(error) or error.__class__.__name__


class JiraSyncEngine:
    """
    Runs sync cycles across every stored Jira connection.

    Connections, boards, sprints and issues are processed strictly in order.
    A 401 triggers one token refresh and one full retry of the connection's
    sync pass; any failure only affects the connection it happened on.
    """

    def __init__(
        self,
        storage: StorageGateway = None,
        vault: TokenVault = None,
        refresher: TokenRefresher = None,
        client_factory: Callable[[str, str], JiraClient] = None,
        diagnoser: Optional[Callable] = diagnose_unauthorized
    ):
        self.storage = storage or StorageGateway()
        self.vault = vault or TokenVault()
        self.refresher = refresher or TokenRefresher(self.storage, self.vault)
        self.client_factory = client_factory or (
            lambda access_token, cloud_id: JiraClient(access_token, cloud_id=cloud_id)
        )
        self.diagnoser = diagnoser

    # ========================================
    # Cycle
    # ========================================

    def run_cycle(self) -> List[SyncOutcome]:
        """Sync every connection once, in order."""
        connections = self.storage.list_connections()
        if not connections:
            logger.info("No Jira connections found; skipping sync")
            return []

        logger.info(f"Starting Jira sync cycle for {len(connections)} connection(s)")
        outcomes = []

        for connection in connections:
            try:
                outcomes.append(self.sync_connection(connection))
            except Exception as e:
                # Job bookkeeping itself failed; keep going with the next connection
                logger.exception(f"Could not record sync for connection {connection.id}: {e}")
                outcomes.append(SyncOutcome(connection.id, None, 'failed', format_error(e)))

        failed = sum(1 for outcome in outcomes if outcome.status == 'failed')
        logger.info(f"Jira sync cycle finished: {len(outcomes) - failed} succeeded, {failed} failed")
        return outcomes

    def sync_connection(self, connection) -> SyncOutcome:
        """Sync one connection and record exactly one terminal job status."""
        job_id = self.storage.create_sync_job(connection.id, job_type='full')
        stats = {'boards': 0, 'sprints': 0, 'issues': 0, 'assignees': 0}

        try:
            self._sync_with_refresh(connection, stats)
        except Exception as e:
            error_message = format_error(e)
            if isinstance(e, JiraClientError):
                logger.error(
                    f"Jira sync failed for connection {connection.id}: status={e.status_code} "
                    f"url={e.url} body={(e.body or '')[:500]}"
                )
            else:
                logger.error(f"Jira sync failed for connection {connection.id}: {e}")

            self.storage.finish_sync_job(job_id, 'failed', error_message)
            return SyncOutcome(connection.id, job_id, 'failed', error_message, stats)

        self.storage.finish_sync_job(job_id, 'success')
        logger.info(f"Jira sync succeeded for connection {connection.id}: {stats}")
        return SyncOutcome(connection.id, job_id, 'success', None, stats)

    def _sync_with_refresh(self, connection, stats: Dict[str, int]) -> None:
        access_token = self.vault.decrypt_from_json(connection.access_token_enc)

        try:
            self._sync_boards_and_issues(connection, access_token, stats)
            return
        except JiraClientError as e:
            if not e.is_unauthorized:
                raise
            logger.warning(f"Jira returned 401 for connection {connection.id}; attempting token refresh")

        new_token = self.refresher.refresh(connection)
        if not new_token:
            raise self._unauthorized(connection, access_token)

        # The whole pass is repeated; upserts make the re-fetched boards harmless
        stats.update(dict.fromkeys(stats, 0))
        try:
            self._sync_boards_and_issues(connection, new_token, stats)
        except JiraClientError as e:
            if e.is_unauthorized:
                raise self._unauthorized(connection, new_token) from e
            raise

    def _unauthorized(self, connection, access_token: str) -> JiraUnauthorizedError:
        if self.diagnoser is None:
            return JiraUnauthorizedError()

        diagnosis = self.diagnoser(connection.cloud_id, access_token)
        logger.warning(
            f"Jira unauthorized for connection {connection.id}: {diagnosis.reason} ({diagnosis.message})"
        )
        return JiraUnauthorizedError(f"{UNAUTHORIZED_MESSAGE} ({diagnosis.message})", diagnosis.reason)

    # ========================================
    # Board, Sprint & Issue Sync
    # ========================================

    def _sync_boards_and_issues(self, connection, access_token: str, stats: Dict[str, int]) -> None:
        with self.client_factory(access_token, connection.cloud_id) as client:
            boards = [BoardRecord.from_payload(board) for board in client.fetch_boards()]

            for board in boards:
                board_id = self.storage.upsert_board(connection.id, board)
                stats['boards'] += 1

                self._sync_sprints_for_board(client, connection.id, board, board_id, stats)
                self._sync_issues_for_board(client, connection.id, board, board_id, stats)

    def _sync_sprints_for_board(
        self,
        client: JiraClient,
        connection_id: int,
        board: BoardRecord,
        board_id: int,
        stats: Dict[str, int]
    ) -> None:
        for sprint_data in client.iter_sprints(board.jira_id):
            self.storage.upsert_sprint(connection_id, board_id, SprintRecord.from_payload(sprint_data))
            stats['sprints'] += 1

    def _sync_issues_for_board(
        self,
        client: JiraClient,
        connection_id: int,
        board: BoardRecord,
        board_id: int,
        stats: Dict[str, int]
    ) -> None:
        for issue_data in client.iter_board_issues(board.jira_id):
            issue = IssueRecord.from_payload(issue_data)

            assignee_id = None
            if issue.assignee is not None:
                assignee_id = self.storage.upsert_assignee(connection_id, issue.assignee)
                stats['assignees'] += 1

            self.storage.upsert_issue(connection_id, board_id, issue, assignee_id)
            stats['issues'] += 1


def run_sync_cycle() -> List[SyncOutcome]:
    """
    Convenience function to run one sync cycle against the configured database.

    Returns:
        One outcome per connection
    """
    return JiraSyncEngine().run_cycle()
