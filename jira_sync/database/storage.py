"""
Storage Gateway Module
Upsert-by-natural-key persistence for connections, sync jobs and synced Jira data.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jira_sync.database.connection import get_db, session_scope
from jira_sync.database.models import (
    JiraAssignee, JiraBoard, JiraConnection, JiraIssue,
    JiraOAuthState, JiraSprint, JiraSyncJob
)
from jira_sync.payloads import AssigneeRecord, BoardRecord, IssueRecord, SprintRecord
from jira_sync.utils.helpers import utcnow
from jira_sync.utils.logger import get_logger

logger = get_logger(__name__)

TERMINAL_JOB_STATUSES = ('success', 'failed')


class StorageGateway:
    """
    Persistence for the sync engine.

    Every call runs in its own transaction, so progress made before a failure
    is kept. Synced entities are only ever upserted, never deleted.
    """

    def __init__(self, session_factory: Callable[[], Session] = None):
        """
        Args:
            session_factory: Session factory; defaults to the configured database.
        """
        self._session_factory = session_factory or get_db().session_factory

    def _scope(self):
        return session_scope(self._session_factory)

    # ========================================
    # Upsert Core
    # ========================================

    def _upsert(
        self,
        session: Session,
        model,
        key_columns: Iterable[str],
        values: Dict,
        update_columns: Iterable[str]
    ) -> int:
        """Insert or update one row by its natural key and return its local id."""
        key_columns = list(key_columns)
        dialect = session.get_bind().dialect.name
        insert = pg_insert if dialect == 'postgresql' else sqlite_insert

        stmt = insert(model).values(**values).on_conflict_do_update(
            index_elements=key_columns,
            set_={column: values[column] for column in update_columns}
        )
        session.execute(stmt)
        session.flush()

        filters = [getattr(model, column) == values[column] for column in key_columns]
        return session.query(model.id).filter(*filters).scalar()

    def check_connection(self) -> bool:
        """Health check; True when the database answers."""
        try:
            with self._scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection health check failed: {e}")
            return False

    # ========================================
    # Connections
    # ========================================

    def list_connections(self) -> List[JiraConnection]:
        with self._scope() as session:
            return session.query(JiraConnection).order_by(JiraConnection.id).all()

    def get_connection(self, connection_id: int) -> Optional[JiraConnection]:
        with self._scope() as session:
            return session.get(JiraConnection, connection_id)

    def save_connection(
        self,
        cloud_id: str,
        site_name: Optional[str],
        site_url: Optional[str],
        access_token_enc: str,
        refresh_token_enc: Optional[str],
        expires_at: datetime,
        scopes: List[str],
        token_type: Optional[str]
    ) -> int:
        """Store a newly authorized site; reconnecting a site replaces its tokens."""
        values = {
            'cloud_id': cloud_id,
            'site_name': site_name,
            'site_url': site_url,
            'access_token_enc': access_token_enc,
            'refresh_token_enc': refresh_token_enc,
            'expires_at': expires_at,
            'scopes': list(scopes),
            'token_type': token_type,
            'updated_at': utcnow(),
        }
        with self._scope() as session:
            return self._upsert(
                session, JiraConnection, ['cloud_id'], values,
                [c for c in values if c != 'cloud_id']
            )

    def update_connection_tokens(
        self,
        connection_id: int,
        access_token_enc: str,
        expires_at: datetime,
        token_type: Optional[str],
        scopes: List[str],
        refresh_token_enc: Optional[str] = None
    ) -> None:
        """Replace a connection's tokens in place; the refresh token is kept unless a new one is given."""
        with self._scope() as session:
            connection = session.get(JiraConnection, connection_id)
            if connection is None:
                raise LookupError(f"Jira connection {connection_id} not found")

            connection.access_token_enc = access_token_enc
            if refresh_token_enc:
                connection.refresh_token_enc = refresh_token_enc
            connection.expires_at = expires_at
            connection.token_type = token_type
            connection.scopes = list(scopes)

    # ========================================
    # Sync Jobs
    # ========================================

    def create_sync_job(self, connection_id: int, job_type: str = 'full') -> int:
        with self._scope() as session:
            job = JiraSyncJob(
                connection_id=connection_id,
                job_type=job_type,
                status='running',
                started_at=utcnow()
            )
            session.add(job)
            session.flush()
            return job.id

    def finish_sync_job(self, job_id: int, status: str, error_message: Optional[str] = None) -> bool:
        """
        Move a running job to a terminal status.

        Returns False, leaving the row untouched, if the job already finished.
        """
        if status not in TERMINAL_JOB_STATUSES:
            raise ValueError(f"Invalid terminal job status: {status}")

        with self._scope() as session:
            updated = session.query(JiraSyncJob).filter(
                JiraSyncJob.id == job_id,
                JiraSyncJob.status == 'running'
            ).update({
                'status': status,
                'finished_at': utcnow(),
                'error_message': error_message[:1000] if error_message else None
            }, synchronize_session=False)

        if not updated:
            logger.warning(f"Sync job {job_id} was not running; status {status} not recorded")
        return bool(updated)

    def list_sync_jobs(self, limit: int = 20, connection_id: int = None) -> List[JiraSyncJob]:
        with self._scope() as session:
            query = session.query(JiraSyncJob)
            if connection_id is not None:
                query = query.filter(JiraSyncJob.connection_id == connection_id)
            return query.order_by(JiraSyncJob.id.desc()).limit(limit).all()

    # ========================================
    # Synced Jira Data
    # ========================================

    def upsert_board(self, connection_id: int, board: BoardRecord) -> int:
        values = {
            'connection_id': connection_id,
            'jira_id': board.jira_id,
            'name': board.name,
            'type': board.type,
            'is_private': board.is_private,
        }
        with self._scope() as session:
            return self._upsert(
                session, JiraBoard, ['connection_id', 'jira_id'], values,
                ['name', 'type', 'is_private']
            )

    def upsert_sprint(self, connection_id: int, board_id: int, sprint: SprintRecord) -> int:
        values = {
            'connection_id': connection_id,
            'jira_id': sprint.jira_id,
            'board_id': board_id,
            'name': sprint.name,
            'state': sprint.state,
            'start_date': sprint.start_date,
            'end_date': sprint.end_date,
            'complete_date': sprint.complete_date,
            'goal': sprint.goal,
        }
        with self._scope() as session:
            return self._upsert(
                session, JiraSprint, ['connection_id', 'jira_id'], values,
                ['board_id', 'name', 'state', 'start_date', 'end_date', 'complete_date', 'goal']
            )

    def upsert_assignee(self, connection_id: int, assignee: AssigneeRecord) -> int:
        values = {
            'connection_id': connection_id,
            'account_id': assignee.account_id,
            'display_name': assignee.display_name,
            'email': assignee.email,
            'avatar_url': assignee.avatar_url,
            'active': assignee.active,
        }
        update_columns = ['display_name', 'email', 'avatar_url']
        # An absent active flag keeps the stored value
        if assignee.active is not None:
            update_columns.append('active')

        with self._scope() as session:
            return self._upsert(
                session, JiraAssignee, ['connection_id', 'account_id'], values, update_columns
            )

    def upsert_issue(
        self,
        connection_id: int,
        board_id: int,
        issue: IssueRecord,
        assignee_id: Optional[int] = None
    ) -> int:
        values = {
            'connection_id': connection_id,
            'jira_id': issue.jira_id,
            'board_id': board_id,
            'assignee_id': assignee_id,
            'key': issue.key,
            'summary': issue.summary,
            'issue_type': issue.issue_type,
            'status': issue.status,
            'status_category': issue.status_category,
            'priority': issue.priority,
            'jira_created_at': issue.created,
            'jira_updated_at': issue.updated,
        }
        with self._scope() as session:
            return self._upsert(
                session, JiraIssue, ['connection_id', 'jira_id'], values,
                [c for c in values if c not in ('connection_id', 'jira_id')]
            )

    # ========================================
    # OAuth State
    # ========================================

    def add_oauth_state(self, state: str, ttl_seconds: int = 600) -> None:
        with self._scope() as session:
            session.add(JiraOAuthState(
                state=state,
                expires_at=utcnow() + timedelta(seconds=ttl_seconds)
            ))

    def consume_oauth_state(self, state: str) -> bool:
        """Delete a pending state and report whether it was valid and unexpired."""
        now = utcnow()
        with self._scope() as session:
            pending = session.query(JiraOAuthState).filter(JiraOAuthState.state == state).first()
            valid = pending is not None and pending.expires_at > now
            if pending is not None:
                session.delete(pending)

            session.query(JiraOAuthState).filter(
                JiraOAuthState.expires_at <= now
            ).delete(synchronize_session=False)

        return valid
