"""
SQLAlchemy ORM Models
Defines the database models for synced Jira connections and their data.
"""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from jira_sync.utils.helpers import utcnow

Base = declarative_base()


# ============================================
# CONNECTION MODELS
# ============================================

class JiraConnection(Base):
    """One linked Jira Cloud site and its encrypted OAuth credentials."""
    __tablename__ = 'jira_connections'

    id = Column(Integer, primary_key=True)
    cloud_id = Column(String(255), nullable=False, unique=True)
    site_name = Column(String(255))
    site_url = Column(Text)
    access_token_enc = Column(Text, nullable=False)  # JSON bundle from TokenVault
    refresh_token_enc = Column(Text)
    expires_at = Column(DateTime)
    scopes = Column(JSON, default=list)
    token_type = Column(String(50))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sync_jobs = relationship("JiraSyncJob", back_populates="connection")
    boards = relationship("JiraBoard", back_populates="connection")


class JiraSyncJob(Base):
    """One sync attempt for one connection."""
    __tablename__ = 'jira_sync_jobs'

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey('jira_connections.id'), nullable=False)
    job_type = Column(String(50), nullable=False, default='full')
    status = Column(String(50), nullable=False, default='running')  # 'running', 'success', 'failed'
    started_at = Column(DateTime, nullable=False, default=utcnow)
    finished_at = Column(DateTime)
    error_message = Column(Text)

    __table_args__ = (
        Index('ix_jira_sync_jobs_connection_started', 'connection_id', 'started_at'),
    )

    # Relationships
    connection = relationship("JiraConnection", back_populates="sync_jobs")


class JiraOAuthState(Base):
    """Pending OAuth authorization state values."""
    __tablename__ = 'jira_oauth_states'

    id = Column(Integer, primary_key=True)
    state = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)


# ============================================
# SYNCED JIRA MODELS
# ============================================

class JiraBoard(Base):
    """Jira board model (Scrum/Kanban)."""
    __tablename__ = 'jira_boards'

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey('jira_connections.id'), nullable=False)
    jira_id = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(50))  # 'scrum', 'kanban', 'simple'
    is_private = Column(Boolean)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('connection_id', 'jira_id', name='uq_board_connection_jira_id'),
    )

    # Relationships
    connection = relationship("JiraConnection", back_populates="boards")
    sprints = relationship("JiraSprint", back_populates="board")
    issues = relationship("JiraIssue", back_populates="board")


class JiraSprint(Base):
    """Jira sprint model."""
    __tablename__ = 'jira_sprints'

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey('jira_connections.id'), nullable=False)
    board_id = Column(Integer, ForeignKey('jira_boards.id'), nullable=False)
    jira_id = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    state = Column(String(50))  # 'active', 'closed', 'future'
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    complete_date = Column(DateTime)
    goal = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('connection_id', 'jira_id', name='uq_sprint_connection_jira_id'),
    )

    # Relationships
    board = relationship("JiraBoard", back_populates="sprints")


class JiraAssignee(Base):
    """Jira user seen as an issue assignee."""
    __tablename__ = 'jira_assignees'

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey('jira_connections.id'), nullable=False)
    account_id = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255))
    avatar_url = Column(Text)
    active = Column(Boolean)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('connection_id', 'account_id', name='uq_assignee_connection_account_id'),
    )


class JiraIssue(Base):
    """Jira issue model."""
    __tablename__ = 'jira_issues'

    id = Column(Integer, primary_key=True)
    connection_id = Column(Integer, ForeignKey('jira_connections.id'), nullable=False)
    board_id = Column(Integer, ForeignKey('jira_boards.id'), nullable=False)
    assignee_id = Column(Integer, ForeignKey('jira_assignees.id'))
    jira_id = Column(String(50), nullable=False)
    key = Column(String(50), nullable=False)
    summary = Column(Text, nullable=False)
    issue_type = Column(String(100), nullable=False)
    status = Column(String(100), nullable=False)
    status_category = Column(String(100))
    priority = Column(String(100))
    jira_created_at = Column(DateTime)
    jira_updated_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('connection_id', 'jira_id', name='uq_issue_connection_jira_id'),
        Index('ix_jira_issues_board', 'board_id'),
    )

    # Relationships
    board = relationship("JiraBoard", back_populates="issues")
    assignee = relationship("JiraAssignee")
