"""
Jira Sync Service
Pulls Jira Cloud boards, sprints and issues for OAuth-connected sites into a local database.
"""

__version__ = '1.0.0'
