#!/usr/bin/env python
"""
Run Sync Script
Command-line script for running one Jira sync cycle.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jira_sync.utils.logger import setup_logging, get_logger
from jira_sync.sync_engine import run_sync_cycle


def main():
    """Main entry point for the sync script."""
    parser = argparse.ArgumentParser(description='Run one Jira sync cycle for every connection')
    parser.parse_args()

    setup_logging()
    logger = get_logger(__name__)

    try:
        outcomes = run_sync_cycle()
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)

    print(f"\n{'='*50}")
    print("Jira Sync Cycle Complete")
    print(f"{'='*50}")

    if not outcomes:
        print("No Jira connections found")

    for outcome in outcomes:
        print(f"Connection {outcome.connection_id}: {outcome.status} (job {outcome.job_id})")
        if outcome.stats:
            print(f"  Boards: {outcome.stats['boards']}  Sprints: {outcome.stats['sprints']}  "
                  f"Issues: {outcome.stats['issues']}  Assignees: {outcome.stats['assignees']}")
        if outcome.error_message:
            print(f"  Error: {outcome.error_message}")

    if any(outcome.status == 'failed' for outcome in outcomes):
        sys.exit(1)


if __name__ == '__main__':
    main()
