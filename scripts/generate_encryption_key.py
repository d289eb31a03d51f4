#!/usr/bin/env python
"""
Generate Encryption Key Script
Prints a fresh base64 AES-256 key for the ENCRYPTION_KEY setting.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from jira_sync.token_vault import generate_key


def main():
    print(f"ENCRYPTION_KEY={generate_key()}")


if __name__ == '__main__':
    main()
