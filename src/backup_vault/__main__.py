#!/usr/bin/env python3
"""
Command-line interface entry point for the backup_vault package.

This module allows the package to be executed as a script using:
python -m backup_vault
"""

import sys
from .cli import main


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(1)
