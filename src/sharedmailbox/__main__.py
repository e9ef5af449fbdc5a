#!/usr/bin/env python3
"""
Allow running sharedmailbox as a module: python -m sharedmailbox

This enables the following usage:
    python -m sharedmailbox [OPTIONS] COMMAND

Which is equivalent to:
    sharedmailbox [OPTIONS] COMMAND
"""

from sharedmailbox.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
