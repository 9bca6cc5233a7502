#!/usr/bin/env python3
"""
Linux Bash MCP server.

Runs bash commands and scripts inside a WSL2 distribution and returns
normalized JSON results over stdio.
"""

import sys

from linux_bash_mcp.main import main

if __name__ == "__main__":
    sys.exit(main())
