"""
Entry point for running selfcorrect as a module.

Usage:
    python -m selfcorrect analyze
    python -m selfcorrect learn command_execution '{"command": "npm test", "exitCode": 1}'

This is equivalent to:
    python -m selfcorrect.cli.learning_cli [args]
"""

import sys

from selfcorrect.cli.learning_cli import main

if __name__ == "__main__":
    sys.exit(main())
