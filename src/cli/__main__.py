"""
Entry point for running as module (python -m src.cli) and for the
job-orchestrator console script.
"""

# Load environment variables BEFORE importing modules that depend on them
from dotenv import find_dotenv, load_dotenv
load_dotenv(find_dotenv(usecwd=True))

import sys
from .main import main


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
