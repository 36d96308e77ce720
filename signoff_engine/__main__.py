"""Entry point for running signoff_engine as a module.

Usage:
    python -m signoff_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
