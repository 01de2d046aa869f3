"""
Entry point for running the relay tooling as a module.

Usage:
    python -m activate_relay
"""

from activate_relay.cli import main

if __name__ == "__main__":
    main()
