"""Main entry point for the Beacon CLI.

Usage:
    python -m beacon.main --help
    beacon --help  # If installed via pip/uv
"""

from beacon.cli import main

if __name__ == "__main__":
    main()
