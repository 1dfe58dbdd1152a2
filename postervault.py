#!/usr/bin/env python3
"""PosterVault - poster archive manager for Plex libraries.

Mirrors poster artwork for movies, shows, seasons and collections into a
local folder tree and marks posters whose items left the server as
orphaned.

Usage:
    python postervault.py              # Run the auto-import sweep if it is due
    python postervault.py --force      # Run the sweep now, ignoring the schedule
    python postervault.py --daemon     # Keep running and check the schedule periodically
    python postervault.py --verbose    # Enable debug logging
    python postervault.py --show-ids   # Print the stored valid IDs
    python postervault.py --reset-ids  # Forget all stored valid IDs
"""
import sys


def main():
    """Main entry point for PosterVault."""
    if "--help" in sys.argv or "-h" in sys.argv:
        print(__doc__)
        return 0

    from core.app import main as app_main
    return app_main()


if __name__ == "__main__":
    sys.exit(main() or 0)
