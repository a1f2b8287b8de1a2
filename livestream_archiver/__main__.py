"""Entry point for Livestream Archiver.

Usage:
    python -m livestream_archiver          Watch and archive (foreground)
    python -m livestream_archiver scan     Archive the current backlog and exit
"""

import sys


def main() -> None:
    """Delegate to the service CLI and exit with its status."""
    from livestream_archiver.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()
