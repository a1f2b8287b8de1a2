"""Livestream Archiver: date-organized archiving of finished recordings.

Watches an ingest folder for new livestream recordings, waits until each
file has stopped growing, then transcodes it into a dated archive tree
with an episode ``.nfo`` sidecar for the media server.
"""

__version__ = "1.0.0"
__app_name__ = "Livestream Archiver"
