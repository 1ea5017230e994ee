"""Collaborative issue tracker.

A small real-time issue tracker:
- issues and comments kept in a shared store with creator-owned mutations
- full snapshots persisted to local JSON files
- an append-only audit history of every accepted change
- live fan-out of changes to every connected WebSocket client
"""

__version__ = "0.1.0"

from collab_issues.config import TrackerSettings

__all__ = ["__version__", "TrackerSettings"]
