"""FastAPI server adapter for the tracker.

Design intent:
- Keep synchronization and authorization logic in `collab_issues.tracker.*`
- Keep transport concerns (WebSocket framing, REST views, static files) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from collab_issues.server.app import create_app
