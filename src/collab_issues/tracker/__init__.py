"""Real-time synchronization and authorization engine.

Layers, leaf first:
- `persistence`: full-snapshot JSON files
- `sessions`: live connections and their declared usernames
- `store`: the issue collection and its ownership rules
- `audit`: append-only history of accepted changes
- `broadcaster`: ordered fan-out to connected clients
- `hub`: wires the above together behind the client operations
"""

from __future__ import annotations

__all__ = ["TrackerHub", "build_hub"]

from collab_issues.tracker.hub import TrackerHub, build_hub
