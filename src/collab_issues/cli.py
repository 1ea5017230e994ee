"""CLI entrypoint: run the server and inspect persisted state."""

from __future__ import annotations

import argparse
import logging
import sys

from pydantic import ValidationError

from collab_issues import __version__
from collab_issues.config import TrackerSettings
from collab_issues.logging import configure_logging
from collab_issues.tracker.audit import AuditLog
from collab_issues.tracker.persistence import JsonFilePersistence

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="collab-issues",
        description="Real-time collaborative issue tracker",
    )
    parser.add_argument("--version", action="version", version=f"collab-issues {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the tracker server")
    serve.add_argument("--host", default=None, help="Bind address (default: TRACKER_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: TRACKER_PORT)")

    subparsers.add_parser("issues", help="List persisted issues, newest first")

    history = subparsers.add_parser("history", help="Print the audit history")
    history.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only print the most recent N entries",
    )

    subparsers.add_parser("users", help="List every username that has joined")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = TrackerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "serve":
            import uvicorn

            from collab_issues.server.app import create_app

            uvicorn.run(
                create_app(settings),
                host=args.host or settings.host,
                port=args.port or settings.port,
                log_config=None,
            )
            return 0

        persistence = JsonFilePersistence(settings.issues_file, settings.users_file)

        if args.command == "issues":
            issues = persistence.load_all()
            if not issues:
                print("No issues.")
            for issue in reversed(issues):
                comments = len(issue.comments)
                print(
                    f"{issue.id}  [{issue.status.value}]  {issue.title}  "
                    f"(by {issue.creator}, {comments} comment{'s' if comments != 1 else ''})"
                )
            return 0

        if args.command == "history":
            audit = AuditLog(settings.audit_file)
            for entry in audit.entries(limit=args.limit):
                print(f"{entry.seq:>5}  {entry.timestamp.isoformat()}  {entry.message}")
            return 0

        if args.command == "users":
            for user in persistence.load_users():
                print(f"{user.username}  (first joined {user.joined_at.isoformat()})")
            return 0

        parser.error(f"Unknown command: {args.command}")

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
