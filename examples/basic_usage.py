#!/usr/bin/env python3
"""Programmatic usage example.

This drives the tracker engine in-process, without a server:

* load settings from `.env`
* join two sessions
* create, update, comment on and delete an issue
* print every event each session receives

Data is written to TRACKER_DATA_DIR (default `./data`).
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from collab_issues.config import TrackerSettings
from collab_issues.logging import configure_logging
from collab_issues.tracker import build_hub


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Walk through a two-user session.")
    parser.add_argument("--title", default="Bug", help="Title of the demo issue")
    parser.add_argument("--log-level", default="WARNING", help="Root logging level")
    return parser.parse_args(argv)


def _printer(name: str):
    async def send(message: dict[str, object]) -> None:
        print(f"[{name}] {message['type']}: {message['data']}")

    return send


async def _run(title: str) -> None:
    hub = build_hub(TrackerSettings())
    hub.connect("alice-conn", _printer("alice"))
    hub.connect("bob-conn", _printer("bob"))

    await hub.join("alice-conn", "alice")
    await hub.join("bob-conn", "bob")

    issue = await hub.create_issue("alice-conn", title, "crashes on start")
    await hub.dispatch(
        "bob-conn",
        {"type": "issue:updateStatus", "data": {"issueId": issue.id, "status": "closed"}},
    )
    await hub.update_status("alice-conn", issue.id, "on-going")
    await hub.add_comment("bob-conn", issue.id, "I can reproduce this")
    await hub.delete_issue("alice-conn", issue.id)

    await hub.broadcaster.flush()
    await hub.disconnect("bob-conn")
    await hub.disconnect("alice-conn")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level)
    asyncio.run(_run(args.title))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
