"""Unit tests for the hub: authorization via sessions and ordered fan-out."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from collab_issues.tracker.audit import AuditLog
from collab_issues.tracker.errors import GENERIC_FAILURE_NOTICE, PersistenceError
from collab_issues.tracker.hub import JOIN_REQUIRED_NOTICE
from collab_issues.tracker.store import STATUS_FORBIDDEN_NOTICE, IssueStore


def test_alice_and_bob_scenario(make_hub, make_recorder, audit: AuditLog) -> None:
    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()

        hub.connect("c-alice", alice)
        await hub.dispatch("c-alice", {"type": "user:join", "data": "alice"})
        await hub.dispatch(
            "c-alice",
            {"type": "issue:create", "data": {"title": "Bug", "description": "crashes"}},
        )
        issue_id = hub.snapshot()[0].id

        hub.connect("c-bob", bob)
        await hub.dispatch("c-bob", {"type": "user:join", "data": "bob"})
        await hub.dispatch(
            "c-bob",
            {"type": "issue:updateStatus", "data": {"issueId": issue_id, "status": "closed"}},
        )
        status_after_bob = hub.snapshot()[0].status.value

        await hub.dispatch(
            "c-alice",
            {"type": "issue:updateStatus", "data": {"issueId": issue_id, "status": "closed"}},
        )
        await hub.dispatch(
            "c-bob", {"type": "issue:addComment", "data": {"issueId": issue_id, "text": "thanks"}}
        )
        await hub.dispatch("c-alice", {"type": "issue:delete", "data": issue_id})

        await hub.broadcaster.flush()
        final = hub.snapshot()
        await hub.broadcaster.close()
        return alice, bob, issue_id, status_after_bob, final

    alice, bob, issue_id, status_after_bob, final = asyncio.run(scenario())

    assert status_after_bob == "open"
    assert final == []

    assert alice.types() == [
        "issues:all",
        "user:joined",
        "issue:created",
        "user:joined",
        "issue:statusUpdated",
        "issue:commentAdded",
        "issue:deleted",
    ]
    assert bob.types() == [
        "issues:all",
        "user:joined",
        "error",
        "issue:statusUpdated",
        "issue:commentAdded",
        "issue:deleted",
    ]

    created = alice.of_type("issue:created")[0]["data"]
    assert created["status"] == "open"
    assert created["creator"] == "alice"

    assert bob.of_type("error")[0]["data"] == {"message": STATUS_FORBIDDEN_NOTICE}
    # Bob joined after the issue was created, so his snapshot carries it.
    assert [i["id"] for i in bob.of_type("issues:all")[0]["data"]] == [issue_id]

    for recorder in (alice, bob):
        status = recorder.of_type("issue:statusUpdated")[0]["data"]
        assert status["issueId"] == issue_id
        assert status["status"] == "closed"
        assert status["updatedBy"] == "alice"
        comment = recorder.of_type("issue:commentAdded")[0]["data"]
        assert comment["comment"]["author"] == "bob"
        assert comment["comment"]["text"] == "thanks"
        assert recorder.of_type("issue:deleted")[0]["data"] == {"issueId": issue_id}

    assert [e.message for e in audit.entries()] == [
        "User joined: alice",
        "Issue created: Bug by alice",
        "User joined: bob",
        "Issue status updated: Bug from open to closed by alice",
        "Comment added to issue: Bug by bob",
        "Issue deleted: Bug by alice",
    ]


def test_mutation_before_join_is_rejected(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        anon = make_recorder()
        hub.connect("c1", anon)
        await hub.dispatch("c1", {"type": "issue:create", "data": {"title": "T", "description": "D"}})
        await hub.broadcaster.flush()
        snap = hub.snapshot()
        await hub.broadcaster.close()
        return anon, snap

    anon, snap = asyncio.run(scenario())

    assert snap == []
    assert anon.messages == [{"type": "error", "data": {"message": JOIN_REQUIRED_NOTICE}}]


def test_rejections_reach_only_the_requester(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()
        hub.connect("a", alice)
        hub.connect("b", bob)
        await hub.join("a", "alice")
        await hub.join("b", "bob")
        await hub.broadcaster.flush()
        alice.messages.clear()
        bob.messages.clear()

        await hub.dispatch("a", {"type": "issue:create", "data": {"title": "", "description": "x"}})
        await hub.dispatch("a", {"type": "issue:addComment", "data": {"issueId": "404", "text": "x"}})
        await hub.dispatch("a", {"type": "issue:teleport", "data": {}})
        await hub.dispatch("a", ["not", "an", "object"])
        await hub.dispatch("a", {"type": "issue:updateStatus", "data": {"status": "closed"}})
        await hub.broadcaster.flush()
        await hub.broadcaster.close()
        return alice, bob

    alice, bob = asyncio.run(scenario())

    assert alice.types() == ["error"] * 5
    assert "Issue not found: 404" in [m["data"]["message"] for m in alice.messages]
    assert bob.messages == []


def test_delete_of_missing_issue_broadcasts_nothing(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()
        hub.connect("a", alice)
        hub.connect("b", bob)
        await hub.join("a", "alice")
        await hub.join("b", "bob")
        await hub.broadcaster.flush()
        alice.messages.clear()
        bob.messages.clear()

        deleted = await hub.delete_issue("a", "does-not-exist")
        await hub.broadcaster.flush()
        await hub.broadcaster.close()
        return deleted, alice, bob

    deleted, alice, bob = asyncio.run(scenario())

    assert deleted is False
    assert alice.messages == []
    assert bob.messages == []


def test_persistence_failure_is_not_broadcast(
    make_hub, make_recorder, store: IssueStore, caplog: pytest.LogCaptureFixture
) -> None:
    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()
        hub.connect("a", alice)
        hub.connect("b", bob)
        await hub.join("a", "alice")
        await hub.join("b", "bob")
        await hub.broadcaster.flush()
        alice.messages.clear()
        bob.messages.clear()

        failing = Mock(wraps=store._persistence)
        failing.save_all.side_effect = PersistenceError("disk full")
        store._persistence = failing

        await hub.dispatch("a", {"type": "issue:create", "data": {"title": "T", "description": "D"}})
        await hub.broadcaster.flush()
        await hub.broadcaster.close()
        return alice, bob, hub.snapshot()

    alice, bob, snap = asyncio.run(scenario())

    assert snap == []
    assert alice.messages == [{"type": "error", "data": {"message": GENERIC_FAILURE_NOTICE}}]
    assert bob.messages == []
    failures = [r for r in caplog.records if r.getMessage() == "Mutation rejected: persistence failed"]
    assert len(failures) == 1
    assert failures[0].exc_info is not None


def test_corrupt_audit_file_does_not_hide_accepted_change(
    make_hub, make_recorder, audit: AuditLog
) -> None:
    audit.path.write_bytes(b'{"seq": 1, "msg": "\xff\xfe"}\n')

    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()
        hub.connect("a", alice)
        hub.connect("b", bob)
        await hub.join("a", "alice")
        await hub.join("b", "bob")
        await hub.broadcaster.flush()
        alice.messages.clear()
        bob.messages.clear()

        await hub.dispatch("a", {"type": "issue:create", "data": {"title": "T", "description": "D"}})
        await hub.broadcaster.flush()
        await hub.broadcaster.close()
        return alice, bob, hub.snapshot()

    alice, bob, snap = asyncio.run(scenario())

    assert [i.title for i in snap] == ["T"]
    assert alice.types() == ["issue:created"]
    assert bob.types() == ["issue:created"]
    assert [e.message for e in audit.entries()][-1] == "Issue created: T by alice"


def test_concurrent_mutations_are_delivered_in_acceptance_order(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        watchers = [make_recorder() for _ in range(3)]
        for n, watcher in enumerate(watchers):
            hub.connect(f"c{n}", watcher)
            await hub.join(f"c{n}", f"user{n}")
        await hub.broadcaster.flush()
        for watcher in watchers:
            watcher.messages.clear()

        await asyncio.gather(
            *(
                hub.create_issue(f"c{n % 3}", f"Issue {n}", "d")
                for n in range(15)
            )
        )
        await hub.broadcaster.flush()
        accepted = [i.id for i in hub.snapshot()]
        await hub.broadcaster.close()
        return watchers, accepted

    watchers, accepted = asyncio.run(scenario())

    for watcher in watchers:
        assert [m["data"]["id"] for m in watcher.messages] == accepted
    assert len(accepted) == 15


def test_disconnect_announces_departure(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        alice, bob = make_recorder(), make_recorder()
        hub.connect("a", alice)
        hub.connect("b", bob)
        await hub.join("a", "alice")
        await hub.join("b", "bob")
        await hub.disconnect("b")
        await hub.broadcaster.flush()
        active = [s.username for s in hub.registry.active()]
        await hub.broadcaster.close()
        return alice, active

    alice, active = asyncio.run(scenario())

    assert active == ["alice"]
    left = alice.of_type("user:left")
    assert len(left) == 1
    assert left[0]["data"]["username"] == "bob"


def test_rejoin_with_same_name_resends_snapshot_only(make_hub, make_recorder) -> None:
    async def scenario():
        hub = make_hub()
        alice = make_recorder()
        hub.connect("a", alice)
        await hub.join("a", "alice")
        await hub.join("a", "alice")
        await hub.join("a", "alicia")
        await hub.broadcaster.flush()
        await hub.broadcaster.close()
        return alice

    alice = asyncio.run(scenario())

    assert alice.types() == [
        "issues:all",
        "user:joined",
        "issues:all",
        "issues:all",
        "user:joined",
    ]
    assert alice.of_type("user:joined")[1]["data"]["username"] == "alicia"
