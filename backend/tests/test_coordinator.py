"""Event routing through the coordinator with a fake transport."""

from __future__ import annotations

import logging

import pytest

from app.monitoring.metrics import realtime_dropped_events_total

pytestmark = pytest.mark.anyio


async def _join(coordinator, connection_id: str, group_id: str) -> None:
    await coordinator.dispatch(connection_id, {"type": "join-group-room", "groupId": group_id})


async def test_identify_acknowledges_and_announces_online(coordinator, transport, identify):
    transport.open("observer")
    await identify("c1", "u1", "alice")

    assert transport.received("c1", "identify-ack") == [
        {"success": True, "userId": "u1", "connectionId": "c1"}
    ]
    assert transport.received("observer", "user-online") == [
        {"userId": "u1", "name": "alice", "username": "alice", "avatar": "/avatars/u1.png"}
    ]
    assert transport.received("c1", "user-online") == []


async def test_identify_without_required_fields_is_rejected(coordinator, transport):
    transport.open("c1", "observer")
    await coordinator.dispatch("c1", {"type": "connect-identify", "name": "No Id"})

    [ack] = transport.received("c1", "identify-ack")
    assert ack["success"] is False
    assert "userId" in ack["error"]
    assert coordinator.registry.resolve_identity("c1") is None
    assert transport.received("observer") == []


async def test_numeric_user_ids_are_accepted(coordinator, transport):
    transport.open("c1")
    await coordinator.dispatch("c1", {"type": "connect-identify", "userId": 42, "username": "bob"})

    assert coordinator.registry.resolve_connection("42") == "c1"


async def test_group_message_skips_sender(coordinator, transport, identify):
    for name in ("a", "b", "c"):
        await identify(f"conn-{name}", name)
        await _join(coordinator, f"conn-{name}", "g1")
    transport.clear()

    await coordinator.dispatch(
        "conn-a",
        {"type": "send-group-message", "groupId": "g1", "messageBody": {"text": "hi"}},
    )

    expected = {"groupId": "g1", "senderId": "a", "messageBody": {"text": "hi"}}
    assert transport.received("conn-b", "message-delivered") == [expected]
    assert transport.received("conn-c", "message-delivered") == [expected]
    assert transport.received("conn-a") == []


async def test_join_and_leave_notify_other_members_once(coordinator, transport, identify):
    await identify("ca", "a")
    await identify("cb", "b")
    await _join(coordinator, "ca", "g1")
    transport.clear()

    await _join(coordinator, "cb", "g1")
    await _join(coordinator, "cb", "g1")

    assert transport.received("ca", "user-joined-room") == [
        {"groupId": "g1", "userId": "b", "username": "b"}
    ]
    assert transport.received("cb") == []

    await coordinator.dispatch("cb", {"type": "leave-group-room", "groupId": "g1"})
    await coordinator.dispatch("cb", {"type": "leave-group-room", "groupId": "g1"})

    assert transport.received("ca", "user-left-room") == [
        {"groupId": "g1", "userId": "b", "username": "b"}
    ]
    assert coordinator.groups.members_of("g1") == {"a"}


async def test_typing_indicators_are_group_scoped(coordinator, transport, identify):
    await identify("ca", "a", "alice")
    await identify("cb", "b")
    await identify("cc", "c")
    await _join(coordinator, "ca", "g1")
    await _join(coordinator, "cb", "g1")
    transport.clear()

    await coordinator.dispatch("ca", {"type": "typing-start", "groupId": "g1"})
    await coordinator.dispatch("ca", {"type": "typing-stop", "groupId": "g1", "username": "Al"})

    assert transport.events("cb") == ["user-typing", "user-stopped-typing"]
    assert transport.received("cb", "user-typing")[0]["username"] == "alice"
    assert transport.received("cb", "user-stopped-typing")[0]["username"] == "Al"
    assert transport.received("ca") == []
    assert transport.received("cc") == []


async def test_direct_message_delivered_to_online_receiver(coordinator, transport, identify):
    await identify("ca", "a")
    await identify("cb", "b")
    transport.clear()

    await coordinator.dispatch(
        "ca", {"type": "send-direct-message", "receiverId": "b", "messageBody": "psst"}
    )

    assert transport.received("cb", "direct-message-delivered") == [
        {"senderId": "a", "messageBody": "psst"}
    ]


async def test_direct_message_to_offline_user_is_dropped(coordinator, transport, identify):
    await identify("ca", "a")
    transport.clear()

    await coordinator.dispatch(
        "ca", {"type": "send-direct-message", "receiverId": "nobody", "messageBody": "hello?"}
    )

    assert transport.sent == []
    assert realtime_dropped_events_total.value("offline") == 1


async def test_events_from_unidentified_connection_are_ignored(coordinator, transport, caplog):
    transport.open("anon")

    with caplog.at_level(logging.INFO, logger="thesync.realtime"):
        await _join(coordinator, "anon", "g1")

    assert coordinator.groups.members_of("g1") == set()
    assert transport.sent == []
    assert any("unidentified" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize(
    "inbound, outbound",
    [
        ("relay-signal", "signal"),
        ("relay-offer", "offer"),
        ("relay-answer", "answer"),
        ("relay-ice", "ice-candidate"),
    ],
)
async def test_signals_relayed_verbatim_to_target(coordinator, transport, inbound, outbound):
    transport.open("ca", "cb", "cc")
    payload = {"sdp": "v=0", "nested": {"keep": [1, 2]}}

    await coordinator.dispatch(
        "ca",
        {"type": inbound, "callId": "call-1", "targetConnectionId": "cb", "payload": payload},
    )

    assert transport.received("cb", outbound) == [
        {"callId": "call-1", "fromConnectionId": "ca", "payload": payload}
    ]
    assert transport.received("cc") == []


async def test_signal_to_unknown_target_is_noop(coordinator, transport):
    transport.open("ca")

    await coordinator.dispatch(
        "ca",
        {"type": "relay-offer", "callId": "x", "targetConnectionId": "gone", "payload": {}},
    )

    assert transport.sent == []
    assert realtime_dropped_events_total.value("unknown_target") == 1


async def test_start_call_notifies_group_including_initiator(coordinator, transport, identify):
    await identify("ca", "a")
    await identify("cb", "b")
    await _join(coordinator, "ca", "g1")
    await _join(coordinator, "cb", "g1")
    transport.clear()

    await coordinator.dispatch("ca", {"type": "start-call", "groupId": "g1", "callId": "call-1"})

    [event] = transport.received("cb", "call-started")
    assert event["callId"] == "call-1"
    assert event["groupId"] == "g1"
    assert event["initiator"]["userId"] == "a"
    assert len(transport.received("ca", "call-started")) == 1
    assert list(coordinator.calls.get("call-1").participants) == ["ca"]


async def test_join_call_returns_existing_participants(coordinator, transport, identify):
    for name in ("a", "b", "c", "d"):
        await identify(f"c{name}", name)
    await coordinator.dispatch("ca", {"type": "start-call", "groupId": "g1", "callId": "call"})
    await coordinator.dispatch("cb", {"type": "join-call", "callId": "call"})
    await coordinator.dispatch("cc", {"type": "join-call", "callId": "call"})
    transport.clear()

    await coordinator.dispatch("cd", {"type": "join-call", "callId": "call", "groupId": "g1"})

    [snapshot] = transport.received("cd", "existing-participants")
    assert [entry["connectionId"] for entry in snapshot["participants"]] == ["ca", "cb", "cc"]
    for connection_id in ("ca", "cb", "cc"):
        [joined] = transport.received(connection_id, "user-joined-call")
        assert joined["connectionId"] == "cd"
        assert joined["userId"] == "d"
    assert transport.received("cd", "user-joined-call") == []


async def test_first_joiner_gets_empty_participant_list(coordinator, transport, identify):
    await identify("ca", "a")
    transport.clear()

    await coordinator.dispatch("ca", {"type": "join-call", "callId": "fresh"})

    assert transport.received("ca", "existing-participants") == [
        {"callId": "fresh", "participants": []}
    ]


async def test_leave_call_cleans_up_empty_room(coordinator, transport, identify):
    await identify("cx", "x")
    await identify("cy", "y")
    await coordinator.dispatch("cx", {"type": "join-call", "callId": "call"})
    await coordinator.dispatch("cy", {"type": "join-call", "callId": "call"})
    transport.clear()

    await coordinator.dispatch("cy", {"type": "leave-call", "callId": "call"})

    assert list(coordinator.calls.get("call").participants) == ["cx"]
    [left] = transport.received("cx", "user-left-call")
    assert left["connectionId"] == "cy"
    assert left["userId"] == "y"

    await coordinator.dispatch("cx", {"type": "leave-call", "callId": "call"})

    assert not coordinator.calls.exists("call")
    assert transport.received("cy", "user-left-call") == []


async def test_end_call_notifies_each_participant_exactly_once(coordinator, transport, identify):
    for name in ("a", "b", "c", "w"):
        await identify(f"c{name}", name)
        await _join(coordinator, f"c{name}", "g1")
    await coordinator.dispatch("ca", {"type": "start-call", "groupId": "g1", "callId": "call"})
    await coordinator.dispatch("cb", {"type": "join-call", "callId": "call"})
    await coordinator.dispatch("cc", {"type": "join-call", "callId": "call"})
    transport.clear()

    await coordinator.dispatch("cb", {"type": "end-call", "callId": "call", "groupId": "g1"})

    for connection_id in ("ca", "cb", "cc", "cw"):
        assert transport.received(connection_id, "call-ended") == [{"callId": "call"}]
    assert not coordinator.calls.exists("call")


async def test_end_call_uses_recorded_group_when_omitted(coordinator, transport, identify):
    await identify("ca", "a")
    await identify("cw", "w")
    await _join(coordinator, "cw", "g1")
    await coordinator.dispatch("ca", {"type": "start-call", "groupId": "g1", "callId": "call"})
    transport.clear()

    await coordinator.dispatch("ca", {"type": "end-call", "callId": "call"})

    assert transport.received("cw", "call-ended") == [{"callId": "call"}]
    assert transport.received("ca", "call-ended") == [{"callId": "call"}]


async def test_end_unknown_call_is_noop(coordinator, transport, identify):
    await identify("ca", "a")
    transport.clear()

    await coordinator.dispatch("ca", {"type": "end-call", "callId": "nope", "groupId": "g1"})

    assert transport.sent == []


@pytest.mark.parametrize(
    "frame, detail",
    [
        (["not", "an", "object"], "Message payload must be a JSON object"),
        ({"groupId": "g1"}, "Message type must be provided"),
        ({"type": "launch-rockets"}, "Unsupported event type 'launch-rockets'"),
    ],
)
async def test_malformed_frames_get_error_reply(coordinator, transport, frame, detail):
    transport.open("c1", "other")

    await coordinator.dispatch("c1", frame)

    [error] = transport.received("c1", "error")
    assert error["detail"] == detail
    assert transport.received("other") == []


async def test_invalid_payload_reports_field(coordinator, transport, identify):
    await identify("c1", "u1")
    transport.clear()

    await coordinator.dispatch("c1", {"type": "start-call", "groupId": "g1"})

    [error] = transport.received("c1", "error")
    assert error["event"] == "start-call"
    assert "callId" in error["detail"]


async def test_handler_failure_does_not_escape_dispatch(coordinator, transport, identify, caplog, monkeypatch):
    await identify("c1", "u1")
    transport.clear()

    async def boom(*args, **kwargs):
        raise RuntimeError("router exploded")

    monkeypatch.setattr(coordinator.router, "broadcast_group", boom)

    with caplog.at_level(logging.ERROR, logger="thesync.realtime"):
        await _join(coordinator, "c1", "g1")

    assert transport.received("c1", "error") == [
        {"detail": "Failed to process event", "event": "join-group-room"}
    ]
    assert any("Unhandled error" in record.getMessage() for record in caplog.records)


async def test_ping_gets_pong(coordinator, transport):
    transport.open("c1")

    await coordinator.dispatch("c1", {"type": "ping"})

    assert transport.received("c1", "pong") == [{}]


async def test_server_side_publish(coordinator, transport, identify):
    await identify("ca", "a")
    await identify("cb", "b")
    await _join(coordinator, "ca", "g1")
    await _join(coordinator, "cb", "g1")
    transport.clear()

    delivered = await coordinator.publish_to_group("g1", "member-added", {"groupId": "g1"})
    assert delivered == 2
    assert await coordinator.publish_to_user("b", "new-notification", {"id": 1}) is True
    assert await coordinator.publish_to_user("ghost", "new-notification", {"id": 2}) is False
    assert transport.received("cb", "new-notification") == [{"id": 1}]
