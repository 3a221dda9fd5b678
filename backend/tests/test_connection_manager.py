"""Tests for the connection registry and room fan-out."""
import asyncio

from app.chat.manager import ConnectionManager, event_frame

from fakes import FakeWebSocket


class TestJoinLeave:
    def test_register_joins_personal_room(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()
        mgr.register(ws, "alice")

        assert mgr.owner_of(ws) == "alice"
        assert mgr.rooms_of(ws) == ["alice"]
        assert mgr.is_online("alice")

    def test_connect_accepts_websocket(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()

        rooms = asyncio.run(mgr.connect(ws, "alice"))

        assert ws.accepted
        assert rooms == ["alice"]

    def test_join_is_idempotent(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()
        mgr.register(ws, "alice")

        assert mgr.join("alice", ws) is False
        assert mgr.join("conv:alice:bob", ws) is True
        assert mgr.join("conv:alice:bob", ws) is False
        assert mgr.connection_count("alice") == 1
        assert mgr.connection_count("conv:alice:bob") == 1

    def test_repeated_join_delivers_once(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()
        mgr.register(ws, "alice")
        mgr.join("alice", ws)

        delivered = asyncio.run(mgr.deliver("alice", "receive_message", {"id": "m1"}))

        assert delivered == 1
        assert ws.sent == [event_frame("receive_message", {"id": "m1"})]

    def test_leave_removes_from_every_room(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()
        mgr.register(ws, "alice")
        mgr.join("conv:alice:bob", ws)

        assert mgr.leave(ws) == "alice"
        assert not mgr.is_online("alice")
        assert mgr.connection_count("conv:alice:bob") == 0
        assert "alice" not in mgr.rooms

    def test_leave_unknown_connection_is_noop(self):
        mgr = ConnectionManager()
        assert mgr.leave(FakeWebSocket()) is None

    def test_leave_one_of_several_tabs(self):
        mgr = ConnectionManager()
        tab1, tab2 = FakeWebSocket("tab1"), FakeWebSocket("tab2")
        mgr.register(tab1, "alice")
        mgr.register(tab2, "alice")

        mgr.leave(tab1)

        assert mgr.connection_count("alice") == 1
        assert mgr.rooms["alice"] == [tab2]

    def test_leave_room(self):
        mgr = ConnectionManager()
        ws = FakeWebSocket()
        mgr.register(ws, "alice")
        mgr.join("conv:alice:bob", ws)

        assert mgr.leave_room("conv:alice:bob", ws) is True
        assert mgr.leave_room("conv:alice:bob", ws) is False
        assert mgr.rooms_of(ws) == ["alice"]


class TestDeliver:
    def test_deliver_reaches_every_connection_of_participant(self):
        mgr = ConnectionManager()
        tabs = [FakeWebSocket(f"tab{i}") for i in range(3)]
        for tab in tabs:
            mgr.register(tab, "bob")
        other = FakeWebSocket("other")
        mgr.register(other, "carol")

        delivered = asyncio.run(mgr.deliver("bob", "receive_message", {"id": "m1"}))

        assert delivered == 3
        for tab in tabs:
            assert tab.sent == [{"event": "receive_message", "data": {"id": "m1"}}]
        assert other.sent == []

    def test_deliver_to_offline_participant_is_dropped(self):
        mgr = ConnectionManager()
        assert asyncio.run(mgr.deliver("nobody", "receive_message", {"id": "m1"})) == 0

    def test_failed_connection_is_removed(self):
        mgr = ConnectionManager()
        good, dead = FakeWebSocket("good"), FakeWebSocket("dead", fail=True)
        mgr.register(good, "bob")
        mgr.register(dead, "bob")

        delivered = asyncio.run(mgr.deliver("bob", "receive_message", {"id": "m1"}))

        assert delivered == 1
        assert len(good.sent) == 1
        assert mgr.owner_of(dead) is None
        assert mgr.connection_count("bob") == 1
        assert dead.close_code == 1011
        assert good.close_code is None

    def test_slow_connection_does_not_stall_others(self):
        mgr = ConnectionManager(send_timeout=0.05)
        fast, slow = FakeWebSocket("fast"), FakeWebSocket("slow", delay=5)
        mgr.register(fast, "bob")
        mgr.register(slow, "bob")

        delivered = asyncio.run(mgr.deliver("bob", "receive_message", {"id": "m1"}))

        assert delivered == 1
        assert len(fast.sent) == 1
        assert mgr.owner_of(slow) is None
        assert slow.close_code == 1011

    def test_send_to_single_connection(self):
        mgr = ConnectionManager()
        tab1, tab2 = FakeWebSocket("tab1"), FakeWebSocket("tab2")
        mgr.register(tab1, "alice")
        mgr.register(tab2, "alice")

        assert asyncio.run(mgr.send_to(tab1, "send_failed", {"reason": "x"})) is True
        assert tab1.events() == ["send_failed"]
        assert tab2.sent == []

    def test_failed_send_to_closes_connection(self):
        mgr = ConnectionManager()
        dead = FakeWebSocket("dead", fail=True)
        mgr.register(dead, "alice")

        assert asyncio.run(mgr.send_to(dead, "error", {"error": "x"})) is False
        assert dead.close_code == 1011
        assert not mgr.is_online("alice")

    def test_clear(self):
        mgr = ConnectionManager()
        mgr.register(FakeWebSocket(), "alice")
        mgr.clear()
        assert mgr.rooms == {}
        assert mgr.connection_owner == {}
