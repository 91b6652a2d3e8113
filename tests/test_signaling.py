"""
Unit tests for SignalingRouter
==============================
Tests recipient resolution, verbatim forwarding and activity tracking.
"""

import pytest

from backend import RoomState, RoomStore
from errors import NotInRoom, RoomNotFound
from signaling import SignalingRouter


async def _pair(store, connect, code="AB12"):
    a, b = connect("A"), connect("B")
    await store.create_room(code, "A")
    await store.join_room(code, "B")
    return a, b


class TestRelay:
    """Test relay to room peers"""

    @pytest.mark.asyncio
    async def test_offer_forwarded_verbatim_with_sender(self, store, router, connect):
        a, b = await _pair(store, connect)
        sdp = {"type": "offer", "sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\n"}

        delivered = await router.relay("A", "offer", {"sdp": sdp}, code="ab12")

        assert delivered == ["B"]
        assert b.sent == [{"type": "offer", "sdp": sdp, "from": "A"}]
        assert a.sent == []

    @pytest.mark.asyncio
    async def test_malformed_payload_is_not_validated(self, store, router, connect):
        a, b = await _pair(store, connect)

        await router.relay("A", "ice-candidate", {"candidate": "not really a candidate"})

        assert b.sent == [{"type": "ice-candidate", "candidate": "not really a candidate", "from": "A"}]

    @pytest.mark.asyncio
    async def test_unmapped_sender_is_not_in_room(self, store, router, connect):
        connect("C")

        with pytest.raises(NotInRoom):
            await router.relay("C", "offer", {"sdp": "x"})

    @pytest.mark.asyncio
    async def test_unknown_code_is_room_not_found(self, store, router, connect):
        await _pair(store, connect)

        with pytest.raises(RoomNotFound):
            await router.relay("A", "offer", {"sdp": "x"}, code="ZZZZ")

    @pytest.mark.asyncio
    async def test_foreign_code_is_not_in_room(self, store, router, connect):
        await _pair(store, connect)
        connect("C")
        await store.create_room("CD34", "C")

        with pytest.raises(NotInRoom):
            await router.relay("A", "offer", {"sdp": "x"}, code="CD34")

    @pytest.mark.asyncio
    async def test_answer_marks_room_active(self, store, router, connect):
        await _pair(store, connect)

        await router.relay("B", "answer", {"sdp": "answer-sdp"})

        assert store.get_room("AB12").state == RoomState.ACTIVE

    @pytest.mark.asyncio
    async def test_undelivered_answer_does_not_activate(self, store, router, connect):
        connect("A")
        await store.create_room("AB12", "A")

        delivered = await router.relay("A", "answer", {"sdp": "answer-sdp"})

        assert delivered == []
        assert store.get_room("AB12").state == RoomState.CREATED

    @pytest.mark.asyncio
    async def test_relay_touches_room(self, store, router, connect, clock):
        await _pair(store, connect)
        clock.advance(120)

        await router.relay("A", "ice-candidate", {"candidate": {"candidate": "c1"}})

        assert store.get_room("AB12").last_activity == clock.now

    @pytest.mark.asyncio
    async def test_per_sender_order_is_preserved(self, store, router, connect):
        a, b = await _pair(store, connect)

        for i in range(5):
            await router.relay("A", "ice-candidate", {"candidate": i})

        assert [m["candidate"] for m in b.sent] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_dead_peer_does_not_fail_sender(self, store, router, connect):
        a, b = await _pair(store, connect)
        b.fail_sends = True

        delivered = await router.relay("A", "offer", {"sdp": "x"})

        assert delivered == []


class TestTargetedRelay:
    """Test relay addressed to one peer"""

    @pytest.mark.asyncio
    async def test_target_receives_alone(self, clock, connections, connect):
        store = RoomStore(max_members=3, clock=clock)
        router = SignalingRouter(store, connections)
        a, b, c = connect("A"), connect("B"), connect("C")
        await store.create_room("GRP1", "A")
        await store.join_room("GRP1", "B")
        await store.join_room("GRP1", "C")

        await router.relay("A", "offer", {"sdp": "for-c"}, target="C")

        assert c.sent == [{"type": "offer", "sdp": "for-c", "from": "A"}]
        assert b.sent == []

    @pytest.mark.asyncio
    async def test_broadcast_reaches_all_other_members(self, clock, connections, connect):
        store = RoomStore(max_members=3, clock=clock)
        router = SignalingRouter(store, connections)
        a, b, c = connect("A"), connect("B"), connect("C")
        await store.create_room("GRP1", "A")
        await store.join_room("GRP1", "B")
        await store.join_room("GRP1", "C")

        delivered = await router.relay("B", "peer-mute", {"muted": True})

        assert delivered == ["A", "C"]
        assert b.sent == []

    @pytest.mark.asyncio
    async def test_target_outside_room(self, store, router, connect):
        await _pair(store, connect)

        with pytest.raises(NotInRoom):
            await router.relay("A", "offer", {"sdp": "x"}, target="stranger")

    @pytest.mark.asyncio
    async def test_target_self(self, store, router, connect):
        await _pair(store, connect)

        with pytest.raises(NotInRoom):
            await router.relay("A", "offer", {"sdp": "x"}, target="A")


class TestNotifyDeparture:

    @pytest.mark.asyncio
    async def test_last_survivor_gets_call_ended(self, store, router, connect):
        a, b = await _pair(store, connect)

        await router.notify_departure("AB12", "A", ["B"])

        assert b.sent == [
            {"type": "peer-left", "code": "AB12", "connectionId": "A"},
            {"type": "update-participants", "code": "AB12", "members": ["B"]},
            {"type": "call-ended", "code": "AB12"},
        ]

    @pytest.mark.asyncio
    async def test_group_survivors_get_no_call_ended(self, store, router, connect):
        b, c = connect("B"), connect("C")

        await router.notify_departure("GRP1", "A", ["B", "C"])

        assert b.types() == ["peer-left", "update-participants"]
        assert c.types() == ["peer-left", "update-participants"]

    @pytest.mark.asyncio
    async def test_nobody_left_sends_nothing(self, router, connect):
        a = connect("A")

        await router.notify_departure("AB12", "A", [])

        assert a.sent == []
