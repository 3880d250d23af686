import pytest

from auth import ConnectionIdentity
from errors import DuplicateConnection
from schemas.events import ErrorEvent
from schemas.meetings import MeetingSettings
from session_registry import normalize_room_id


class TestRegistration:

    def test_register_creates_handle(self, registry):
        session = registry.register("c1", ConnectionIdentity(user_id="u1", name="Alice"))

        assert registry.lookup("c1") is session
        assert session.user_id == "u1"
        assert session.room_id is None
        assert session.participant_id == "u1"

    def test_guest_participant_id_uses_connection(self, connect):
        session = connect("c9")

        assert session.is_guest
        assert session.participant_id == "guest-c9"

    def test_duplicate_connection_rejected(self, registry, connect):
        connect("c1", "u1", "Alice")

        with pytest.raises(DuplicateConnection):
            registry.register("c1", ConnectionIdentity(user_id="u2", name="Bob"))

    def test_deregister_unknown_is_noop(self, registry):
        registry.deregister("nope")
        registry.deregister("nope")

        assert registry.lookup("nope") is None

    def test_deregister_removes_from_room(self, registry, connect, meeting_factory):
        a = connect("c1", "user-a", "A")
        b = connect("c2", "u2", "B")
        room = registry.open_room(meeting_factory())
        registry.add_member(a, room)
        registry.add_member(b, room)

        registry.deregister("c2")

        assert registry.lookup("c2") is None
        assert [s.connection_id for s in registry.room_members("ABC12345")] == ["c1"]


class TestRooms:

    def test_normalize_room_id(self):
        assert normalize_room_id("  abc12345 ") == "ABC12345"

    def test_room_lookup_is_case_insensitive(self, registry, meeting_factory):
        registry.open_room(meeting_factory(meeting_id="ABC12345"))

        assert registry.get_room("abc12345") is registry.get_room("ABC12345")

    def test_members_ordered_host_first_then_name(self, registry, connect, meeting_factory):
        room = registry.open_room(meeting_factory(host_id="host", max_participants=10))
        for conn, user, name in [("c1", "u1", "zoe"), ("c2", None, "Bob"), ("c3", "host", "Yan"), ("c4", "u4", "alice")]:
            registry.add_member(connect(conn, user, name), room)

        names = [s.name for s in registry.room_members("ABC12345")]

        assert names == ["Yan", "alice", "Bob", "zoe"]

    def test_last_member_leaving_drops_room(self, registry, connect, meeting_factory):
        session = connect("c1", "user-a", "A")
        room = registry.open_room(meeting_factory())
        registry.add_member(session, room)

        registry.remove_member(session)

        assert registry.get_room("ABC12345") is None
        assert session.room_id is None
        assert registry.room_members("ABC12345") == []

    def test_open_room_refreshes_meeting_settings(self, registry, meeting_factory):
        registry.open_room(meeting_factory(max_participants=2))
        room = registry.open_room(meeting_factory(max_participants=5, settings=MeetingSettings(allow_chat=False)))

        assert room.capacity == 5
        assert room.settings.allow_chat is False

    def test_host_flag_is_derived_from_meeting(self, registry, connect, meeting_factory):
        room = registry.open_room(meeting_factory(host_id="user-a"))
        host = connect("c1", "user-a", "A")
        guest = connect("c2")
        registry.add_member(host, room)
        registry.add_member(guest, room)

        views = {v.connection_id: v for v in registry.participant_views("ABC12345")}

        assert views["c1"].is_host is True
        assert views["c2"].is_host is False


class TestDelivery:

    def test_broadcast_skips_excluded_connection(self, registry, connect, drain, meeting_factory):
        room = registry.open_room(meeting_factory(max_participants=3))
        a, b, c = connect("c1", "user-a", "A"), connect("c2", "u2", "B"), connect("c3", "u3", "C")
        for s in (a, b, c):
            registry.add_member(s, room)

        sent = registry.broadcast("ABC12345", ErrorEvent(message="x"), exclude="c2")

        assert sent == 2
        assert drain(a) == [{"event": "error", "message": "x"}]
        assert drain(b) == []
        assert drain(c) == [{"event": "error", "message": "x"}]

    def test_broadcast_to_unknown_room(self, registry):
        assert registry.broadcast("NOPE", ErrorEvent(message="x")) == 0

    def test_send_to_unknown_connection(self, registry):
        assert registry.send_to("missing", ErrorEvent(message="x")) is False

    def test_find_participant_by_guest_id(self, registry, connect, meeting_factory):
        room = registry.open_room(meeting_factory())
        guest = connect("g1")
        registry.add_member(guest, room)

        assert registry.find_participant("ABC12345", "guest-g1") == [guest]
        assert registry.find_participant("ABC12345", None) == []
