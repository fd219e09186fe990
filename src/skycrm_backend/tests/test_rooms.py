"""Tests for the room membership registry."""

import pytest

from skycrm_backend.exceptions import InvalidRoomError, ReservedRoomError
from skycrm_backend.websocket.rooms import explicit_room, resolve_room, tenant_room, user_room

from skycrm_backend.tests.conftest import detached_connection


class TestImplicitRooms:
    """Tests for tenant and user rooms."""

    def test_admission_joins_exactly_tenant_and_user_rooms(self, registry):
        """Test that a new connection sits in its two implicit rooms only."""
        connection = detached_connection("u1", "t1")

        registry.add_connection(connection)

        assert connection.rooms == {"tenant-t1", "user-u1"}
        assert registry.members("tenant-t1") == {connection.connection_id}
        assert registry.members("user-u1") == {connection.connection_id}

    def test_implicit_rooms_cannot_be_left(self, registry):
        """Test that leave refuses the tenant and user rooms."""
        connection = detached_connection("u1", "t1")
        registry.add_connection(connection)

        assert registry.leave(connection, "tenant-t1") is False
        assert registry.leave(connection, "user-u1") is False
        assert connection.rooms == {"tenant-t1", "user-u1"}

    def test_room_helpers(self):
        assert tenant_room("t1") == "tenant-t1"
        assert user_room("u1") == "user-u1"
        assert explicit_room("t1", "doc-9") == "room:t1:doc-9"


class TestExplicitRooms:
    """Tests for client requested rooms."""

    def test_join_is_idempotent(self, registry):
        """Test that joining twice equals joining once."""
        connection = detached_connection()
        registry.add_connection(connection)

        assert registry.join_explicit(connection, "doc-1") is True
        rooms_after_first_join = set(connection.rooms)
        assert registry.join_explicit(connection, "doc-1") is False

        assert connection.rooms == rooms_after_first_join
        assert registry.members(explicit_room("t1", "doc-1")) == {connection.connection_id}

    def test_leave_not_joined_is_noop(self, registry):
        """Test that leaving a room never joined changes nothing."""
        connection = detached_connection()
        registry.add_connection(connection)

        assert registry.leave_explicit(connection, "doc-1") is False
        assert connection.rooms == {"tenant-t1", "user-u1"}

    def test_join_then_leave(self, registry):
        connection = detached_connection()
        registry.add_connection(connection)
        registry.join_explicit(connection, "doc-1")

        assert registry.leave_explicit(connection, "doc-1") is True
        assert explicit_room("t1", "doc-1") not in registry
        assert connection.rooms == {"tenant-t1", "user-u1"}

    @pytest.mark.parametrize("name", ["tenant-t2", "user-u2", "tenant-", "user-"])
    def test_reserved_prefixes_are_rejected(self, registry, name):
        """Test that a client cannot join another tenant's or user's room."""
        connection = detached_connection()
        registry.add_connection(connection)

        with pytest.raises(ReservedRoomError):
            registry.join_explicit(connection, name)

        assert "tenant-t2" not in connection.rooms
        assert connection.rooms == {"tenant-t1", "user-u1"}

    @pytest.mark.parametrize("name", ["", "   ", "x" * 33])
    def test_invalid_names_are_rejected(self, registry, name):
        connection = detached_connection()
        registry.add_connection(connection)

        with pytest.raises(InvalidRoomError):
            registry.join_explicit(connection, name)

    def test_room_limit(self, registry):
        """Test the per-connection explicit room cap."""
        connection = detached_connection()
        registry.add_connection(connection)
        for name in ("a", "b", "c"):
            registry.join_explicit(connection, name)

        with pytest.raises(InvalidRoomError):
            registry.join_explicit(connection, "d")

        # Rejoining a held room is still fine at the cap
        assert registry.join_explicit(connection, "a") is False

    def test_same_name_is_separate_per_tenant(self, registry):
        """Test that two tenants choosing one name do not share a room."""
        first = detached_connection("u1", "t1")
        second = detached_connection("u2", "t2")
        registry.add_connection(first)
        registry.add_connection(second)

        registry.join_explicit(first, "doc-1")
        registry.join_explicit(second, "doc-1")

        assert registry.members(explicit_room("t1", "doc-1")) == {first.connection_id}
        assert registry.members(explicit_room("t2", "doc-1")) == {second.connection_id}

    @pytest.mark.parametrize("name", ["x", "doc:1", "t2", "room:t2:doc-1"])
    def test_explicit_ids_never_look_like_implicit_rooms(self, name):
        """Test that no explicit room id falls in the tenant or user namespace."""
        room = explicit_room("t1", name)

        assert not room.startswith(("tenant-", "user-"))
        assert room.startswith("room:t1:")

    def test_separator_in_name_stays_in_own_tenant(self, registry):
        """Test that a ':' in the room name cannot reach another tenant's room."""
        first = detached_connection("u1", "t1")
        second = detached_connection("u2", "t2")
        registry.add_connection(first)
        registry.add_connection(second)
        registry.join_explicit(second, "doc")

        registry.join_explicit(first, "x:doc")

        assert registry.members(explicit_room("t2", "doc")) == {second.connection_id}
        assert registry.members("tenant-t2") == {second.connection_id}

    def test_resolve_room(self):
        connection = detached_connection("u1", "t1")

        assert resolve_room(connection, "tenant-t1") == "tenant-t1"
        assert resolve_room(connection, "user-u1") == "user-u1"
        assert resolve_room(connection, "doc-1") == "room:t1:doc-1"
        assert resolve_room(connection, "tenant-t2") == "room:t1:tenant-t2"


class TestRemoveConnection:
    """Tests for membership release on disconnect."""

    def test_all_memberships_are_released(self, registry):
        connection = detached_connection()
        registry.add_connection(connection)
        registry.join_explicit(connection, "doc-1")

        registry.remove_connection(connection)

        assert connection.rooms == set()
        assert registry.room_count() == 0

    def test_rooms_survive_while_members_remain(self, registry):
        """Test that a room lives exactly as long as it has members."""
        first = detached_connection("u1", "t1")
        second = detached_connection("u2", "t1")
        registry.add_connection(first)
        registry.add_connection(second)

        registry.remove_connection(first)

        assert registry.members("tenant-t1") == {second.connection_id}
        assert "user-u1" not in registry
        assert "user-u2" in registry

    def test_members_is_a_snapshot(self, registry):
        connection = detached_connection()
        registry.add_connection(connection)
        members = registry.members("tenant-t1")

        registry.remove_connection(connection)

        assert members == {connection.connection_id}
