"""Tests for the realtime gateway."""

import json


class TestRealtimeGateway:
    async def test_emit_reaches_every_connection_of_recipient(self, gateway, make_connection):
        first, second, other = make_connection(), make_connection(), make_connection()
        gateway.connect(first, "user-1")
        gateway.connect(second, "user-1")
        gateway.connect(other, "user-2")

        delivered = await gateway.emit_to_recipient("user-1", {"body": "Hello"})

        assert delivered == 2
        assert other.sent == []
        message = json.loads(first.sent[0])
        assert message["event"] == "notification.new"
        assert message["data"] == {"body": "Hello"}

    async def test_emit_without_connections_is_a_no_op(self, gateway):
        assert await gateway.emit_to_recipient("nobody", {"body": "Hello"}) == 0

    async def test_connection_without_recipient_is_ungrouped(self, gateway, make_connection):
        connection = make_connection()
        gateway.connect(connection)

        assert gateway.get_stats() == {"connections": 1, "recipient_groups": 0}

    async def test_join_later(self, gateway, make_connection):
        connection = make_connection()
        gateway.connect(connection)
        gateway.join(connection, "user-1")

        assert await gateway.emit_to_recipient("user-1", {"body": "Hello"}) == 1

    async def test_disconnect_leaves_all_groups(self, gateway, make_connection):
        connection = make_connection()
        gateway.connect(connection, "user-1")
        gateway.join(connection, "user-2")

        gateway.disconnect(connection)

        assert gateway.group_size("user-1") == 0
        assert gateway.group_size("user-2") == 0
        assert gateway.get_stats() == {"connections": 0, "recipient_groups": 0}

    async def test_failing_connection_is_dropped(self, gateway, make_connection):
        healthy, broken = make_connection(), make_connection(fail=True)
        gateway.connect(healthy, "user-1")
        gateway.connect(broken, "user-1")

        delivered = await gateway.emit_to_recipient("user-1", {"body": "Hello"})

        assert delivered == 1
        assert gateway.group_size("user-1") == 1

    async def test_close_all(self, gateway, make_connection):
        connection = make_connection()
        gateway.connect(connection, "user-1")

        await gateway.close_all()

        assert connection.closed
        assert gateway.get_stats()["connections"] == 0
