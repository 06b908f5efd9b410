"""
Property-based tests for the Connection Manager module.

Uses Hypothesis with a fake transport and a manual clock to verify the
connection state machine, heartbeat lifecycle, session rebinding on identity
change, the reset action and teardown.
"""

import asyncio
import io
import json
import tempfile
from pathlib import Path
from typing import Optional

from hypothesis import given, settings
from hypothesis import strategies as st

from counter_client.audit_logger import AuditLogger
from counter_client.config import create_default_config
from counter_client.connection_manager import ConnectionManager
from counter_client.counter_store import CounterStore
from counter_client.enums import ConnectionStatus, TransportEventType
from counter_client.identity_store import IdentityStore
from counter_client.state_store import (
    KEY_CLIENT_ID,
    KEY_COUNT,
    KEY_LAST_UPDATED,
    KeyValueStore,
)
from counter_client.topics import (
    CHANGE_ID_RESPONSE_TOPIC,
    COUNT_ACK_TOPIC,
    DISCONNECTED_TOPIC,
    STATUS_TOPIC,
    change_id_topic,
    count_topic,
    subscription_topics,
)

from fakes import FIXED_TIMESTAMP, FailingKeyValueStore, FakeTransport, ManualClock, TransportRecorder


CLIENT_ID = "a1b2c3d4"
HEARTBEAT_INTERVAL = 15.0

non_message_events = st.sampled_from([
    TransportEventType.CONNECTED,
    TransportEventType.RECONNECTING,
    TransportEventType.CONNECTION_LOST,
    TransportEventType.ERROR,
    TransportEventType.CLOSED,
    TransportEventType.OFFLINE,
])


class Harness:
    """A ConnectionManager wired to a temp store, fake transports and a manual clock."""

    def __init__(
        self,
        tmpdir: str,
        client_id: Optional[str] = CLIENT_ID,
        store: Optional[KeyValueStore] = None,
    ) -> None:
        config = create_default_config(language="en", state_file=Path(tmpdir) / "state.json")
        self.store = store or KeyValueStore(config.persistence.state_file_path)
        if client_id is not None and not isinstance(self.store, FailingKeyValueStore):
            self.store.set_many({KEY_CLIENT_ID: client_id})

        self.clock = ManualClock()
        self.transports = TransportRecorder()
        self.logger = AuditLogger(output_format="json", output_stream=io.StringIO())
        self.manager = ConnectionManager(
            config=config,
            identity_store=IdentityStore(self.store, self.logger),
            counter_store=CounterStore(self.store, self.logger),
            transport_factory=self.transports,
            logger=self.logger,
            clock=lambda: FIXED_TIMESTAMP,
            sleep=self.clock.sleep,
        )
        self.snapshots = []
        self.manager.add_listener(self.snapshots.append)

    @property
    def transport(self) -> FakeTransport:
        return self.transports.current

    async def emit(self, event_type: TransportEventType, **kwargs) -> None:
        self.transport.emit(event_type, **kwargs)
        await self.manager.drain()

    async def deliver(self, topic: str, payload) -> None:
        self.transport.deliver(topic, payload)
        await self.manager.drain()

    async def connect(self) -> None:
        await self.manager.start()
        await self.emit(TransportEventType.CONNECTED)


class TestStartup:
    """Tests for loading state and opening the first session."""

    def test_start_opens_session_with_persisted_identifier(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.manager.start()

                snapshot = harness.manager.snapshot()
                assert snapshot.client_id == CLIENT_ID
                assert snapshot.status == ConnectionStatus.CONNECTING
                assert snapshot.message == "Connecting..."
                assert harness.transport.started
                assert harness.transport.client_id == CLIENT_ID
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_start_restores_persisted_counter(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                harness.store.set_many({KEY_COUNT: "17", KEY_LAST_UPDATED: FIXED_TIMESTAMP})
                await harness.manager.start()

                snapshot = harness.manager.snapshot()
                assert snapshot.count == 17
                assert snapshot.last_updated == FIXED_TIMESTAMP
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_first_launch_generates_identifier(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir, client_id=None)
                await harness.manager.start()

                client_id = harness.manager.snapshot().client_id
                assert client_id is not None and len(client_id) == 8
                assert harness.store.get(KEY_CLIENT_ID) == client_id
                assert harness.transport.client_id == client_id
                await harness.manager.shutdown()

        asyncio.run(run_test())

    @given(garbage=st.sampled_from([
        b"\xff\xfe garbage",
        b'{"client_id": "\xff\xfe"}',
        b'{"mqtt_count": ' + b"9" * 5000 + b"}",
        b"[" * 100_000,
    ]))
    @settings(max_examples=10, deadline=None)
    def test_damaged_state_file_starts_fresh(self, garbage: bytes) -> None:
        """
        Property 1b: *For any* undecodable or unparseable state file, start()
        SHALL succeed with a new identifier and a zero count.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir, client_id=None)
                (Path(tmpdir) / "state.json").write_bytes(garbage)
                await harness.manager.start()

                snapshot = harness.manager.snapshot()
                assert snapshot.client_id is not None and len(snapshot.client_id) == 8
                assert snapshot.count == 0
                assert snapshot.status == ConnectionStatus.CONNECTING
                assert harness.transport.client_id == snapshot.client_id
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_oversized_persisted_count_reads_as_absent(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                harness.store.set_many({KEY_COUNT: "9" * 5000, KEY_LAST_UPDATED: FIXED_TIMESTAMP})
                await harness.manager.start()

                assert harness.manager.snapshot().count == 0
                assert harness.manager.snapshot().client_id == CLIENT_ID
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_no_identifier_means_no_connection(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                store = FailingKeyValueStore(Path(tmpdir) / "state.json", fail_reads=True)
                harness = Harness(tmpdir, store=store)
                await harness.manager.start()

                snapshot = harness.manager.snapshot()
                assert snapshot.client_id is None
                assert snapshot.status == ConnectionStatus.DISCONNECTED
                assert snapshot.message == "Client ID could not be loaded"
                assert harness.transports.created == []
                await harness.manager.shutdown()

        asyncio.run(run_test())


class TestConnectedProperty:
    """Property-based tests for the Connecting -> Connected transition."""

    @given(count=st.integers(min_value=-1000, max_value=1000))
    @settings(max_examples=30, deadline=None)
    def test_connect_publishes_status_and_subscribes(self, count: int) -> None:
        """
        Property 1: On connect the manager resets attempts, publishes an
        online status with the current count and subscribes to its topics.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                harness.store.set_many({KEY_COUNT: str(count), KEY_LAST_UPDATED: FIXED_TIMESTAMP})
                await harness.connect()

                snapshot = harness.manager.snapshot()
                assert snapshot.status == ConnectionStatus.CONNECTED
                assert snapshot.reconnect_attempts == 0
                assert snapshot.heartbeat_active
                assert snapshot.message == "MQTT connected!"
                assert harness.transport.json_on(STATUS_TOPIC) == [{
                    "client_id": CLIENT_ID,
                    "timestamp": FIXED_TIMESTAMP,
                    "count": count,
                    "status": "online",
                }]
                assert harness.transport.subscriptions == subscription_topics(CLIENT_ID)
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_scenario_count_42(self) -> None:
        """Client a1b2c3d4 connects and receives "42" on its count topic."""
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir, client_id="a1b2c3d4")
                await harness.connect()
                await harness.deliver("client/a1b2c3d4/count", "42")

                assert harness.store.get(KEY_COUNT) == "42"
                assert harness.store.get(KEY_LAST_UPDATED) == FIXED_TIMESTAMP
                assert harness.transport.json_on(COUNT_ACK_TOPIC) == [{
                    "client_id": "a1b2c3d4",
                    "count": 42,
                    "timestamp": FIXED_TIMESTAMP,
                }]
                statuses = harness.transport.json_on(STATUS_TOPIC)
                assert len(statuses) == 2
                assert statuses[-1]["count"] == 42
                assert harness.manager.snapshot().count == 42
                await harness.manager.shutdown()

        asyncio.run(run_test())


class TestHeartbeatLifecycleProperty:
    """Property-based tests for heartbeats while connected and after disconnect."""

    @given(
        periods=st.integers(min_value=0, max_value=6),
        after=st.integers(min_value=1, max_value=6),
        drop=st.sampled_from([
            TransportEventType.CONNECTION_LOST,
            TransportEventType.ERROR,
            TransportEventType.CLOSED,
            TransportEventType.OFFLINE,
        ]),
    )
    @settings(max_examples=30, deadline=None)
    def test_one_heartbeat_per_interval_then_none(
        self,
        periods: int,
        after: int,
        drop: TransportEventType,
    ) -> None:
        """
        Property 2: After connect, exactly one heartbeat fires per interval;
        after any disconnect-like event, zero heartbeats fire.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.clock.advance(HEARTBEAT_INTERVAL * periods + HEARTBEAT_INTERVAL / 2)

                # One status on connect plus one per elapsed interval
                assert len(harness.transport.published_on(STATUS_TOPIC)) == 1 + periods

                await harness.emit(drop)
                assert not harness.manager.heartbeat.is_active
                assert not harness.manager.snapshot().heartbeat_active
                published = len(harness.transport.published)

                await harness.clock.advance(HEARTBEAT_INTERVAL * after)
                assert harness.manager.heartbeat.tick_count == periods
                assert len(harness.transport.published) == published
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_reconnect_restarts_heartbeat(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.emit(TransportEventType.CONNECTION_LOST)
                await harness.emit(TransportEventType.CONNECTED)
                await harness.clock.advance(HEARTBEAT_INTERVAL * 2 + 1)

                # Two connects, two ticks
                assert len(harness.transport.published_on(STATUS_TOPIC)) == 4
                assert harness.clock.pending == 1
                await harness.manager.shutdown()

        asyncio.run(run_test())

    @given(count=st.integers(min_value=1, max_value=10**6))
    @settings(max_examples=20, deadline=None)
    def test_heartbeat_is_applied_after_earlier_queued_messages(self, count: int) -> None:
        """
        Property 2b: *For any* count message queued before a heartbeat tick,
        the heartbeat status SHALL be published after the count is applied.
        """
        async def run_test() -> list[dict]:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.clock.advance(0)
                before = len(harness.transport.published_on(STATUS_TOPIC))
                assert harness.clock.pending == 1

                harness.clock.wake_due(HEARTBEAT_INTERVAL)
                harness.transport.deliver(count_topic(CLIENT_ID), str(count))
                await harness.clock.advance(0)
                await harness.manager.drain()

                statuses = harness.transport.json_on(STATUS_TOPIC)[before:]
                await harness.manager.shutdown()
                return statuses

        statuses = asyncio.run(run_test())
        # One from the count update, one from the tick
        assert len(statuses) == 2
        assert [s["count"] for s in statuses] == [count, count]


class TestStateMachineProperty:
    """Property-based tests for the connection state machine."""

    def test_connection_lost_moves_to_connecting(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.emit(TransportEventType.CONNECTION_LOST)

                snapshot = harness.manager.snapshot()
                assert snapshot.status == ConnectionStatus.CONNECTING
                assert snapshot.reconnect_attempts == 1
                assert snapshot.last_disconnect_at == FIXED_TIMESTAMP
                assert snapshot.message == "MQTT connection lost: disconnected"

                await harness.emit(TransportEventType.RECONNECTING)
                snapshot = harness.manager.snapshot()
                assert snapshot.reconnect_attempts == 2
                assert snapshot.message == "Trying to reconnect... (2)"

                await harness.emit(TransportEventType.CONNECTED)
                assert harness.manager.snapshot().reconnect_attempts == 0
                await harness.manager.shutdown()

        asyncio.run(run_test())

    @given(reason=st.sampled_from([
        ("not_found", "server not found"),
        ("refused", "server refused the connection"),
        ("timeout", "connection timed out"),
        ("reset", "connection was reset"),
        (None, "a connection error occurred"),
    ]))
    @settings(max_examples=10, deadline=None)
    def test_error_moves_to_disconnected_with_reason(self, reason) -> None:
        """
        Property 3: A transport error moves to Disconnected and the message
        names the failure reason.
        """
        code, text = reason

        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.emit(TransportEventType.ERROR, reason=code)

                snapshot = harness.manager.snapshot()
                assert snapshot.status == ConnectionStatus.DISCONNECTED
                assert snapshot.message == f"MQTT connection failed: {text}"
                assert snapshot.last_disconnect_at == FIXED_TIMESTAMP
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_offline_moves_to_disconnected(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.emit(TransportEventType.OFFLINE)

                snapshot = harness.manager.snapshot()
                assert snapshot.status == ConnectionStatus.DISCONNECTED
                assert snapshot.message == "MQTT connection lost: device offline"
                await harness.manager.shutdown()

        asyncio.run(run_test())

    @given(events=st.lists(non_message_events, min_size=1, max_size=15))
    @settings(max_examples=100, deadline=None)
    def test_heartbeat_runs_exactly_while_connected(self, events: list) -> None:
        """
        Property 4: *For any* sequence of transport events, the heartbeat is
        active exactly when the manager is Connected, and the reconnect
        counter is zero whenever it is Connected.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.manager.start()
                for event_type in events:
                    await harness.emit(event_type)
                    snapshot = harness.manager.snapshot()
                    connected = snapshot.status == ConnectionStatus.CONNECTED
                    assert harness.manager.heartbeat.is_active == connected
                    assert snapshot.heartbeat_active == connected
                    if connected:
                        assert snapshot.reconnect_attempts == 0
                await harness.manager.shutdown()

        asyncio.run(run_test())


class TestIdentityChangeProperty:
    """Property-based tests for rebinding the session to a new identifier."""

    @given(new_id=st.text(alphabet="abcdef0123456789", min_size=1, max_size=12).filter(lambda v: v != CLIENT_ID))
    @settings(max_examples=30, deadline=None)
    def test_change_id_restarts_session_under_new_identifier(self, new_id: str) -> None:
        """
        Property 5: A server-assigned identifier closes the old session with a
        disconnect notice for the old id and opens a new one for the new id.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                old_transport = harness.transport

                await harness.deliver(change_id_topic(CLIENT_ID), json.dumps({"new_client_id": new_id}))

                assert old_transport.json_on(CHANGE_ID_RESPONSE_TOPIC)[0]["new_client_id"] == new_id
                assert old_transport.published_on(DISCONNECTED_TOPIC) == [CLIENT_ID]
                assert old_transport.unsubscriptions == subscription_topics(CLIENT_ID)
                assert old_transport.closed

                assert len(harness.transports.created) == 2
                assert harness.transport.client_id == new_id
                assert harness.store.get(KEY_CLIENT_ID) == new_id
                assert harness.manager.snapshot().status == ConnectionStatus.CONNECTING

                # Late events from the old session are discarded
                old_transport.emit(TransportEventType.CONNECTED)
                await harness.manager.drain()
                assert harness.manager.snapshot().status == ConnectionStatus.CONNECTING

                await harness.emit(TransportEventType.CONNECTED)
                assert harness.transport.subscriptions == subscription_topics(new_id)
                assert harness.transport.json_on(STATUS_TOPIC)[0]["client_id"] == new_id
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_messages_for_old_identifier_are_dropped_after_change(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.deliver(change_id_topic(CLIENT_ID), json.dumps({"new_client_id": "ffff0000"}))
                await harness.emit(TransportEventType.CONNECTED)

                await harness.deliver(count_topic(CLIENT_ID), "9")
                assert harness.manager.snapshot().count == 0

                await harness.deliver(count_topic("ffff0000"), "9")
                assert harness.manager.snapshot().count == 9
                await harness.manager.shutdown()

        asyncio.run(run_test())


class TestResetProperty:
    """Property-based tests for the reset action."""

    @given(count=st.integers(min_value=1, max_value=10**6))
    @settings(max_examples=30, deadline=None)
    def test_reset_clears_state_and_reconnects_with_new_identifier(self, count: int) -> None:
        """
        Property 6: Reset clears all persisted keys, zeroes the counter and
        opens a new session under a fresh identifier.
        """
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.deliver(count_topic(CLIENT_ID), str(count))
                old_transport = harness.transport

                new_id = await harness.manager.reset()

                assert new_id is not None and new_id != CLIENT_ID
                assert harness.store.get(KEY_CLIENT_ID) == new_id
                assert harness.store.get(KEY_COUNT) is None
                assert harness.store.get(KEY_LAST_UPDATED) is None

                snapshot = harness.manager.snapshot()
                assert snapshot.client_id == new_id
                assert snapshot.count == 0
                assert snapshot.last_updated is None
                assert snapshot.reconnect_attempts == 0

                assert old_transport.published_on(DISCONNECTED_TOPIC) == [CLIENT_ID]
                assert old_transport.closed
                assert harness.transport.client_id == new_id
                assert not harness.manager.heartbeat.is_active
                await harness.manager.shutdown()

        asyncio.run(run_test())

    def test_reset_before_start_does_nothing(self) -> None:
        async def run_test() -> Optional[str]:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                return await harness.manager.reset()

        assert asyncio.run(run_test()) is None


class TestShutdown:
    """Tests for terminal teardown."""

    def test_shutdown_notifies_and_closes(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                transport = harness.transport

                await harness.manager.shutdown()

                assert transport.published_on(DISCONNECTED_TOPIC) == [CLIENT_ID]
                assert transport.unsubscriptions == subscription_topics(CLIENT_ID)
                assert transport.closed
                snapshot = harness.manager.snapshot()
                assert snapshot.status == ConnectionStatus.DISCONNECTED
                assert not snapshot.heartbeat_active
                assert not harness.manager.is_running

        asyncio.run(run_test())

    def test_shutdown_while_connecting_skips_notice(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.manager.start()
                transport = harness.transport

                await harness.manager.shutdown()

                assert transport.published == []
                assert transport.closed

        asyncio.run(run_test())

    def test_nothing_is_processed_after_shutdown(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                transport = harness.transport
                await harness.manager.shutdown()
                snapshots_before = len(harness.snapshots)

                transport.emit(TransportEventType.CONNECTED)
                transport.deliver(count_topic(CLIENT_ID), "5")
                await harness.clock.advance(HEARTBEAT_INTERVAL * 3)

                assert len(harness.snapshots) == snapshots_before
                assert harness.manager.snapshot().count == 0
                assert harness.store.get(KEY_COUNT) is None
                assert await harness.manager.reset() is None

        asyncio.run(run_test())

    def test_shutdown_is_idempotent(self) -> None:
        async def run_test() -> None:
            with tempfile.TemporaryDirectory() as tmpdir:
                harness = Harness(tmpdir)
                await harness.connect()
                await harness.manager.shutdown()
                await harness.manager.shutdown()
                assert len(harness.transport.published_on(DISCONNECTED_TOPIC)) == 1

        asyncio.run(run_test())
