"""
Connection Manager for the counter client.

This module drives the client's connection state machine. Transport events,
heartbeat ticks and user commands are put on one asyncio queue and applied
by a single consumer task, one at a time and in delivery order:

    Disconnected -> Connecting   connect attempt started (initial or retry)
    Connecting   -> Connected    broker accepted the session
    Connected    -> Connecting   connection dropped, auto-reconnect enabled
    *            -> Disconnected error, explicit close, or offline

Each transport session is tagged with a generation number. When a session is
torn down (shutdown, reset, or a server-assigned identifier) its generation is
retired and any late events it produces are discarded.
"""

import asyncio
import functools
import json
from dataclasses import dataclass
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .config import ClientConfig
from .counter_store import CounterStore
from .enums import ConnectionStatus, LogLevel, PresenceStatus, TransportEventType
from .exceptions import PersistenceError, TransportError
from .heartbeat import HeartbeatPublisher, SleepFunc
from .i18n import describe_failure, get_message
from .identity_store import IdentityStore
from .message_handler import MessageHandler
from .models import ClientSnapshot, StatusPayload, TransportEvent, utc_now_iso
from .state import SnapshotListener, StateHolder
from .topics import DISCONNECTED_TOPIC, STATUS_TOPIC, subscription_topics
from .transport import Transport


TransportFactory = Callable[[], Transport]


@dataclass
class _Command:
    name: str
    done: asyncio.Future


@dataclass
class _HeartbeatTick:
    generation: int


class ConnectionManager:
    """
    Owns the client state, the transport session and the heartbeat.

    Typical use:

        manager = ConnectionManager(config, identity_store, counter_store, factory)
        manager.add_listener(print)
        await manager.start()
        ...
        await manager.shutdown()
    """

    COMPONENT = "ConnectionManager"

    def __init__(
        self,
        config: ClientConfig,
        identity_store: IdentityStore,
        counter_store: CounterStore,
        transport_factory: TransportFactory,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], str] = utc_now_iso,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            config: Client configuration
            identity_store: Persistence for the client identifier
            counter_store: Persistence for the counter value
            transport_factory: Creates a fresh Transport for each session
            logger: Optional audit logger
            clock: Callable returning the current ISO-8601 timestamp
            sleep: Awaitable sleep for the heartbeat (defaults to asyncio.sleep)
        """
        self._config = config
        self._language = config.language
        self._identity_store = identity_store
        self._counter_store = counter_store
        self._transport_factory = transport_factory
        self._logger = logger
        self._clock = clock

        self._state = StateHolder(logger=logger)
        self._heartbeat = HeartbeatPublisher(
            interval_seconds=config.heartbeat.interval_seconds,
            on_tick=self._on_heartbeat_tick,
            sleep=sleep,
            logger=logger,
        )
        self._handler = MessageHandler(
            state=self._state,
            identity_store=identity_store,
            counter_store=counter_store,
            publish=self._publish,
            publish_status=self.publish_status,
            clock=clock,
            language=config.language,
            logger=logger,
        )

        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._transport: Optional[Transport] = None
        self._session_client_id: Optional[str] = None
        self._generation = 0
        self._closed = False

    # Public API

    def snapshot(self) -> ClientSnapshot:
        """Return the current read-only client state."""
        return self._state.snapshot()

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener. Returns a function that removes it."""
        return self._state.add_listener(listener)

    @property
    def heartbeat(self) -> HeartbeatPublisher:
        return self._heartbeat

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._closed

    async def start(self) -> None:
        """
        Load the persisted identity and counter, then open the first session.

        If no identifier is available the manager stays Disconnected.

        Raises:
            RuntimeError: If the manager was already started
        """
        if self._consumer is not None:
            raise RuntimeError("ConnectionManager already started")
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        await self._submit("start")

    async def reset(self) -> Optional[str]:
        """
        Clear all persisted data and reconnect under a fresh identifier.

        Returns:
            The new client identifier, or None if the reset could not be done
        """
        if self._consumer is None or self._closed:
            return None
        return await self._submit("reset")

    async def shutdown(self) -> None:
        """Tear down the session. Nothing is processed afterwards."""
        if self._consumer is None:
            self._closed = True
            return
        if not self._closed:
            await self._submit("shutdown")
        await asyncio.wait([self._consumer])

    async def drain(self) -> None:
        """Wait until every queued event and command has been processed."""
        await self._queue.join()

    def publish_status(self) -> bool:
        """
        Publish a status message with the current identifier and counter.

        Returns:
            True if the transport accepted the message
        """
        client_id = self._state.client_id
        if client_id is None or self._transport is None:
            return False

        presence = (
            PresenceStatus.ONLINE
            if self._state.status == ConnectionStatus.CONNECTED
            else PresenceStatus.OFFLINE
        )
        payload = StatusPayload(
            client_id=client_id,
            timestamp=self._clock(),
            count=self._state.count,
            status=presence,
        )
        return self._send(STATUS_TOPIC, json.dumps(payload.to_dict()))

    # Queue plumbing

    async def _submit(self, name: str):
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Command(name=name, done=future))
        return await future

    def _on_transport_event(self, generation: int, event: TransportEvent) -> None:
        if self._closed:
            return
        event.generation = generation
        self._queue.put_nowait(event)

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, _Command):
                    await self._run_command(item)
                elif isinstance(item, _HeartbeatTick):
                    self._apply_heartbeat_tick(item)
                else:
                    await self._apply_event(item)
            except Exception as e:
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Failed to process transport event", error=e)
            finally:
                self._queue.task_done()

            if self._closed:
                self._discard_pending()
                return

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, _Command) and not item.done.done():
                item.done.set_result(None)
            self._queue.task_done()

    async def _run_command(self, command: _Command) -> None:
        handlers = {
            "start": self._do_start,
            "reset": self._do_reset,
            "shutdown": self._do_shutdown,
        }
        try:
            result = await handlers[command.name]()
        except Exception as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, f"Command '{command.name}' failed", error=e)
            if not command.done.done():
                command.done.set_exception(e)
            return

        if not command.done.done():
            command.done.set_result(result)

    # Commands

    async def _do_start(self) -> None:
        client_id = self._identity_store.load_or_create()
        counter = self._counter_store.load()
        self._state.update(
            client_id=client_id,
            count=counter.count if counter else 0,
            last_updated=counter.updated_at if counter else None,
        )

        if client_id is None:
            self._state.update(
                status=ConnectionStatus.DISCONNECTED,
                message=get_message("identity.unavailable", self._language),
            )
            return

        self._log(LogLevel.INFO, "Loaded client state", {
            "client_id": client_id,
            "count": self._state.count,
        })
        await self._open_session(client_id)

    async def _do_reset(self) -> Optional[str]:
        try:
            new_client_id = self._identity_store.reset()
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Failed to reset stored data", error=e)
            return None

        await self._close_session()
        self._state.update(
            client_id=new_client_id,
            count=0,
            last_updated=None,
            status=ConnectionStatus.DISCONNECTED,
            reconnect_attempts=0,
            last_disconnect_at=None,
            heartbeat_active=False,
            message=get_message("identity.reset", self._language, client_id=new_client_id),
        )
        await self._open_session(new_client_id)
        return new_client_id

    async def _do_shutdown(self) -> None:
        self._closed = True
        await self._close_session()
        self._state.update(
            status=ConnectionStatus.DISCONNECTED,
            heartbeat_active=False,
            message=get_message("connection.closed", self._language),
        )
        self._log(LogLevel.INFO, "Connection manager shut down", {})

    # Sessions

    async def _open_session(self, client_id: str) -> None:
        self._generation += 1
        self._session_client_id = client_id
        self._transport = self._transport_factory()
        self._state.update(
            status=ConnectionStatus.CONNECTING,
            heartbeat_active=False,
            message=get_message("connection.connecting", self._language),
        )
        sink = functools.partial(self._on_transport_event, self._generation)
        await self._transport.start(client_id, sink)

    async def _close_session(self) -> None:
        """Stop the heartbeat, say goodbye if connected, then close the transport."""
        self._heartbeat.stop()
        self._generation += 1

        transport, self._transport = self._transport, None
        client_id, self._session_client_id = self._session_client_id, None
        if transport is None:
            return

        if transport.is_connected and client_id is not None:
            try:
                transport.publish(DISCONNECTED_TOPIC, client_id)
                for topic in subscription_topics(client_id):
                    transport.unsubscribe(topic)
            except TransportError as e:
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Disconnect notification failed", error=e)

        await transport.close()
        self._log(LogLevel.INFO, "Session closed", {"client_id": client_id})

    async def _rebind(self, client_id: str) -> None:
        await self._close_session()
        await self._open_session(client_id)

    # Transport events

    async def _apply_event(self, event: TransportEvent) -> None:
        if event.generation != self._generation:
            self._log(LogLevel.DEBUG, "Discarding event from a closed session", {
                "event": event.type.value,
            })
            return

        if event.type == TransportEventType.CONNECTED:
            self._on_connected()
        elif event.type in (TransportEventType.RECONNECTING, TransportEventType.CONNECTION_LOST):
            self._on_reconnecting(event)
        elif event.type in (
            TransportEventType.ERROR,
            TransportEventType.CLOSED,
            TransportEventType.OFFLINE,
        ):
            self._on_disconnected(event)
        elif event.type == TransportEventType.MESSAGE:
            result = self._handler.handle(event.topic or "", event.payload)
            if result.identity_changed_to is not None:
                await self._rebind(result.identity_changed_to)

    def _on_connected(self) -> None:
        client_id = self._session_client_id
        self._state.update(
            status=ConnectionStatus.CONNECTED,
            reconnect_attempts=0,
            message=get_message("connection.connected", self._language),
        )
        self._log(LogLevel.INFO, "MQTT connected", {"client_id": client_id})

        self.publish_status()
        self._heartbeat.start()

        for topic in subscription_topics(client_id):
            try:
                subscribed = self._transport.subscribe(topic)
            except TransportError as e:
                subscribed = False
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Subscribe failed", error=e, topic=topic)
            if not subscribed:
                self._log(LogLevel.WARN, "Subscription was not accepted by the transport", {"topic": topic})

        self._state.update(heartbeat_active=True)

    def _on_reconnecting(self, event: TransportEvent) -> None:
        self._heartbeat.stop()
        attempts = self._state.reconnect_attempts + 1
        changes = {
            "status": ConnectionStatus.CONNECTING,
            "reconnect_attempts": attempts,
            "heartbeat_active": False,
        }
        if event.type == TransportEventType.CONNECTION_LOST:
            changes["last_disconnect_at"] = self._clock()
            changes["message"] = get_message("connection.lost", self._language)
        else:
            changes["message"] = get_message("connection.reconnecting", self._language, attempt=attempts)
        self._state.update(**changes)
        self._log(LogLevel.INFO, "Reconnecting", {
            "event": event.type.value,
            "attempt": attempts,
        })

    def _on_disconnected(self, event: TransportEvent) -> None:
        self._heartbeat.stop()

        if event.type == TransportEventType.ERROR:
            reason = describe_failure(event.reason, event.error, self._language)
            message = get_message("connection.failed", self._language, reason=reason)
        elif event.type == TransportEventType.CLOSED:
            message = get_message("connection.closed", self._language)
        else:
            message = get_message("connection.offline", self._language)

        self._state.update(
            status=ConnectionStatus.DISCONNECTED,
            heartbeat_active=False,
            last_disconnect_at=self._clock(),
            message=message,
        )
        self._log(LogLevel.WARN, "MQTT disconnected", {
            "event": event.type.value,
            "reason": event.reason,
            "error": event.error,
        })

    def _on_heartbeat_tick(self) -> None:
        if self._closed:
            return
        self._queue.put_nowait(_HeartbeatTick(generation=self._generation))

    def _apply_heartbeat_tick(self, tick: _HeartbeatTick) -> None:
        if tick.generation != self._generation or not self._heartbeat.is_active:
            self._log(LogLevel.DEBUG, "Discarding heartbeat from a stopped timer", {})
            return
        if self._transport is not None and self._transport.is_connected:
            self.publish_status()

    # Publishing

    def _publish(self, topic: str, payload: str) -> bool:
        transport = self._transport
        if transport is None:
            return False
        return transport.publish(topic, payload)

    def _send(self, topic: str, payload: str) -> bool:
        try:
            return self._publish(topic, payload)
        except TransportError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Publish failed", error=e, topic=topic)
            return False

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
