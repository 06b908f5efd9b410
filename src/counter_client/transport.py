"""
Transport sessions for the counter client.

A Transport owns one broker session for one client identifier. It reports
everything that happens to the session as TransportEvent objects through a
sink callable, always on the asyncio event loop thread.

MqttTransport implements this with paho-mqtt over WebSocket. paho runs its
network loop on a background thread; every paho callback is marshalled back
onto the event loop with call_soon_threadsafe, so the connection manager
sees a single ordered stream of events.

Event mapping:
- CONNACK accepted                 -> CONNECTED
- CONNACK refused                  -> ERROR
- unexpected disconnect            -> CONNECTION_LOST (auto-reconnect on)
                                      OFFLINE (auto-reconnect off)
- disconnect after close()         -> CLOSED
- failed (re)connect attempt       -> ERROR, then RECONNECTING if retrying
- inbound PUBLISH                  -> MESSAGE
"""

import asyncio
import socket
import ssl
from abc import ABC, abstractmethod
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .audit_logger import AuditLogger
from .config import BrokerConfig, ReconnectConfig
from .enums import LogLevel, TransportEventType
from .exceptions import TransportError
from .models import TransportEvent


EventSink = Callable[[TransportEvent], None]


def describe_os_error(error: BaseException) -> Optional[str]:
    """
    Map a socket-level failure to a reason code.

    Returns:
        'not_found', 'refused', 'timeout', 'reset', or None if unrecognized
    """
    if isinstance(error, socket.gaierror):
        return "not_found"
    if isinstance(error, ConnectionRefusedError):
        return "refused"
    if isinstance(error, (TimeoutError, socket.timeout)):
        return "timeout"
    if isinstance(error, ConnectionResetError):
        return "reset"
    return None


class Transport(ABC):
    """
    Abstract base class for a broker session.

    Implementations must deliver events to the sink on the event loop thread
    and must not deliver anything after close() has returned.
    """

    @abstractmethod
    async def start(self, client_id: str, sink: EventSink) -> None:
        """Begin connecting as `client_id`; progress is reported via `sink`."""
        pass

    @abstractmethod
    def publish(self, topic: str, payload: str) -> bool:
        """Fire-and-forget publish. Returns False if the transport refused it."""
        pass

    @abstractmethod
    def subscribe(self, topic: str) -> bool:
        """Subscribe to a topic. Returns False if the request was not sent."""
        pass

    @abstractmethod
    def unsubscribe(self, topic: str) -> bool:
        """Unsubscribe from a topic. Returns False if the request was not sent."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """End the session. No reconnect attempt is made afterwards."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


class MqttTransport(Transport):
    """paho-mqtt session over WebSocket with fixed-delay reconnection."""

    COMPONENT = "MqttTransport"

    def __init__(
        self,
        broker: BrokerConfig,
        reconnect: ReconnectConfig,
        logger: Optional[AuditLogger] = None,
        client_factory: Optional[Callable[..., mqtt.Client]] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            broker: Broker endpoint and credentials
            reconnect: Reconnection policy (fixed delay, per-attempt timeout)
            logger: Optional audit logger
            client_factory: Builds the paho client (defaults to mqtt.Client)
        """
        self._broker = broker
        self._reconnect = reconnect
        self._logger = logger
        self._client_factory = client_factory or mqtt.Client
        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sink: Optional[EventSink] = None
        self._closing = False
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._connect_task: Optional[asyncio.Task] = None

    def _build_client(self, client_id: str) -> mqtt.Client:
        client = self._client_factory(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            transport=self._broker.transport,
            reconnect_on_failure=self._reconnect.enabled,
        )
        if self._broker.transport == "websockets":
            client.ws_set_options(path=self._broker.path)
        if self._broker.username:
            client.username_pw_set(self._broker.username, self._broker.password)
        if self._broker.tls:
            client.tls_set(cert_reqs=ssl.CERT_REQUIRED)

        delay = self._reconnect.delay_seconds
        client.reconnect_delay_set(min_delay=delay, max_delay=delay)
        client.connect_timeout = self._reconnect.connect_timeout_seconds

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_connect_fail = self._on_connect_fail
        client.on_message = self._on_message
        return client

    async def start(self, client_id: str, sink: EventSink) -> None:
        """
        Schedule the first connection attempt and return immediately.

        The first attempt runs in an executor so its socket error can be
        reported with a precise reason. Later attempts are paho's own.
        """
        self._loop = asyncio.get_running_loop()
        self._sink = sink
        self._closing = False
        self._client = self._build_client(client_id)

        self._log(LogLevel.INFO, "Connecting to broker", {
            "client_id": client_id,
            "broker": self._broker.url,
        })
        self._connect_task = self._loop.create_task(self._connect_first(self._client))

    async def _connect_first(self, client: mqtt.Client) -> None:
        try:
            await self._loop.run_in_executor(
                None,
                client.connect,
                self._broker.host,
                self._broker.port,
                self._broker.keepalive_seconds,
            )
        except (OSError, mqtt.WebsocketConnectionError, ValueError) as e:
            if self._closing:
                return
            self._report_connect_failure(e)
            if self._reconnect.enabled:
                self._retry_handle = self._loop.call_later(
                    self._reconnect.delay_seconds,
                    self._start_background_loop,
                )
            return

        # Started even when closing so that close() can shut the socket down
        client.loop_start()

    def _start_background_loop(self) -> None:
        """Retry in paho's network thread; it keeps retrying at the fixed delay."""
        self._retry_handle = None
        if self._closing or self._client is None:
            return
        self._emit(TransportEvent(type=TransportEventType.RECONNECTING))
        self._client.connect_async(
            self._broker.host,
            self._broker.port,
            self._broker.keepalive_seconds,
        )
        self._client.loop_start()

    def _report_connect_failure(self, error: BaseException) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, "MQTT connection error", error=error, additional_data={
                "broker": self._broker.url,
            })
        self._emit(TransportEvent(
            type=TransportEventType.ERROR,
            reason=describe_os_error(error),
            error=str(error) or type(error).__name__,
        ))

    def publish(self, topic: str, payload: str) -> bool:
        if self._client is None:
            return False
        try:
            info = self._client.publish(topic, payload, qos=0)
        except ValueError as e:
            raise TransportError(
                code="invalid_publish",
                message=f"Publish rejected: {e}",
                details={"topic": topic},
            )
        return info.rc == mqtt.MQTT_ERR_SUCCESS

    def subscribe(self, topic: str) -> bool:
        if self._client is None:
            return False
        try:
            rc, _mid = self._client.subscribe(topic, qos=0)
        except ValueError as e:
            raise TransportError(
                code="invalid_subscribe",
                message=f"Subscribe rejected: {e}",
                details={"topic": topic},
            )
        return rc == mqtt.MQTT_ERR_SUCCESS

    def unsubscribe(self, topic: str) -> bool:
        if self._client is None:
            return False
        rc, _mid = self._client.unsubscribe(topic)
        return rc == mqtt.MQTT_ERR_SUCCESS

    async def close(self) -> None:
        self._closing = True
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

        # The first attempt is bounded by the connect timeout
        connect_task, self._connect_task = self._connect_task, None
        if connect_task is not None:
            await asyncio.wait([connect_task])

        client, self._client = self._client, None
        if client is None:
            return

        client.disconnect()
        # loop_stop joins paho's network thread
        await asyncio.get_running_loop().run_in_executor(None, client.loop_stop)
        self._sink = None
        self._log(LogLevel.INFO, "Transport closed", {})

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    # paho callbacks, called on paho's network thread

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._emit_threadsafe(TransportEvent(
                type=TransportEventType.ERROR,
                reason="refused",
                error=str(reason_code),
            ))
            return
        self._emit_threadsafe(TransportEvent(type=TransportEventType.CONNECTED))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None) -> None:
        if self._closing:
            event_type = TransportEventType.CLOSED
        elif self._reconnect.enabled:
            event_type = TransportEventType.CONNECTION_LOST
        else:
            event_type = TransportEventType.OFFLINE
        self._emit_threadsafe(TransportEvent(type=event_type, error=str(reason_code)))

    def _on_connect_fail(self, client, userdata) -> None:
        if self._closing:
            return
        self._emit_threadsafe(TransportEvent(type=TransportEventType.ERROR))
        if self._reconnect.enabled:
            self._emit_threadsafe(TransportEvent(type=TransportEventType.RECONNECTING))

    def _on_message(self, client, userdata, message) -> None:
        self._emit_threadsafe(TransportEvent(
            type=TransportEventType.MESSAGE,
            topic=message.topic,
            payload=bytes(message.payload),
        ))

    def _emit_threadsafe(self, event: TransportEvent) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._emit, event)
        except RuntimeError:
            # Event loop closed between the check and the call
            pass

    def _emit(self, event: TransportEvent) -> None:
        sink = self._sink
        if sink is not None:
            sink(event)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
