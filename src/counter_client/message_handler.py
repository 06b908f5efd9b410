"""
Message Handler for inbound client-scoped topics.

This module classifies each inbound message by topic and applies one of
three behaviors:
- count: store the new counter value, acknowledge it, refresh status
- change_id: adopt a server-assigned client identifier
- get_count: report the current counter value

Malformed payloads never raise out of the handler: count payloads that do not
parse are dropped, and change_id failures are answered with a structured
error response.
"""

import json
from dataclasses import dataclass
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .counter_store import CounterStore, parse_count
from .enums import LogLevel, ResponseStatus, TopicAction
from .exceptions import IdentityError, PayloadError, PersistenceError, TransportError
from .i18n import get_message
from .identity_store import IdentityStore, validate_client_id
from .models import ChangeIdResponse, CountAck, GetCountResponse, utc_now_iso
from .state import StateHolder
from .topics import (
    CHANGE_ID_RESPONSE_TOPIC,
    COUNT_ACK_TOPIC,
    GET_COUNT_RESPONSE_TOPIC,
    classify,
)


Publisher = Callable[[str, str], bool]


@dataclass
class HandleResult:
    """Outcome of handling one inbound message."""

    action: Optional[TopicAction]
    accepted: bool
    identity_changed_to: Optional[str] = None


class MessageHandler:
    """
    Applies inbound messages to the client state.

    Publishing goes through the `publish(topic, text) -> bool` callable so the
    handler never touches the transport directly.
    """

    COMPONENT = "MessageHandler"

    def __init__(
        self,
        state: StateHolder,
        identity_store: IdentityStore,
        counter_store: CounterStore,
        publish: Publisher,
        publish_status: Callable[[], bool],
        clock: Callable[[], str] = utc_now_iso,
        language: Optional[str] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the message handler.

        Args:
            state: Client state holder to read and update
            identity_store: Persistence for the client identifier
            counter_store: Persistence for the counter value
            publish: Callable publishing a text payload on a topic
            publish_status: Callable publishing a fresh status message
            clock: Callable returning the current ISO-8601 timestamp
            language: Status message language
            logger: Optional audit logger
        """
        self._state = state
        self._identity_store = identity_store
        self._counter_store = counter_store
        self._publish = publish
        self._publish_status = publish_status
        self._clock = clock
        self._language = language
        self._logger = logger

    def handle(self, topic: str, payload: bytes) -> HandleResult:
        """
        Dispatch one inbound message.

        Args:
            topic: Topic the message arrived on
            payload: Raw message payload

        Returns:
            HandleResult describing what was done
        """
        client_id = self._state.client_id
        action = classify(topic, client_id) if client_id else None

        self._log(LogLevel.DEBUG, "Received message", {
            "topic": topic,
            "payload": payload.decode("utf-8", errors="replace"),
        })

        if action == TopicAction.CHANGE_ID:
            return self._handle_change_id(payload)
        if action == TopicAction.GET_COUNT:
            return self._handle_get_count()
        if action == TopicAction.COUNT:
            return self._handle_count(payload)

        self._log(LogLevel.DEBUG, "Dropping message on unrecognized topic", {"topic": topic})
        return HandleResult(action=None, accepted=False)

    def _handle_change_id(self, payload: bytes) -> HandleResult:
        old_client_id = self._state.client_id

        try:
            new_client_id = self._parse_change_request(payload)

            if new_client_id == old_client_id:
                # Already using this identifier: answer with the same shape, change nothing
                self._send_change_id_success(old_client_id, new_client_id)
                return HandleResult(action=TopicAction.CHANGE_ID, accepted=True)

            # Write ahead: the in-memory swap only happens once the new id is durable
            self._identity_store.save(new_client_id)
        except (PayloadError, IdentityError, PersistenceError) as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Error processing client ID change request", error=e)
            response = ChangeIdResponse(
                old_client_id=old_client_id,
                new_client_id=None,
                status=ResponseStatus.ERROR,
                error=e.message,
            )
            self._send(CHANGE_ID_RESPONSE_TOPIC, response.to_dict())
            return HandleResult(action=TopicAction.CHANGE_ID, accepted=False)

        self._state.update(
            client_id=new_client_id,
            message=get_message("identity.changed", self._language, client_id=new_client_id),
        )
        self._send_change_id_success(old_client_id, new_client_id)
        self._log(LogLevel.INFO, "Client ID changed", {
            "old_client_id": old_client_id,
            "new_client_id": new_client_id,
        })
        return HandleResult(
            action=TopicAction.CHANGE_ID,
            accepted=True,
            identity_changed_to=new_client_id,
        )

    def _parse_change_request(self, payload: bytes) -> str:
        """
        Extract new_client_id from a change_id payload.

        Raises:
            PayloadError: If the payload is not a JSON object
            IdentityError: If new_client_id is missing or unusable
        """
        try:
            request = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PayloadError(
                code="invalid_json",
                message=f"change_id payload is not valid JSON: {e}",
            )

        if not isinstance(request, dict):
            raise PayloadError(
                code="invalid_json",
                message="change_id payload must be a JSON object",
            )

        return validate_client_id(request.get("new_client_id"))

    def _send_change_id_success(self, old_client_id: Optional[str], new_client_id: str) -> None:
        response = ChangeIdResponse(
            old_client_id=old_client_id,
            new_client_id=new_client_id,
            status=ResponseStatus.SUCCESS,
            timestamp=self._clock(),
        )
        self._send(CHANGE_ID_RESPONSE_TOPIC, response.to_dict())

    def _handle_get_count(self) -> HandleResult:
        response = GetCountResponse(
            client_id=self._state.client_id,
            count=self._state.count,
            timestamp=self._clock(),
        )
        self._send(GET_COUNT_RESPONSE_TOPIC, response.to_dict())
        self._log(LogLevel.INFO, "Sent current count to server", {"count": response.count})
        return HandleResult(action=TopicAction.GET_COUNT, accepted=True)

    def _handle_count(self, payload: bytes) -> HandleResult:
        try:
            value = parse_count(payload.decode("utf-8"))
        except UnicodeDecodeError:
            value = None

        if value is None:
            self._log(LogLevel.WARN, "Message is not a valid number", {
                "payload": payload.decode("utf-8", errors="replace"),
            })
            return HandleResult(action=TopicAction.COUNT, accepted=False)

        timestamp = self._clock()
        self._state.update(count=value, last_updated=timestamp)

        try:
            self._counter_store.save(value, timestamp)
        except PersistenceError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Failed to save count value", error=e)

        ack = CountAck(
            client_id=self._state.client_id,
            count=value,
            timestamp=timestamp,
        )
        self._send(COUNT_ACK_TOPIC, ack.to_dict())
        self._log(LogLevel.INFO, "Saved and acknowledged count value", {
            "count": value,
            "timestamp": timestamp,
        })

        self._publish_status()
        return HandleResult(action=TopicAction.COUNT, accepted=True)

    def _send(self, topic: str, data: dict) -> bool:
        """Publish a JSON payload; failures are logged, never raised."""
        try:
            sent = self._publish(topic, json.dumps(data, ensure_ascii=False))
        except TransportError as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Publish failed", error=e, topic=topic)
            return False

        if not sent:
            self._log(LogLevel.WARN, "Publish was not accepted by the transport", {"topic": topic})
        return sent

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
