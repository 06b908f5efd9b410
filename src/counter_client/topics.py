"""
Topic names and inbound topic routing.

Inbound topics have the form client/{client_id}/{action}. Routing matches the
whole topic segment by segment against this client's identifier, so a topic
addressed to another client, or one that merely ends with an action name, is
not recognized.
"""

from typing import Optional

from .enums import TopicAction


CLIENT_TOPIC_PREFIX = "client"

# Outbound topics
STATUS_TOPIC = "clients/status"
CHANGE_ID_RESPONSE_TOPIC = "clients/change_id_response"
GET_COUNT_RESPONSE_TOPIC = "clients/get_count_response"
COUNT_ACK_TOPIC = "clients/count_ack"
DISCONNECTED_TOPIC = "clients/disconnected"

# Dispatch precedence
ACTION_PRECEDENCE = (
    TopicAction.CHANGE_ID,
    TopicAction.GET_COUNT,
    TopicAction.COUNT,
)


def client_topic(client_id: str, action: TopicAction) -> str:
    return f"{CLIENT_TOPIC_PREFIX}/{client_id}/{action.value}"


def count_topic(client_id: str) -> str:
    return client_topic(client_id, TopicAction.COUNT)


def change_id_topic(client_id: str) -> str:
    return client_topic(client_id, TopicAction.CHANGE_ID)


def get_count_topic(client_id: str) -> str:
    return client_topic(client_id, TopicAction.GET_COUNT)


def subscription_topics(client_id: str) -> list[str]:
    """The three inbound topics a session subscribes to, in subscribe order."""
    return [
        count_topic(client_id),
        change_id_topic(client_id),
        get_count_topic(client_id),
    ]


def classify(topic: str, client_id: str) -> Optional[TopicAction]:
    """
    Map an inbound topic to the action it requests.

    Args:
        topic: Topic the message arrived on
        client_id: This client's current identifier

    Returns:
        The TopicAction, or None if the topic is not recognized
    """
    segments = topic.split("/")
    if len(segments) != 3:
        return None

    prefix, topic_client_id, action = segments
    if prefix != CLIENT_TOPIC_PREFIX or topic_client_id != client_id:
        return None

    for candidate in ACTION_PRECEDENCE:
        if action == candidate.value:
            return candidate
    return None
