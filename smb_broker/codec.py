from dataclasses import dataclass
from typing import Union

from .config import TOPIC_LENGTH, MAX_DATAGRAM_SIZE

DELIM = b"!"
WILDCARD = "#"

METHOD_PUBLISH = b"PUB"
METHOD_SUBSCRIBE = b"SUB"
METHOD_UNSUBSCRIBE = b"UNSUB"


class MalformedRequest(ValueError):
    pass


@dataclass(frozen=True)
class Publish:
    topic: str
    payload: bytes


@dataclass(frozen=True)
class Subscribe:
    topic: str


@dataclass(frozen=True)
class Unsubscribe:
    topic: str


Request = Union[Publish, Subscribe, Unsubscribe]


def validate_topic(topic: str, allow_wildcard=False, max_length=TOPIC_LENGTH):
    if not topic:
        raise MalformedRequest("topic is empty")
    if len(topic) >= max_length:
        raise MalformedRequest(f"topic {topic!r} is longer than {max_length - 1} characters")
    if DELIM.decode() in topic:
        raise MalformedRequest(f"topic {topic!r} contains delimiter character {DELIM.decode()}")
    if WILDCARD in topic:
        # subscribers may name the wildcard topic itself, never embed it
        if not allow_wildcard:
            raise MalformedRequest(f"topic {topic!r} contains wildcard character {WILDCARD}")
        if topic != WILDCARD:
            raise MalformedRequest(f"wildcard topic must be exactly {WILDCARD}, got {topic!r}")
    return topic


def validate_payload(payload: bytes):
    if DELIM in payload:
        raise MalformedRequest(f"payload contains delimiter character {DELIM.decode()}")
    return payload


def _read_topic(raw: bytes, allow_wildcard: bool, max_length: int) -> str:
    try:
        topic = raw.decode("ascii")
    except UnicodeDecodeError:
        raise MalformedRequest(f"topic {raw!r} is not ASCII") from None
    return validate_topic(topic, allow_wildcard, max_length)


def decode_request(data: bytes, max_topic_length=TOPIC_LENGTH, max_size=MAX_DATAGRAM_SIZE) -> Request:
    """Parse one datagram into a Publish, Subscribe or Unsubscribe request.

    Only the first two delimiters are significant; the publish payload is
    returned as the raw bytes that followed the second one.
    Raises MalformedRequest for anything that must be dropped.
    """
    if len(data) > max_size:
        raise MalformedRequest(f"datagram of {len(data)} bytes exceeds {max_size}")

    method, sep, rest = data.partition(DELIM)
    if not sep:
        raise MalformedRequest("missing delimiter after method")

    if method == METHOD_PUBLISH:
        raw_topic, sep, payload = rest.partition(DELIM)
        if not sep:
            raise MalformedRequest("publish without payload field")
        topic = _read_topic(raw_topic, False, max_topic_length)
        return Publish(topic, validate_payload(payload))

    if method == METHOD_SUBSCRIBE:
        return Subscribe(_read_topic(rest, True, max_topic_length))

    if method == METHOD_UNSUBSCRIBE:
        return Unsubscribe(_read_topic(rest, True, max_topic_length))

    raise MalformedRequest(f"invalid method {method!r}")


def _encode_topic(topic: str) -> bytes:
    try:
        return topic.encode("ascii")
    except UnicodeEncodeError:
        raise MalformedRequest(f"topic {topic!r} is not ASCII") from None


def build_publish(topic: str, payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    validate_topic(topic)
    validate_payload(payload)
    return METHOD_PUBLISH + DELIM + _encode_topic(topic) + DELIM + payload


def build_subscribe(topic: str) -> bytes:
    validate_topic(topic, allow_wildcard=True)
    return METHOD_SUBSCRIBE + DELIM + _encode_topic(topic)


def build_unsubscribe(topic: str) -> bytes:
    validate_topic(topic, allow_wildcard=True)
    return METHOD_UNSUBSCRIBE + DELIM + _encode_topic(topic)
