import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional

from .codec import WILDCARD
from .config import MAX_TOPICS, MAX_SUBSCRIBERS

WILDCARD_SLOT = 0


class Endpoint(NamedTuple):
    host: str
    port: int

    @classmethod
    def from_addr(cls, addr) -> "Endpoint":
        # asyncio hands over (host, port) for IPv4 and a 4-tuple for IPv6
        return cls(addr[0], addr[1])

    def __str__(self):
        return f"{self.host}:{self.port}"


class SubscribeResult(Enum):
    OK = "ok"
    ALREADY_SUBSCRIBED = "already_subscribed"


class UnsubscribeResult(Enum):
    REMOVED = "removed"
    NOT_SUBSCRIBED = "not_subscribed"


class CapacityExceeded(Exception):
    pass


class DirectoryFull(CapacityExceeded):
    def __init__(self, topic: str):
        super().__init__(f"No more free slots to register new topic {topic}")
        self.topic = topic


class TopicFull(CapacityExceeded):
    def __init__(self, topic: str, endpoint: Endpoint):
        super().__init__(f"No more free slots to register subscriber {endpoint} for topic {topic}")
        self.topic = topic
        self.endpoint = endpoint


@dataclass
class TopicEntry:
    name: str
    capacity: int = MAX_SUBSCRIBERS
    # None marks a free subscriber slot
    slots: List[Optional[Endpoint]] = field(default_factory=list)

    def __post_init__(self):
        if not self.slots:
            self.slots = [None] * self.capacity

    @property
    def is_wildcard(self) -> bool:
        return self.name == WILDCARD

    def subscribers(self) -> List[Endpoint]:
        return [ep for ep in self.slots if ep is not None]

    def subscriber_count(self) -> int:
        return sum(1 for ep in self.slots if ep is not None)

    def has_subscriber(self, endpoint: Endpoint) -> bool:
        return endpoint in self.slots

    def add_subscriber(self, endpoint: Endpoint) -> SubscribeResult:
        if endpoint in self.slots:
            return SubscribeResult.ALREADY_SUBSCRIBED
        for i, ep in enumerate(self.slots):
            if ep is None:
                self.slots[i] = endpoint
                return SubscribeResult.OK
        raise TopicFull(self.name, endpoint)

    def remove_subscriber(self, endpoint: Endpoint) -> UnsubscribeResult:
        for i, ep in enumerate(self.slots):
            if ep == endpoint:
                self.slots[i] = None
                return UnsubscribeResult.REMOVED
        return UnsubscribeResult.NOT_SUBSCRIBED


class Route(NamedTuple):
    wildcard: List[Endpoint]
    exact: Optional[List[Endpoint]]

    @property
    def recipients(self) -> List[Endpoint]:
        # an endpoint subscribed both ways gets two copies
        return self.wildcard + (self.exact or [])


class Directory:
    """Fixed-capacity topic table; slot 0 always holds the wildcard topic.

    Every read-then-write sequence runs under one lock, so find-or-create
    and the slot write that follows it can never interleave with another
    registration.
    """

    def __init__(self, max_topics: int = MAX_TOPICS, max_subscribers: int = MAX_SUBSCRIBERS):
        if max_topics < 1:
            raise ValueError("directory needs at least the wildcard slot")
        self.max_topics = max_topics
        self.max_subscribers = max_subscribers
        # None marks a free topic slot
        self.slots: List[Optional[TopicEntry]] = [None] * max_topics
        self.slots[WILDCARD_SLOT] = TopicEntry(WILDCARD, max_subscribers)
        self._lock = threading.Lock()

    @property
    def wildcard(self) -> TopicEntry:
        return self.slots[WILDCARD_SLOT]

    def _find(self, topic: str) -> Optional[TopicEntry]:
        for entry in self.slots:
            if entry is not None and entry.name == topic:
                return entry
        return None

    def find(self, topic: str) -> Optional[TopicEntry]:
        with self._lock:
            return self._find(topic)

    def _find_or_create(self, topic: str):
        entry = self._find(topic)
        if entry is not None:
            return entry, False
        for i, slot in enumerate(self.slots):
            if slot is None:
                entry = TopicEntry(topic, self.max_subscribers)
                self.slots[i] = entry
                return entry, True
        raise DirectoryFull(topic)

    def find_or_create(self, topic: str) -> TopicEntry:
        with self._lock:
            return self._find_or_create(topic)[0]

    def _release(self, entry: TopicEntry):
        for i, slot in enumerate(self.slots):
            if slot is entry and i != WILDCARD_SLOT:
                self.slots[i] = None
                return

    def subscribe(self, topic: str, endpoint: Endpoint) -> SubscribeResult:
        with self._lock:
            entry, created = self._find_or_create(topic)
            try:
                return entry.add_subscriber(endpoint)
            except TopicFull:
                if created:
                    self._release(entry)
                raise

    def unsubscribe(self, topic: str, endpoint: Endpoint) -> UnsubscribeResult:
        with self._lock:
            entry = self._find(topic)
            if entry is None:
                return UnsubscribeResult.NOT_SUBSCRIBED
            result = entry.remove_subscriber(endpoint)
            if result is UnsubscribeResult.REMOVED and not entry.is_wildcard and entry.subscriber_count() == 0:
                self._release(entry)
                print(f"[-] Topic {topic} has no subscribers left, slot reclaimed")
            return result

    def route(self, topic: str) -> Route:
        """Copy the endpoints a message published on ``topic`` must reach.

        ``exact`` is None when no entry exists for the topic. The lists are
        copies, so the caller can send without holding the lock.
        """
        with self._lock:
            entry = self._find(topic)
            exact = None
            if entry is not None and not entry.is_wildcard:
                exact = entry.subscribers()
            return Route(self.wildcard.subscribers(), exact)

    def recipients(self, topic: str) -> List[Endpoint]:
        return self.route(topic).recipients

    def topics(self) -> List[str]:
        with self._lock:
            return [entry.name for entry in self.slots if entry is not None]

    def free_slots(self) -> int:
        with self._lock:
            return sum(1 for entry in self.slots if entry is None)

    def snapshot(self):
        with self._lock:
            return [
                {
                    "slot": i,
                    "topic": entry.name,
                    "subscribers": [str(ep) for ep in entry.subscribers()],
                    "capacity": entry.capacity,
                }
                for i, entry in enumerate(self.slots)
                if entry is not None
            ]
