import threading

import pytest

from smb_broker.state import (
    Directory, Endpoint, TopicEntry, WILDCARD_SLOT,
    CapacityExceeded, DirectoryFull, TopicFull,
    SubscribeResult, UnsubscribeResult,
)

A = Endpoint("10.0.0.1", 5001)
B = Endpoint("10.0.0.2", 5002)
C = Endpoint("10.0.0.3", 5003)


@pytest.fixture
def directory():
    return Directory(max_topics=10, max_subscribers=10)


def test_new_directory_holds_only_the_wildcard(directory):
    assert directory.topics() == ["#"]
    assert directory.slots[WILDCARD_SLOT].name == "#"
    assert directory.free_slots() == 9


def test_endpoint_equality_needs_host_and_port():
    assert Endpoint("10.0.0.1", 5001) == A
    assert Endpoint("10.0.0.1", 5002) != A
    assert Endpoint("10.0.0.9", 5001) != A
    assert Endpoint.from_addr(("::1", 5001, 0, 0)) == Endpoint("::1", 5001)
    assert str(A) == "10.0.0.1:5001"


def test_find_uses_full_string_equality(directory):
    directory.subscribe("weather_station_1", A)
    assert directory.find("weather_station_2") is None
    assert directory.find("weather") is None
    directory.subscribe("weather_station_2", B)
    assert directory.find("weather_station_1").subscribers() == [A]
    assert directory.find("weather_station_2").subscribers() == [B]


def test_find_or_create_is_idempotent(directory):
    first = directory.find_or_create("news")
    assert directory.find_or_create("news") is first
    assert directory.topics() == ["#", "news"]


def test_subscribe_twice_is_idempotent(directory):
    assert directory.subscribe("weather", A) is SubscribeResult.OK
    assert directory.subscribe("weather", A) is SubscribeResult.ALREADY_SUBSCRIBED
    assert directory.find("weather").subscriber_count() == 1


def test_same_host_different_port_are_distinct_subscribers(directory):
    directory.subscribe("weather", Endpoint("10.0.0.1", 1))
    assert directory.subscribe("weather", Endpoint("10.0.0.1", 2)) is SubscribeResult.OK
    assert directory.find("weather").subscriber_count() == 2


def test_unsubscribe_unknown_endpoint_is_a_noop(directory):
    directory.subscribe("weather", B)
    before = directory.snapshot()
    assert directory.unsubscribe("weather", A) is UnsubscribeResult.NOT_SUBSCRIBED
    assert directory.unsubscribe("nothing-here", A) is UnsubscribeResult.NOT_SUBSCRIBED
    assert directory.snapshot() == before


def test_last_unsubscribe_reclaims_the_slot(directory):
    directory.subscribe("weather", A)
    slot = [i for i, e in enumerate(directory.slots) if e is not None and e.name == "weather"][0]
    assert directory.unsubscribe("weather", A) is UnsubscribeResult.REMOVED
    assert directory.find("weather") is None
    assert directory.slots[slot] is None

    assert directory.subscribe("alerts", B) is SubscribeResult.OK
    assert directory.slots[slot].name == "alerts"


def test_topic_survives_while_subscribers_remain(directory):
    directory.subscribe("weather", A)
    directory.subscribe("weather", B)
    directory.unsubscribe("weather", A)
    assert directory.find("weather").subscribers() == [B]


def test_wildcard_entry_is_never_reclaimed(directory):
    directory.subscribe("#", C)
    assert directory.unsubscribe("#", C) is UnsubscribeResult.REMOVED
    assert directory.find("#") is directory.wildcard
    assert directory.wildcard.subscriber_count() == 0
    assert directory.topics() == ["#"]


def test_directory_full(directory):
    for i in range(9):
        assert directory.subscribe(f"topic{i}", A) is SubscribeResult.OK
    before = directory.snapshot()

    with pytest.raises(DirectoryFull) as exc:
        directory.subscribe("one-too-many", A)
    assert exc.value.topic == "one-too-many"
    assert isinstance(exc.value, CapacityExceeded)
    assert directory.snapshot() == before
    for i in range(9):
        assert directory.find(f"topic{i}").subscribers() == [A]


def test_existing_topic_still_accepts_subscribers_when_directory_full(directory):
    for i in range(9):
        directory.subscribe(f"topic{i}", A)
    assert directory.subscribe("topic3", B) is SubscribeResult.OK


def test_topic_full():
    directory = Directory(max_topics=3, max_subscribers=2)
    directory.subscribe("weather", A)
    directory.subscribe("weather", B)
    with pytest.raises(TopicFull) as exc:
        directory.subscribe("weather", C)
    assert exc.value.endpoint == C
    assert directory.find("weather").subscribers() == [A, B]


def test_failed_first_subscribe_leaves_no_entry_behind():
    directory = Directory(max_topics=3, max_subscribers=0)
    with pytest.raises(TopicFull):
        directory.subscribe("weather", A)
    assert directory.find("weather") is None
    assert directory.free_slots() == 2


def test_freed_subscriber_slot_is_reused():
    entry = TopicEntry("weather", capacity=2)
    entry.add_subscriber(A)
    entry.add_subscriber(B)
    assert entry.remove_subscriber(A) is UnsubscribeResult.REMOVED
    assert entry.add_subscriber(C) is SubscribeResult.OK
    assert entry.slots == [C, B]
    assert entry.has_subscriber(C)
    assert not entry.has_subscriber(A)


def test_route_combines_wildcard_and_exact_subscribers(directory):
    directory.subscribe("weather", A)
    directory.subscribe("weather", C)
    directory.subscribe("#", C)

    route = directory.route("weather")
    assert route.wildcard == [C]
    assert route.exact == [A, C]
    assert sorted(route.recipients) == sorted([A, C, C])


def test_route_for_unknown_topic_reaches_wildcard_only(directory):
    directory.subscribe("#", C)
    route = directory.route("news")
    assert route.exact is None
    assert directory.recipients("news") == [C]


def test_route_is_a_snapshot(directory):
    directory.subscribe("weather", A)
    recipients = directory.recipients("weather")
    directory.unsubscribe("weather", A)
    assert recipients == [A]


def test_concurrent_subscribes_create_one_entry():
    directory = Directory(max_topics=4, max_subscribers=64)
    endpoints = [Endpoint("10.0.1.%d" % i, 6000 + i) for i in range(32)]
    threads = [threading.Thread(target=directory.subscribe, args=("weather", ep)) for ep in endpoints]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert directory.topics() == ["#", "weather"]
    assert sorted(directory.find("weather").subscribers()) == sorted(endpoints)


def test_snapshot(directory):
    directory.subscribe("weather", A)
    assert directory.snapshot() == [
        {"slot": 0, "topic": "#", "subscribers": [], "capacity": 10},
        {"slot": 1, "topic": "weather", "subscribers": ["10.0.0.1:5001"], "capacity": 10},
    ]


def test_directory_needs_a_wildcard_slot():
    with pytest.raises(ValueError):
        Directory(max_topics=0)
