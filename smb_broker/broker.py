import asyncio
import time
from typing import Callable, Iterable, Optional

from .config import (
    BROKER_HOST, BROKER_PORT, HTTP_ENABLED, HTTP_HOST, HTTP_PORT,
    MAX_TOPICS, MAX_SUBSCRIBERS, TOPIC_LENGTH, MAX_DATAGRAM_SIZE, LOG_PACKET_TIMES,
)
from .codec import decode_request, MalformedRequest, Publish, Subscribe, Unsubscribe
from .state import (
    Directory, Endpoint, CapacityExceeded,
    SubscribeResult, UnsubscribeResult,
)
from .metrics import METRICS, Metrics
from .http_api import make_app

SendFn = Callable[[bytes, Endpoint], None]

def _log_packet(name: str, peer, ms: float):
    if LOG_PACKET_TIMES:
        print(f"[{name}] from={peer} cycle_ms={ms:.3f}")

def deliver(recipients: Iterable[Endpoint], payload: bytes, send: SendFn, metrics: Metrics = METRICS) -> int:
    """Send payload once to every recipient; returns how many sends succeeded.

    A failing recipient is logged and skipped. Nothing is retried.
    """
    delivered = 0
    for ep in recipients:
        try:
            send(payload, ep)
        except Exception as e:
            metrics.send_failures_total += 1
            print(f"[!] Failed to forward message to {ep}: {e}")
            continue
        delivered += 1
        metrics.deliveries_total += 1
        metrics.bytes_out_total += len(payload)
    return delivered

def handle_publish(directory: Directory, request: Publish, send: SendFn, metrics: Metrics = METRICS) -> int:
    metrics.publishes_total += 1
    route = directory.route(request.topic)
    if route.exact is None:
        print(f"[=] Topic {request.topic} has no subscribers, message will be discarded")
    # wildcard subscribers get every message, exact subscribers or not
    return deliver(route.recipients, request.payload, send, metrics)

def handle_subscribe(directory: Directory, request: Subscribe, peer: Endpoint,
                     metrics: Metrics = METRICS) -> Optional[SubscribeResult]:
    metrics.subscribes_total += 1
    try:
        result = directory.subscribe(request.topic, peer)
    except CapacityExceeded as e:
        metrics.capacity_rejections_total += 1
        print(f"[!] SUBSCRIBE from {peer} rejected: {e}")
        return None

    if result is SubscribeResult.ALREADY_SUBSCRIBED:
        print(f"[=] Subscriber {peer} is already subscribed to topic {request.topic}")
    else:
        print(f"[+] Subscriber {peer} registered for topic {request.topic}")
    return result

def handle_unsubscribe(directory: Directory, request: Unsubscribe, peer: Endpoint,
                       metrics: Metrics = METRICS) -> UnsubscribeResult:
    metrics.unsubscribes_total += 1
    result = directory.unsubscribe(request.topic, peer)
    if result is UnsubscribeResult.NOT_SUBSCRIBED:
        print(f"[=] Subscriber {peer} was not subscribed to topic {request.topic}")
    else:
        print(f"[-] Subscriber {peer} removed from topic {request.topic}")
    return result


class BrokerProtocol(asyncio.DatagramProtocol):
    """Receive, parse, validate, route. One datagram at a time, never a reply."""

    def __init__(self, directory: Directory, metrics: Optional[Metrics] = None,
                 max_topic_length: int = TOPIC_LENGTH, max_size: int = MAX_DATAGRAM_SIZE):
        self.directory = directory
        self.metrics = metrics if metrics is not None else METRICS
        self.max_topic_length = max_topic_length
        self.max_size = max_size
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def connection_lost(self, exc):
        if exc is not None:
            print(f"[!] Broker socket lost: {exc}")
        self.transport = None

    def error_received(self, exc):
        # e.g. ICMP port unreachable from a subscriber that went away
        print(f"[!] Socket error: {exc}")

    def send(self, payload: bytes, endpoint: Endpoint):
        if self.transport is None:
            raise ConnectionError("broker socket is closed")
        self.transport.sendto(payload, (endpoint.host, endpoint.port))

    def datagram_received(self, data: bytes, addr):
        t0 = time.perf_counter()
        peer = Endpoint.from_addr(addr)

        self.metrics.datagrams_total += 1
        self.metrics.bytes_in_total += len(data)
        print(f"[>] Received from {peer}: {data!r}")

        try:
            request = decode_request(data, self.max_topic_length, self.max_size)
        except MalformedRequest as e:
            self.metrics.malformed_total += 1
            print(f"[!] Dropped request from {peer}: {e}")
            return

        name = type(request).__name__.upper()
        try:
            self.handle_request(request, peer)
        except Exception as e:
            print(f"[!] Error handling {name} from {peer}: {e}")

        ms = (time.perf_counter() - t0) * 1000
        self.metrics.observe_request(name, ms)
        _log_packet(name, peer, ms)

    def handle_request(self, request, peer: Endpoint):
        if isinstance(request, Publish):
            return handle_publish(self.directory, request, self.send, self.metrics)
        if isinstance(request, Subscribe):
            return handle_subscribe(self.directory, request, peer, self.metrics)
        if isinstance(request, Unsubscribe):
            return handle_unsubscribe(self.directory, request, peer, self.metrics)
        raise TypeError(f"unknown request {request!r}")


async def start_broker(directory: Directory, host: str = BROKER_HOST, port: int = BROKER_PORT,
                       metrics: Optional[Metrics] = None):
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: BrokerProtocol(directory, metrics),
        local_addr=(host, port),
    )
    print(f"Broker listening on {transport.get_extra_info('sockname')}")
    return transport, protocol

async def serve_broker(directory: Directory, host: str = BROKER_HOST, port: int = BROKER_PORT):
    transport, _ = await start_broker(directory, host, port)
    try:
        await asyncio.Future()
    finally:
        transport.close()

async def start_http(directory: Directory, host: str = HTTP_HOST, port: int = HTTP_PORT):
    from aiohttp import web
    app = make_app(directory)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    print(f"HTTP stats listening on http://{host}:{port}/stats, /metrics and /topics")
    return runner

async def run_all(host: str = BROKER_HOST, port: int = BROKER_PORT, http: bool = HTTP_ENABLED):
    directory = Directory(MAX_TOPICS, MAX_SUBSCRIBERS)
    if http:
        runner = await start_http(directory)
        try:
            await serve_broker(directory, host, port)
        finally:
            await runner.cleanup()
    else:
        await serve_broker(directory, host, port)
