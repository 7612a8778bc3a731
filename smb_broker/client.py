import asyncio
import time
from typing import Callable, Optional, Union

from .config import BROKER_PORT
from .codec import build_publish, build_subscribe, build_unsubscribe

OnMessage = Callable[[bytes], None]

def print_message(data: bytes):
    print(f"Received message:\n{data.decode('utf-8', errors='replace')}")


class SubscriberProtocol(asyncio.DatagramProtocol):
    def __init__(self, on_message: OnMessage):
        self.on_message = on_message
        self.closed = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr):
        self.on_message(data)

    def error_received(self, exc):
        print(f"[!] Socket error: {exc}")

    def connection_lost(self, exc):
        if not self.closed.done():
            self.closed.set_result(exc)


async def _open(broker: str, port: int, protocol_factory=asyncio.DatagramProtocol):
    loop = asyncio.get_running_loop()
    # asyncio resolves the broker host name for us
    return await loop.create_datagram_endpoint(protocol_factory, remote_addr=(broker, port))

async def publish(broker: str, topic: str, payload: Union[str, bytes], port: int = BROKER_PORT):
    request = build_publish(topic, payload)
    transport, _ = await _open(broker, port)
    try:
        print(f"Publishing message: {request!r}")
        transport.sendto(request)
    finally:
        transport.close()

async def publish_periodic(broker: str, topic: str, interval: float = 5, count: Optional[int] = None,
                           port: int = BROKER_PORT):
    """Publish the current Unix timestamp every ``interval`` seconds."""
    build_publish(topic, "")  # reject a bad topic before opening the socket
    transport, _ = await _open(broker, port)
    sent = 0
    try:
        while count is None or sent < count:
            request = build_publish(topic, str(int(time.time())))
            print(f"Publishing message: {request!r}")
            transport.sendto(request)
            sent += 1
            if count is None or sent < count:
                await asyncio.sleep(interval)
    finally:
        transport.close()
    return sent

async def subscribe(broker: str, topic: str, on_message: Optional[OnMessage] = None,
                    port: int = BROKER_PORT):
    """Subscribe and hand every forwarded payload to ``on_message``.

    Runs until cancelled; on the way out an UNSUB for the same topic is sent
    so the broker can reclaim the slot.
    """
    request = build_subscribe(topic)
    transport, protocol = await _open(broker, port, lambda: SubscriberProtocol(on_message or print_message))
    try:
        print(f"Subscribing to topic: {topic}")
        transport.sendto(request)
        await protocol.closed
    finally:
        if not transport.is_closing():
            print(f"Unsubscribing from topic: {topic}")
            transport.sendto(build_unsubscribe(topic))
        transport.close()
