import argparse
import asyncio
import signal
import sys

from .config import BROKER_HOST, BROKER_PORT, HTTP_ENABLED
from .codec import MalformedRequest
from .broker import run_all
from .client import publish, publish_periodic, subscribe


def build_parser():
    parser = argparse.ArgumentParser(prog="smb_broker", description="Simple UDP publish/subscribe broker")
    parser.add_argument("--port", type=int, default=BROKER_PORT, help="broker UDP port")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("broker", help="run the broker")
    p.add_argument("--host", default=BROKER_HOST)
    p.add_argument("--no-http", action="store_true", help="do not start the HTTP stats API")

    p = sub.add_parser("publish", help="publish one message")
    p.add_argument("broker", help="host name or IP address of the broker")
    p.add_argument("topic")
    p.add_argument("message")

    p = sub.add_parser("publish-periodic", help="publish the Unix timestamp periodically")
    p.add_argument("broker")
    p.add_argument("topic")
    p.add_argument("--interval", type=float, default=5)

    p = sub.add_parser("subscribe", help="subscribe and print forwarded messages")
    p.add_argument("broker")
    p.add_argument("topic", help="topic name, or # for every topic")

    return parser


def _command(args):
    if args.command == "broker":
        return run_all(args.host, args.port, HTTP_ENABLED and not args.no_http)
    if args.command == "publish":
        return publish(args.broker, args.topic, args.message, args.port)
    if args.command == "publish-periodic":
        return publish_periodic(args.broker, args.topic, args.interval, port=args.port)
    return subscribe(args.broker, args.topic, port=args.port)


async def _run(coro):
    # SIGTERM cancels like Ctrl+C does, so subscribers still send UNSUB
    task = asyncio.current_task()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, task.cancel)
    except NotImplementedError:
        pass  # no signal handlers on Windows event loops
    await coro


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(_run(_command(args)))
    except MalformedRequest as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
