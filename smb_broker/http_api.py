from aiohttp import web
from .metrics import METRICS
import json
import asyncio

DIRECTORY_KEY = web.AppKey("directory", object)
METRICS_KEY = web.AppKey("metrics", object)

async def stats(request):
    return web.json_response(request.app[METRICS_KEY].snapshot())


async def metrics_prom(request):
    snap = request.app[METRICS_KEY].snapshot()
    directory = request.app[DIRECTORY_KEY]
    lines = []
    lines.append(f"broker_uptime_sec {snap['uptime_sec']}")
    for name in (
        "datagrams_total", "bytes_in_total", "bytes_out_total",
        "publishes_total", "subscribes_total", "unsubscribes_total",
        "deliveries_total", "send_failures_total",
        "malformed_total", "capacity_rejections_total",
    ):
        lines.append(f"broker_{name} {snap[name]}")
    lines.append(f"broker_topic_slots_free {directory.free_slots()}")
    for k, v in snap["request_count"].items():
        lines.append(f'broker_request_count{{method="{k}"}} {v}')
    for k, v in snap["request_avg_ms"].items():
        lines.append(f'broker_request_avg_ms{{method="{k}"}} {v}')
    for k, v in snap["request_max_ms"].items():
        lines.append(f'broker_request_max_ms{{method="{k}"}} {v}')
    return web.Response(text="\n".join(lines) + "\n", content_type="text/plain")


async def topics(request):
    directory = request.app[DIRECTORY_KEY]
    return web.json_response({
        "capacity": directory.max_topics,
        "free_slots": directory.free_slots(),
        "topics": directory.snapshot(),
    })


# ---------------- Live events (SSE) ----------------
async def events(request):
    """
    Server-Sent Events endpoint.
    Operator tools connect to /events and receive JSON stats every second.
    """
    resp = web.StreamResponse(
        status=200,
        reason="OK",
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
    await resp.prepare(request)

    try:
        while True:
            data = json.dumps(request.app[METRICS_KEY].snapshot())
            await resp.write(f"data: {data}\n\n".encode("utf-8"))
            await asyncio.sleep(1)

    except (ConnectionResetError, BrokenPipeError):
        # operator disconnected
        pass

    return resp


def make_app(directory, metrics=None):
    app = web.Application()
    app[DIRECTORY_KEY] = directory
    app[METRICS_KEY] = metrics if metrics is not None else METRICS

    app.router.add_get("/stats", stats)
    app.router.add_get("/metrics", metrics_prom)
    app.router.add_get("/topics", topics)
    app.router.add_get("/events", events)

    return app
