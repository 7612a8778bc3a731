import time
from dataclasses import dataclass, field
from typing import Dict

@dataclass
class Metrics:
    start_time: float = field(default_factory=time.time)

    datagrams_total: int = 0
    bytes_in_total: int = 0
    bytes_out_total: int = 0
    publishes_total: int = 0
    subscribes_total: int = 0
    unsubscribes_total: int = 0
    deliveries_total: int = 0
    send_failures_total: int = 0
    malformed_total: int = 0
    capacity_rejections_total: int = 0

    # per-method handling time
    request_count: Dict[str, int] = field(default_factory=dict)
    request_time_sum_ms: Dict[str, float] = field(default_factory=dict)
    request_time_max_ms: Dict[str, float] = field(default_factory=dict)

    def observe_request(self, name: str, ms: float):
        self.request_count[name] = self.request_count.get(name, 0) + 1
        self.request_time_sum_ms[name] = self.request_time_sum_ms.get(name, 0.0) + ms
        self.request_time_max_ms[name] = max(self.request_time_max_ms.get(name, 0.0), ms)

    def snapshot(self):
        up = time.time() - self.start_time
        avg_ms = {}
        for k, c in self.request_count.items():
            avg_ms[k] = (self.request_time_sum_ms.get(k, 0.0) / c) if c else 0.0

        return {
            "uptime_sec": round(up, 2),
            "datagrams_total": self.datagrams_total,
            "bytes_in_total": self.bytes_in_total,
            "bytes_out_total": self.bytes_out_total,
            "publishes_total": self.publishes_total,
            "subscribes_total": self.subscribes_total,
            "unsubscribes_total": self.unsubscribes_total,
            "deliveries_total": self.deliveries_total,
            "send_failures_total": self.send_failures_total,
            "malformed_total": self.malformed_total,
            "capacity_rejections_total": self.capacity_rejections_total,
            "request_count": dict(self.request_count),
            "request_avg_ms": {k: round(v, 3) for k, v in avg_ms.items()},
            "request_max_ms": {k: round(v, 3) for k, v in self.request_time_max_ms.items()},
        }

METRICS = Metrics()
