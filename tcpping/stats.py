"""
Session aggregator - running latency statistics for one ping session.

Accumulates min/max/sum/sum-of-squares in integer microseconds with plain
running updates, the same way conventional ping tools do, and derives
avg/mdev/loss only when the summary is requested.
"""

import math
import sys
from dataclasses import dataclass, field, asdict
from typing import Optional

from tcpping.probe import ProbeAttempt


@dataclass
class SessionStats:
    transmitted: int = 0
    succeeded: int = 0
    min_us: int = sys.maxsize
    max_us: int = 0
    sum_us: int = 0
    sum_sq_us: int = 0


@dataclass
class SessionSummary:
    hostname: str
    transmitted: int
    received: int
    loss_percent: int
    duration_ms: int
    min_ms: Optional[float] = None
    avg_ms: Optional[float] = None
    max_ms: Optional[float] = None
    mdev_ms: Optional[float] = None

    @property
    def has_latency(self) -> bool:
        return self.received > 0

    def to_dict(self) -> dict:
        return asdict(self)

    def format(self) -> str:
        lines = [
            f"--- {self.hostname} tcpping statistics ---",
            f"{self.transmitted} connections transmitted, {self.received} received, "
            f"{self.loss_percent}% loss, time {self.duration_ms}ms",
        ]
        if self.has_latency:
            lines.append(
                f"rtt min/avg/max/mdev = {self.min_ms:.3f}/{self.avg_ms:.3f}/"
                f"{self.max_ms:.3f}/{self.mdev_ms:.3f} ms"
            )
        return "\n".join(lines)


def loss_percent(transmitted: int, received: int) -> int:
    """Integer loss, truncating like ping does (1 of 3 lost reports 34%)."""
    if transmitted <= 0:
        return 100
    return 100 - (100 * received) // transmitted


@dataclass
class SessionAggregator:
    stats: SessionStats = field(default_factory=SessionStats)

    def record(self, attempt: ProbeAttempt) -> None:
        stats = self.stats
        stats.transmitted += 1
        if not attempt.succeeded:
            return
        elapsed = attempt.elapsed_us
        stats.succeeded += 1
        if elapsed < stats.min_us:
            stats.min_us = elapsed
        if elapsed > stats.max_us:
            stats.max_us = elapsed
        stats.sum_us += elapsed
        stats.sum_sq_us += elapsed * elapsed

    def summarize(self, hostname: str, duration_ms: int) -> SessionSummary:
        stats = self.stats
        summary = SessionSummary(
            hostname=hostname,
            transmitted=stats.transmitted,
            received=stats.succeeded,
            loss_percent=loss_percent(stats.transmitted, stats.succeeded),
            duration_ms=duration_ms,
        )
        if stats.succeeded == 0:
            return summary

        n = stats.succeeded
        avg = stats.sum_us / n
        # population variance; truncation can push it slightly below zero
        variance = stats.sum_sq_us / n - avg * avg
        mdev = math.sqrt(max(variance, 0.0))

        summary.min_ms = stats.min_us / 1000.0
        summary.avg_ms = avg / 1000.0
        summary.max_ms = stats.max_us / 1000.0
        summary.mdev_ms = mdev / 1000.0
        return summary
