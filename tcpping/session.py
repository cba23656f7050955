"""
Session controller - drives the probe loop until cancelled.

State machine: RUNNING -> STOPPING -> TERMINATED. The cancellation token is
only consulted between attempts, so an in-flight probe (connect, back-off or
pacing sleep) always runs to completion before the loop stops.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from tcpping.config import CONFIG
from tcpping.probe import Outcome, ProbeEngine
from tcpping.resolver import TargetEndpoint
from tcpping.stats import SessionAggregator, SessionSummary

logger = logging.getLogger("tcpping.session")


class CancellationToken:
    """Cooperative stop flag, safe to set from a signal handler.

    cancel() only assigns an attribute and never takes a lock.
    """

    _POLL_S = 0.05

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True early if cancelled."""
        deadline = time.monotonic() + timeout
        while not self._cancelled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(remaining, self._POLL_S))
        return self._cancelled


class SessionState(Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    TERMINATED = "terminated"


@dataclass
class SessionClock:
    start_ns: int = 0
    end_ns: Optional[int] = None

    def elapsed_ms(self) -> int:
        end = self.end_ns if self.end_ns is not None else time.monotonic_ns()
        return (end - self.start_ns) // 1_000_000


class SessionController:
    def __init__(
        self,
        endpoint: TargetEndpoint,
        *,
        engine: Optional[ProbeEngine] = None,
        token: Optional[CancellationToken] = None,
        cfg: Optional[Dict[str, Any]] = None,
        clock_ns: Callable[[], int] = time.monotonic_ns,
    ):
        self.endpoint = endpoint
        self.cfg = cfg if cfg is not None else CONFIG
        self.engine = engine if engine is not None else ProbeEngine(self.cfg)
        self.token = token if token is not None else CancellationToken()
        self.aggregator = SessionAggregator()
        self.clock = SessionClock()
        self.state = SessionState.RUNNING
        self._clock_ns = clock_ns
        self._seq = 0

    def _should_stop(self) -> bool:
        if self.token.cancelled:
            return True
        limit = int(self.cfg.get("COUNT", 0) or 0)
        return limit > 0 and self._seq >= limit

    def run(self) -> SessionSummary:
        """Probe until cancelled (or COUNT attempts), then return the summary."""
        self.clock.start_ns = self._clock_ns()
        self.state = SessionState.RUNNING
        logger.info("session started", extra={"target": str(self.endpoint)})

        while not self._should_stop():
            self._seq += 1
            attempt = self.engine.attempt(self.endpoint, self._seq)
            self.aggregator.record(attempt)

            if attempt.outcome is Outcome.ENDPOINT_CREATION_FAILED:
                backoff = float(self.cfg["ENDPOINT_RETRY_BACKOFF_S"])
                if backoff > 0 and not self._should_stop():
                    self.token.wait(backoff)

        self.state = SessionState.STOPPING
        return self._terminate()

    def _terminate(self) -> SessionSummary:
        self.clock.end_ns = self._clock_ns()
        summary = self.aggregator.summarize(
            self.endpoint.hostname or self.endpoint.address,
            self.clock.elapsed_ms(),
        )
        self.state = SessionState.TERMINATED
        logger.info("session finished", extra=summary.to_dict())
        return summary
