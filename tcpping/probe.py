"""
Probe engine - one create/connect/close cycle against the target.

Each call opens a brand-new socket, applies best-effort send/receive
deadlines, times the connect with a monotonic clock and classifies the
outcome. Nothing is retried here: a failed attempt pauses for the fixed
back-off and returns, a successful one sleeps until the next whole pacing
interval measured from its own start. Cancellation is never observed inside
an attempt.
"""

import errno
import logging
import socket
import struct
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from tcpping.config import CONFIG
from tcpping.logging_utils import METRICS
from tcpping.resolver import TargetEndpoint

logger = logging.getLogger("tcpping.probe")


class Outcome(Enum):
    SUCCESS = "success"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    REFUSED = "refused"
    HOST_UNREACHABLE = "host_unreachable"
    TIMEOUT = "timeout"
    OTHER_CONNECT_ERROR = "other_connect_error"
    ENDPOINT_CREATION_FAILED = "endpoint_creation_failed"


_ERRNO_OUTCOMES = {
    errno.EMFILE: Outcome.RESOURCE_EXHAUSTED,
    errno.ENFILE: Outcome.RESOURCE_EXHAUSTED,
    errno.ECONNREFUSED: Outcome.REFUSED,
    errno.EHOSTUNREACH: Outcome.HOST_UNREACHABLE,
    errno.ENETUNREACH: Outcome.HOST_UNREACHABLE,
    # SO_SNDTIMEO expiring during a blocking connect surfaces as EINPROGRESS on Linux
    errno.EINPROGRESS: Outcome.TIMEOUT,
    errno.ETIMEDOUT: Outcome.TIMEOUT,
    errno.EAGAIN: Outcome.TIMEOUT,
    errno.EWOULDBLOCK: Outcome.TIMEOUT,
}


def classify_error(exc: OSError) -> Outcome:
    """Map a failed connect() to its outcome class."""
    outcome = _ERRNO_OUTCOMES.get(exc.errno)
    if outcome is not None:
        return outcome
    if isinstance(exc, TimeoutError):
        return Outcome.TIMEOUT
    return Outcome.OTHER_CONNECT_ERROR


def pacing_delay_us(elapsed_us: int, interval_us: int = 1_000_000) -> int:
    """Microseconds to sleep so the attempt ends on the next interval boundary.

    An attempt that took 0.2 s sleeps 0.8 s; one that took 1.3 s sleeps 0.7 s.
    """
    whole = elapsed_us // interval_us
    return (whole + 1) * interval_us - elapsed_us


@dataclass
class ProbeAttempt:
    seq: int
    outcome: Outcome
    begin_ns: Optional[int] = None
    end_ns: Optional[int] = None
    elapsed_us: Optional[int] = None
    error_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def rtt_ms(self) -> Optional[float]:
        if self.elapsed_us is None:
            return None
        return self.elapsed_us / 1000.0


class ProbeEngine:
    """Performs exactly one connection attempt per ``attempt()`` call."""

    def __init__(
        self,
        cfg: Optional[Dict[str, Any]] = None,
        *,
        socket_factory: Callable[..., socket.socket] = socket.socket,
        clock_ns: Callable[[], int] = time.monotonic_ns,
        sleep: Callable[[float], None] = time.sleep,
        out=None,
        err=None,
    ):
        self.cfg = cfg if cfg is not None else CONFIG
        self._socket_factory = socket_factory
        self._clock_ns = clock_ns
        self._sleep = sleep
        self._out = out
        self._err = err

    def _print(self, line: str, *, error: bool = False) -> None:
        if error:
            stream = self._err if self._err is not None else sys.stderr
        else:
            stream = self._out if self._out is not None else sys.stdout
        print(line, file=stream, flush=True)

    def _apply_deadlines(self, sock: socket.socket) -> None:
        timeout = float(self.cfg["CONNECT_TIMEOUT_S"])
        # connect() polls against this deadline, and resumes with the time
        # left when a signal interrupts it
        sock.settimeout(timeout)
        if sys.platform.startswith("win"):
            # DWORD milliseconds
            timeval = struct.pack("L", int(timeout * 1000))
        else:
            secs = int(timeout)
            usecs = int(round((timeout - secs) * 1_000_000))
            timeval = struct.pack("ll", secs, usecs)
        for opt, name in ((socket.SO_RCVTIMEO, "SO_RCVTIMEO"), (socket.SO_SNDTIMEO, "SO_SNDTIMEO")):
            try:
                sock.setsockopt(socket.SOL_SOCKET, opt, timeval)
            except OSError as exc:
                # degraded mode: connect falls back to the platform timeout
                self._print(f"Failed setsockopt {name}, error {exc.errno}", error=True)
                logger.warning("deadline configuration failed", extra={"option": name, "errno": exc.errno})

    def _report_failure(self, endpoint: TargetEndpoint, seq: int, outcome: Outcome, code: Optional[int]) -> None:
        if outcome is Outcome.RESOURCE_EXHAUSTED:
            line = f"Error ({code}): too many files opened while connecting {endpoint}, seq={seq}"
        elif outcome is Outcome.REFUSED:
            line = f"Connection refused (error {code}) {endpoint}, seq={seq}"
        elif outcome is Outcome.HOST_UNREACHABLE:
            line = f" ....  Host unreachable (error {code}) while connecting {endpoint}, seq={seq}"
        elif outcome is Outcome.TIMEOUT:
            line = f" ....  Timeout (error {code}) while connecting {endpoint}, seq={seq}"
        else:
            line = f"Error ({code}) while connecting {endpoint}, seq={seq}"
        self._print(line, error=True)

    def attempt(self, endpoint: TargetEndpoint, seq: int) -> ProbeAttempt:
        """Run one probe against endpoint, labelled with sequence number seq."""
        try:
            sock = self._socket_factory(endpoint.family, socket.SOCK_STREAM)
        except OSError as exc:
            # no pacing here; the controller decides how soon to retry
            self._print(f"Failed to create socket, error {exc.errno}", error=True)
            METRICS.record(Outcome.ENDPOINT_CREATION_FAILED.value)
            logger.info("probe", extra={"seq": seq, "outcome": Outcome.ENDPOINT_CREATION_FAILED.value,
                                        "errno": exc.errno})
            return ProbeAttempt(seq=seq, outcome=Outcome.ENDPOINT_CREATION_FAILED, error_code=exc.errno)

        failure: Optional[OSError] = None
        end_ns = None
        with sock:
            self._apply_deadlines(sock)
            begin_ns = self._clock_ns()
            try:
                sock.connect(endpoint.sockaddr)
            except OSError as exc:
                failure = exc
            else:
                end_ns = self._clock_ns()

        if failure is not None:
            outcome = classify_error(failure)
            code = failure.errno
            if code is None and outcome is Outcome.TIMEOUT:
                # settimeout() expiry carries no errno
                code = errno.ETIMEDOUT
            self._report_failure(endpoint, seq, outcome, code)
            METRICS.record(outcome.value)
            logger.info("probe", extra={"seq": seq, "outcome": outcome.value, "errno": code})
            self._sleep(float(self.cfg["FAILURE_BACKOFF_S"]))
            return ProbeAttempt(seq=seq, outcome=outcome, begin_ns=begin_ns, error_code=code)

        elapsed_us = (end_ns - begin_ns) // 1000
        result = ProbeAttempt(seq=seq, outcome=Outcome.SUCCESS, begin_ns=begin_ns,
                              end_ns=end_ns, elapsed_us=elapsed_us)
        self._print(f"  OK   Connected to {endpoint}, seq={seq}, time={result.rtt_ms:6.3f} ms")
        METRICS.record(Outcome.SUCCESS.value, rtt_ms=result.rtt_ms)
        logger.info("probe", extra={"seq": seq, "outcome": Outcome.SUCCESS.value, "rtt_ms": result.rtt_ms})

        # boundary is measured from begin_ns, so close/print/log time is absorbed
        delay_us = pacing_delay_us(elapsed_us, int(self.cfg["PACING_INTERVAL_US"]))
        target_ns = begin_ns + (elapsed_us + delay_us) * 1000
        remaining_ns = target_ns - self._clock_ns()
        self._sleep(max(0, remaining_ns) / 1_000_000_000)
        return result
