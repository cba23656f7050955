import errno
import io
import math
import socket

import pytest

from tcpping.logging_utils import METRICS
from tcpping.probe import Outcome, ProbeEngine, classify_error, pacing_delay_us
from tcpping.resolver import TargetEndpoint

from fakes import ClockedStream, FakeClock, FakeSocket, SocketFactory, refused

ENDPOINT = TargetEndpoint(address="192.0.2.10", port=22, hostname="example")


def make_engine(*results):
    clock = FakeClock()
    factory = SocketFactory(*results)
    out, err = io.StringIO(), io.StringIO()
    engine = ProbeEngine(socket_factory=factory, clock_ns=clock, sleep=clock.sleep, out=out, err=err)
    return engine, clock, factory, out, err


def setup_function():
    METRICS.reset()


def test_success_paces_to_next_second():
    engine, clock, factory, out, err = make_engine(None)
    sock = FakeSocket(on_connect=lambda: clock.advance_us(12_345))
    factory.results = [sock]
    begin = clock()

    attempt = engine.attempt(ENDPOINT, 1)

    assert attempt.outcome is Outcome.SUCCESS
    assert attempt.seq == 1
    assert attempt.elapsed_us == 12_345
    assert attempt.rtt_ms == pytest.approx(12.345)
    assert sock.closed
    assert sock.connected_to == ("192.0.2.10", 22)
    assert clock.sleeps == [pytest.approx(0.987655)]
    assert clock() - begin == 1_000_000_000
    assert out.getvalue() == "  OK   Connected to 192.0.2.10:22, seq=1, time=12.345 ms\n"
    assert err.getvalue() == ""
    assert METRICS.outcomes["success"] == 1
    assert METRICS.last_rtt_ms == pytest.approx(12.345)


@pytest.mark.parametrize("connect_us", [1, 250_000, 999_999, 1_000_001, 1_700_000])
def test_pacing_law(connect_us):
    engine, clock, factory, _, _ = make_engine(None)
    factory.results = [FakeSocket(on_connect=lambda: clock.advance_us(connect_us))]
    begin = clock()

    engine.attempt(ENDPOINT, 1)

    span_s = (clock() - begin) / 1e9
    assert span_s == pytest.approx(math.ceil(connect_us / 1_000_000), abs=0.01)


def test_pacing_delay_us():
    assert pacing_delay_us(0) == 1_000_000
    assert pacing_delay_us(200_000) == 800_000
    assert pacing_delay_us(1_300_000) == 700_000
    assert pacing_delay_us(150, interval_us=100) == 50


def test_deadlines_applied_to_both_directions():
    engine, clock, factory, _, _ = make_engine(None)
    sock = FakeSocket()
    factory.results = [sock]

    engine.attempt(ENDPOINT, 1)

    assert sock.timeout == 1.0
    opts = [opt for _, opt, _ in sock.options]
    assert opts == [socket.SO_RCVTIMEO, socket.SO_SNDTIMEO]


def test_refused_backs_off_one_second():
    engine, clock, factory, out, err = make_engine(FakeSocket(connect_error=refused()))

    attempt = engine.attempt(ENDPOINT, 7)

    assert attempt.outcome is Outcome.REFUSED
    assert attempt.elapsed_us is None
    assert attempt.rtt_ms is None
    assert attempt.error_code == errno.ECONNREFUSED
    assert factory.created[0].closed
    assert clock.sleeps == [1.0]
    assert out.getvalue() == ""
    assert err.getvalue() == f"Connection refused (error {errno.ECONNREFUSED}) 192.0.2.10:22, seq=7\n"
    assert METRICS.outcomes["refused"] == 1


@pytest.mark.parametrize("exc, outcome, fragment", [
    (OSError(errno.EHOSTUNREACH, "unreachable"), Outcome.HOST_UNREACHABLE, "Host unreachable"),
    (BlockingIOError(errno.EINPROGRESS, "in progress"), Outcome.TIMEOUT, "Timeout"),
    (OSError(errno.EMFILE, "too many"), Outcome.RESOURCE_EXHAUSTED, "too many files opened"),
    (OSError(errno.EACCES, "denied"), Outcome.OTHER_CONNECT_ERROR, f"Error ({errno.EACCES}) while connecting"),
])
def test_failure_lines_are_distinct(exc, outcome, fragment):
    engine, clock, factory, out, err = make_engine(FakeSocket(connect_error=exc))

    attempt = engine.attempt(ENDPOINT, 3)

    assert attempt.outcome is outcome
    line = err.getvalue()
    assert fragment in line
    assert "192.0.2.10:22" in line
    assert "seq=3" in line
    assert clock.sleeps == [1.0]


def test_classify_error():
    assert classify_error(OSError(errno.ENFILE, "x")) is Outcome.RESOURCE_EXHAUSTED
    assert classify_error(OSError(errno.ENETUNREACH, "x")) is Outcome.HOST_UNREACHABLE
    assert classify_error(OSError(errno.ETIMEDOUT, "x")) is Outcome.TIMEOUT
    assert classify_error(socket.timeout("timed out")) is Outcome.TIMEOUT
    assert classify_error(OSError("no errno")) is Outcome.OTHER_CONNECT_ERROR


def test_endpoint_creation_failure_returns_without_sleep():
    engine, clock, factory, out, err = make_engine(OSError(errno.EMFILE, "Too many open files"))

    attempt = engine.attempt(ENDPOINT, 2)

    assert attempt.outcome is Outcome.ENDPOINT_CREATION_FAILED
    assert attempt.seq == 2
    assert attempt.begin_ns is None
    assert clock.sleeps == []
    assert err.getvalue() == f"Failed to create socket, error {errno.EMFILE}\n"
    assert "seq=" not in err.getvalue()


def test_deadline_failure_is_reported_but_connect_proceeds():
    sock = FakeSocket(setsockopt_error=OSError(errno.ENOPROTOOPT, "no option"))
    engine, clock, factory, out, err = make_engine(sock)

    attempt = engine.attempt(ENDPOINT, 1)

    assert attempt.outcome is Outcome.SUCCESS
    assert sock.connected_to is not None
    lines = err.getvalue().splitlines()
    assert lines == [
        f"Failed setsockopt SO_RCVTIMEO, error {errno.ENOPROTOOPT}",
        f"Failed setsockopt SO_SNDTIMEO, error {errno.ENOPROTOOPT}",
    ]


def test_ipv6_endpoint_uses_bracketed_address():
    engine, clock, factory, out, err = make_engine(FakeSocket())
    endpoint = TargetEndpoint(address="2001:db8::1", port=443, family=socket.AF_INET6)

    engine.attempt(endpoint, 1)

    assert factory.created[0].connected_to == ("2001:db8::1", 443, 0, 0)
    assert "Connected to [2001:db8::1]:443, seq=1" in out.getvalue()


def test_pacing_absorbs_time_spent_reporting():
    clock = FakeClock()
    sock = FakeSocket(on_connect=lambda: clock.advance_us(40_000))
    # every write to stdout costs 5 ms
    out = ClockedStream(clock, 5_000)
    engine = ProbeEngine(socket_factory=SocketFactory(sock), clock_ns=clock, sleep=clock.sleep,
                         out=out, err=io.StringIO())
    begin = clock()

    engine.attempt(ENDPOINT, 1)

    assert "seq=1" in out.text
    assert clock() - begin == pytest.approx(1_000_000_000, abs=1_000)


def test_pacing_never_sleeps_negative():
    clock = FakeClock()
    sock = FakeSocket(on_connect=lambda: clock.advance_us(900_000))
    out = ClockedStream(clock, 200_000)
    engine = ProbeEngine(socket_factory=SocketFactory(sock), clock_ns=clock, sleep=clock.sleep,
                         out=out, err=io.StringIO())

    engine.attempt(ENDPOINT, 1)

    assert clock.sleeps == [0.0]


def test_socket_timeout_reports_etimedout():
    engine, clock, factory, out, err = make_engine(FakeSocket(connect_error=socket.timeout("timed out")))

    attempt = engine.attempt(ENDPOINT, 4)

    assert attempt.outcome is Outcome.TIMEOUT
    assert attempt.error_code == errno.ETIMEDOUT
    assert err.getvalue() == f" ....  Timeout (error {errno.ETIMEDOUT}) while connecting 192.0.2.10:22, seq=4\n"
