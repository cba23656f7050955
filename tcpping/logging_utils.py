import json, logging, sys, time
from collections import Counter
from pathlib import Path
from typing import Optional

# Attributes every LogRecord carries; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "taskName"}

class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts/level/name/msg plus the record's extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extras = {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}
        # default=str keeps non-JSON extras (enums, paths) readable
        payload.update(json.loads(json.dumps(extras, default=str)))
        return json.dumps(payload)

def get_logger(name: str = "tcpping") -> logging.Logger:
    # stdout carries the ping report, so structured records go to stderr
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.WARNING)
    h = logging.StreamHandler(sys.stderr)
    h.setFormatter(JsonFormatter())
    h._tcpping_console_handler = True  # type: ignore[attr-defined]
    logger.addHandler(h)
    logger.propagate = False
    return logger


def set_console_level(level: int, logger: Optional[logging.Logger] = None) -> None:
    """Adjust only the stderr handler, leaving any file handler untouched."""
    active_logger = logger or get_logger()
    for handler in active_logger.handlers:
        if getattr(handler, "_tcpping_console_handler", False):
            handler.setLevel(level)


def configure_file_logger(path: str | Path, logger: Optional[logging.Logger] = None) -> Path:
    """Attach a JSON file handler and return log path."""

    active_logger = logger or get_logger()

    # Drop any previous file handlers we attached to avoid duplicate writes during tests.
    for handler in list(active_logger.handlers):
        if getattr(handler, "_tcpping_file_handler", False):
            active_logger.removeHandler(handler)
            handler.close()

    path = Path(path)
    if path.parent != Path("."):
        path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(JsonFormatter())
    file_handler._tcpping_file_handler = True  # type: ignore[attr-defined]
    active_logger.addHandler(file_handler)

    return path


class Metrics:
    """Outcome tallies and the latest RTT, reported in the --json-out payload."""

    def __init__(self):
        self.outcomes = Counter()
        self.last_rtt_ms: Optional[float] = None

    def record(self, outcome: str, rtt_ms: Optional[float] = None) -> None:
        self.outcomes[outcome] += 1
        if rtt_ms is not None:
            self.last_rtt_ms = rtt_ms

    def snapshot(self) -> dict:
        return {"outcomes": dict(sorted(self.outcomes.items())), "last_rtt_ms": self.last_rtt_ms}

    def reset(self) -> None:
        self.outcomes.clear()
        self.last_rtt_ms = None

METRICS = Metrics()
