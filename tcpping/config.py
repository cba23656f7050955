"""
Core configuration constants for tcpping.

Single source of truth for the probe deadlines, back-off intervals and pacing
cadence. Values may be overridden from the command line only; nothing here
reads the environment.
"""

from typing import Dict, Any, Mapping, Optional
from tcpping.exceptions import ConfigError


# Default configuration - all required keys with correct types
CONFIG = {
    # Used when no port is given on the command line (mostly remote servers)
    "DEFAULT_PORT": 22,

    # Send/receive deadline applied to every fresh socket (seconds).
    # Best-effort: a failed setsockopt degrades to the platform default.
    "CONNECT_TIMEOUT_S": 1.0,

    # Fixed pause after any classified connect failure (not exponential).
    "FAILURE_BACKOFF_S": 1.0,

    # Minimum pause before retrying after the socket itself could not be
    # created (e.g. file-descriptor exhaustion). 0 restores a tight retry loop.
    "ENDPOINT_RETRY_BACKOFF_S": 0.1,

    # Successful attempts are padded to the next multiple of this interval,
    # measured from the attempt's own start.
    "PACING_INTERVAL_US": 1_000_000,

    # Stop after this many attempts; 0 means run until interrupted.
    "COUNT": 0,
}


# Required keys and their expected types
_REQUIRED_KEYS = {
    "DEFAULT_PORT": int,
    "CONNECT_TIMEOUT_S": float,
    "FAILURE_BACKOFF_S": float,
    "ENDPOINT_RETRY_BACKOFF_S": float,
    "PACING_INTERVAL_US": int,
    "COUNT": int,
}


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Ensure all required keys exist with correct types/ranges.
    Raise ConfigError("<reason>") on any violation.
    No return value on success.
    """
    missing_keys = set(_REQUIRED_KEYS.keys()) - set(cfg.keys())
    if missing_keys:
        raise ConfigError(f"CONFIG missing required keys: {', '.join(sorted(missing_keys))}")

    for key, expected_type in _REQUIRED_KEYS.items():
        value = cfg[key]
        if expected_type is float:
            # ints are accepted wherever seconds are expected
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(
                    f"CONFIG[{key}] must be float seconds, got {type(value).__name__}"
                )
            continue
        if isinstance(value, bool) or not isinstance(value, expected_type):
            raise ConfigError(f"CONFIG[{key}] must be {expected_type.__name__}, got {type(value).__name__}")

    port = cfg["DEFAULT_PORT"]
    if not (1 <= port <= 65535):
        raise ConfigError(f"CONFIG[DEFAULT_PORT] must be valid port (1-65535), got {port}")

    if cfg["CONNECT_TIMEOUT_S"] <= 0:
        raise ConfigError(f"CONFIG[CONNECT_TIMEOUT_S] must be > 0, got {cfg['CONNECT_TIMEOUT_S']}")

    for key in ("FAILURE_BACKOFF_S", "ENDPOINT_RETRY_BACKOFF_S"):
        if cfg[key] < 0:
            raise ConfigError(f"CONFIG[{key}] must be >= 0, got {cfg[key]}")

    if cfg["PACING_INTERVAL_US"] <= 0:
        raise ConfigError(f"CONFIG[PACING_INTERVAL_US] must be > 0, got {cfg['PACING_INTERVAL_US']}")

    if cfg["COUNT"] < 0:
        raise ConfigError(f"CONFIG[COUNT] must be >= 0, got {cfg['COUNT']}")


def _coerce(value: Any, expected_type: type) -> Any:
    if not isinstance(value, str):
        return value
    if expected_type == int:
        return int(value)
    if expected_type == float:
        return float(value)
    return value


def apply_overrides(cfg: Dict[str, Any], overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Return a validated copy of cfg with overrides applied.

    String values are parsed into the key's declared type; ``None`` values are
    skipped so argparse namespaces can be passed through unfiltered.
    """
    result = cfg.copy()

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        expected_type = _REQUIRED_KEYS.get(key)
        if expected_type is None:
            raise ConfigError(f"Unsupported override key: {key}")
        try:
            result[key] = _coerce(value, expected_type)
        except ValueError:
            raise ConfigError(f"Invalid {expected_type.__name__} value for {key}: {value}")

    validate_config(result)
    return result


validate_config(CONFIG)
