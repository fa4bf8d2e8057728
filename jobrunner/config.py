from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigurationError

DEFAULT_CONFIG = {
    "max_attempts_default": "3",
    "backoff_base_ms": "1000",
    "backoff_cap_ms": "30000",
    "timeout_seconds": "20",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())

# keys that must hold whole numbers
INTEGER_KEYS = {"max_attempts_default", "backoff_base_ms", "backoff_cap_ms"}


def validate_config_value(key: str, value) -> str:
    if key not in ALLOWED_CONFIG_KEYS:
        raise ConfigurationError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    text = str(value).strip()
    try:
        number = int(text) if key in INTEGER_KEYS else float(text)
    except ValueError:
        kind = "an integer" if key in INTEGER_KEYS else "a number"
        raise ConfigurationError(f"{key} must be {kind}, got {value!r}")
    if number <= 0:
        raise ConfigurationError(f"{key} must be > 0")
    return text


@dataclass(frozen=True)
class RunnerSettings:
    max_attempts: int = 3
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 30000
    timeout_seconds: float = 20.0

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, str]) -> "RunnerSettings":
        merged = {**DEFAULT_CONFIG, **cfg}
        return cls(
            max_attempts=int(merged["max_attempts_default"]),
            backoff_base_ms=int(merged["backoff_base_ms"]),
            backoff_cap_ms=int(merged["backoff_cap_ms"]),
            timeout_seconds=float(merged["timeout_seconds"]),
        )
