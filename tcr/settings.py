from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")

_TRUTHY = frozenset({"1", "true", "yes", "y", "on"})
_FALSY = frozenset({"0", "false", "no", "n", "off", ""})


def _flag(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _env(name: str, default: T, parse: Callable[[str], T]) -> T:
    """``TCR_<name>`` parsed with ``parse``; unset or unparseable values fall back to ``default``."""
    raw = os.environ.get(f"TCR_{name}")
    if raw is None:
        return default
    try:
        return parse(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = _env("DB_PATH", "tcr.db", str)
    log_level: str = _env("LOG_LEVEL", "INFO", str)

    # Controller
    start_controller: bool = _env("START_CONTROLLER", True, _flag)
    workers: int = _env("WORKERS", 1, int)
    resync_interval_s: int = _env("RESYNC_INTERVAL_S", 30, int)
    # 0 disables the per-invocation deadline.
    reconcile_timeout_s: int = _env("RECONCILE_TIMEOUT_S", 30, int)


settings = Settings()
