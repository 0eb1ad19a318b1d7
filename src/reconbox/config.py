"""Scan settings and their loading from file and environment."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".reconbox" / "config.json"

# Field name -> environment variable consulted by ``load_settings``.
ENV_OVERRIDES = {
    "concurrency_cap": "RECONBOX_CONCURRENCY",
    "dial_timeout": "RECONBOX_DIAL_TIMEOUT",
    "sweep_duration": "RECONBOX_SWEEP_DURATION",
    "echo_concurrency": "RECONBOX_ECHO_CONCURRENCY",
    "dns_timeout": "RECONBOX_DNS_TIMEOUT",
}


@dataclass(frozen=True)
class ScanSettings:
    """Immutable tuning knobs handed to the engines at construction time.

    ``concurrency_cap`` bounds simultaneous TCP dials and exists to avoid
    flooding the target; raise it with care. ``echo_concurrency`` applies
    the same bound to echo requests being sent during host discovery.
    """

    concurrency_cap: int = 50
    dial_timeout: float = 10.0
    sweep_duration: int = 10
    echo_concurrency: int = 50
    dns_timeout: float = 2.0

    def __post_init__(self) -> None:
        if self.concurrency_cap < 1:
            raise ValueError("concurrency_cap must be at least 1")
        if self.echo_concurrency < 1:
            raise ValueError("echo_concurrency must be at least 1")
        if self.sweep_duration < 0:
            raise ValueError("sweep_duration cannot be negative")
        for name in ("dial_timeout", "dns_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def with_overrides(self, **changes: Any) -> "ScanSettings":
        """Return a copy with ``changes`` applied, ignoring ``None`` values."""

        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(name: str, raw: Any) -> Any:
    kind = {f.name: f.type for f in fields(ScanSettings)}[name]
    try:
        return int(raw) if kind in ("int", int) else float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for {name}: {raw!r}") from exc


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = json.load(handle)
    except JSONDecodeError as exc:
        logger.warning("Invalid config file %s, using defaults: %s", path, exc)
        return {}
    except OSError as exc:
        logger.error("Error reading config %s: %s", path, exc)
        return {}
    if not isinstance(loaded, dict):
        logger.warning("Config file %s does not hold an object, ignoring it", path)
        return {}
    known = {f.name for f in fields(ScanSettings)}
    unknown = set(loaded) - known
    if unknown:
        logger.warning("Ignoring unknown settings in %s: %s", path, ", ".join(sorted(unknown)))
    return {k: v for k, v in loaded.items() if k in known}


def load_settings(
    path: str | os.PathLike[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> ScanSettings:
    """Build settings from defaults, an optional JSON file and the environment.

    The file is ``path`` when given, else ``$RECONBOX_CONFIG`` or
    ``~/.reconbox/config.json``. Environment variables listed in
    :data:`ENV_OVERRIDES` win over the file.
    """

    env = os.environ if environ is None else environ
    if path is None:
        path = env.get("RECONBOX_CONFIG") or DEFAULT_CONFIG_FILE
    values: Dict[str, Any] = {
        name: _coerce(name, raw) for name, raw in _read_file(Path(path)).items()
    }
    for name, var in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            values[name] = _coerce(name, raw)
    return ScanSettings(**values)


__all__ = ["DEFAULT_CONFIG_FILE", "ENV_OVERRIDES", "ScanSettings", "load_settings"]
