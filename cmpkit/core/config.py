from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Optional

ENV_PREFIX = "CMPKIT_"


def _env(name: str) -> Optional[str]:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    # IMPORTANT: keep these names; the API accepts them as overrides
    strict_specialization: bool = True
    max_specialization_hops: int = 8
    evict_failed_specializations: bool = False
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            strict_specialization=_env_bool("STRICT_SPECIALIZATION", True),
            max_specialization_hops=max(1, _env_int("MAX_SPECIALIZATION_HOPS", 8)),
            evict_failed_specializations=_env_bool("EVICT_FAILED_SPECIALIZATIONS", False),
            log_level=(_env("LOG_LEVEL") or "WARNING").upper(),
        )

    @classmethod
    def from_payload(cls, payload: Any, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """
        Accepts:
          - None (=> base, or environment)
          - {"strict_specialization": false, "max_specialization_hops": 4, ...}
        Unknown keys and values of the wrong type are ignored.
        """
        cfg = base or cls.from_env()
        if not isinstance(payload, dict):
            return cfg

        changes = {}
        if isinstance(payload.get("strict_specialization"), bool):
            changes["strict_specialization"] = payload["strict_specialization"]
        hops = payload.get("max_specialization_hops")
        if isinstance(hops, int) and not isinstance(hops, bool) and hops > 0:
            changes["max_specialization_hops"] = hops
        if isinstance(payload.get("evict_failed_specializations"), bool):
            changes["evict_failed_specializations"] = payload["evict_failed_specializations"]
        return replace(cfg, **changes)

    def to_dict(self) -> dict:
        return {
            "strict_specialization": self.strict_specialization,
            "max_specialization_hops": self.max_specialization_hops,
            "evict_failed_specializations": self.evict_failed_specializations,
            "log_level": self.log_level,
        }
