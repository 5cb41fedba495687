from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

STORE_BACKENDS = ("memory", "postgres")


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = str(env.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class Settings:
    store_backend: str = "memory"
    document_store_dsn: str = ""
    reference_store_dsn: str = ""
    identity_store_dsn: str = ""
    store_timeout_ms: int = 5000
    repair_match_window_s: int = 10
    safe_resolve_window_s: int = 5
    safe_resolve_heal: bool = True
    log_level: str = "INFO"
    cors_allow_origins: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        backend = str(env.get("ACH_STORE_BACKEND", "memory")).strip().lower() or "memory"
        if backend not in STORE_BACKENDS:
            raise ValueError(f"ACH_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}: {backend}")
        shared_dsn = str(env.get("ACH_POSTGRES_DSN", "")).strip()
        return cls(
            store_backend=backend,
            document_store_dsn=str(env.get("ACH_DOCUMENT_STORE_DSN", "")).strip() or shared_dsn,
            reference_store_dsn=str(env.get("ACH_REFERENCE_STORE_DSN", "")).strip() or shared_dsn,
            identity_store_dsn=str(env.get("ACH_IDENTITY_STORE_DSN", "")).strip() or shared_dsn,
            store_timeout_ms=_env_int(env, "ACH_STORE_TIMEOUT_MS", default=5000, minimum=1),
            repair_match_window_s=_env_int(env, "ACH_REPAIR_MATCH_WINDOW_S", default=10, minimum=0),
            safe_resolve_window_s=_env_int(env, "ACH_SAFE_RESOLVE_WINDOW_S", default=5, minimum=0),
            safe_resolve_heal=_env_bool(env, "ACH_SAFE_RESOLVE_HEAL", True),
            log_level=str(env.get("ACH_LOG_LEVEL", "INFO")).strip().upper() or "INFO",
            cors_allow_origins=_split_csv(str(env.get("ACH_CORS_ALLOW_ORIGINS", ""))),
        )
