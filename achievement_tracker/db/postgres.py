from __future__ import annotations

from collections.abc import Callable
from typing import Any


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction bounded by a statement timeout.

    One runner is built per store. Runners never share a connection, so a
    write through one store is never part of a transaction on another.
    """

    def __init__(self, dsn: str, *, timeout_ms: int = 5000) -> None:
        if not dsn.strip():
            raise ValueError("postgres dsn must not be empty")
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self._dsn = dsn.strip()
        self._timeout_ms = int(timeout_ms)

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        psycopg = _import_psycopg()
        connect_timeout_s = max(1, self._timeout_ms // 1000)
        with psycopg.connect(self._dsn, connect_timeout=connect_timeout_s) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(self._timeout_ms),))
            result = fn(conn)
            conn.commit()
            return result
